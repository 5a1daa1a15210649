"""Incremental CSV sink for container results."""

import csv
import io
import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import AbstractSet, Iterable, Iterator, Optional

from filelock import FileLock, Timeout

from retention_audit.models import (
    CSV_COLUMNS,
    GIB,
    AuditSummary,
    ContainerResult,
    FailureRecord,
    ranking_key,
)
from retention_audit.utils.fileio import atomic_write_text
from retention_audit.utils.logging import get_logger

logger = get_logger(__name__)

# Columns older result files may lack; sizes then come from the GB columns.
OPTIONAL_COLUMNS = ("TotalSizeBytes", "SizeToDeleteBytes")
REQUIRED_COLUMNS = tuple(c for c in CSV_COLUMNS if c not in OPTIONAL_COLUMNS)


class ResultsFileError(Exception):
    """A results file cannot be used to resume a run."""

    pass


def results_file_name(account_id: str, run_timestamp: str) -> str:
    return f"retention_audit_{account_id}_{run_timestamp}.csv"


def _parse_row(row: dict[str, Optional[str]]) -> ContainerResult:
    """Rebuild a ContainerResult from a CSV row.

    Raises:
        ValueError: If a required value is missing or malformed.
    """
    for column in REQUIRED_COLUMNS:
        if row.get(column) in (None, ""):
            raise ValueError(f"missing value for '{column}'")

    def size(bytes_column: str, gb_column: str) -> int:
        raw = row.get(bytes_column)
        if raw not in (None, ""):
            return int(raw)
        return int(round(float(row[gb_column]) * GIB))

    return ContainerResult(
        container=row["Container"],
        total_count=int(row["TotalBlobCount"]),
        total_size=size("TotalSizeBytes", "TotalSizeGB"),
        deletion_count=int(row["BlobsToDelete"]),
        deletion_size=size("SizeToDeleteBytes", "SizeToDeleteGB"),
        percent_to_delete=float(row["PercentToDelete"]),
        est_monthly_savings=float(row["EstMonthlySavings"]),
    )


class ResultSink:
    """Appends one row per completed container as soon as it is known.

    Appends are serialized by a process-wide lock plus a file lock on
    ``<file>.lock``, distinct from the progress file lock. ``finalize``
    rewrites the file atomically, sorted and deduplicated.
    """

    def __init__(self, path: Path, lock_timeout: float = 60.0) -> None:
        """Initialize sink.

        Args:
            path: CSV file location.
            lock_timeout: Seconds to wait for the file lock.
        """
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self._thread_lock = threading.Lock()
        self._file_lock = FileLock(f"{self.path}.lock", timeout=lock_timeout)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._file_lock.acquire()
            except Timeout as e:
                raise ResultsFileError(
                    f"Timed out after {self.lock_timeout}s waiting for {self._file_lock.lock_file}"
                ) from e
            try:
                yield
            finally:
                self._file_lock.release()

    def create(self) -> None:
        """Write the header of a new results file; an existing file is kept."""
        with self._locked():
            if self.path.exists() and self.path.stat().st_size > 0:
                return
            atomic_write_text(self.path, ",".join(CSV_COLUMNS) + "\r\n")

        logger.debug("results_file_created", path=str(self.path))

    def _ends_with_newline(self) -> bool:
        with open(self.path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) in (b"\n", b"\r")

    def append_result(self, result: ContainerResult) -> None:
        """Append one result row, writing the header if the file is new."""
        with self._locked():
            new_file = not self.path.exists() or self.path.stat().st_size == 0
            torn_tail = not new_file and not self._ends_with_newline()
            with open(self.path, "a", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
                if new_file:
                    writer.writeheader()
                elif torn_tail:
                    # a crash cut the previous row short; keep it on its own line
                    f.write("\r\n")
                writer.writerow(result.to_row())
                f.flush()
                os.fsync(f.fileno())

        logger.debug("result_appended", container=result.container, path=str(self.path))

    def load_results(self, completed: AbstractSet[str]) -> dict[str, ContainerResult]:
        """Load previously written rows of completed containers.

        Rows of containers outside ``completed`` are ignored; they will be
        audited again. A torn row of such a container is skipped.

        Args:
            completed: Durable completed-set from the progress file.

        Returns:
            Mapping of container name to its result (last row wins).

        Raises:
            ResultsFileError: If the file is missing while containers are
                completed, the header lacks a required column, or a row of a
                completed container is incomplete.
        """
        if not self.path.exists():
            if completed:
                raise ResultsFileError(
                    f"Cannot resume: {len(completed)} containers are completed "
                    f"but {self.path} does not exist"
                )
            return {}

        results: dict[str, ContainerResult] = {}
        with self._locked():
            with open(self.path, encoding="utf-8", newline="") as f:
                reader = csv.DictReader(f)
                header = reader.fieldnames or []
                missing = [c for c in REQUIRED_COLUMNS if c not in header]
                if missing:
                    raise ResultsFileError(
                        f"Cannot resume from {self.path}: missing column '{missing[0]}'"
                    )

                for line_number, row in enumerate(reader, start=2):
                    name = row.get("Container")
                    if not name or name not in completed:
                        continue
                    try:
                        results[name] = _parse_row(row)
                    except (ValueError, TypeError) as e:
                        raise ResultsFileError(
                            f"Cannot resume from {self.path}: line {line_number} "
                            f"for container '{name}' is incomplete ({e})"
                        )

        skipped = len(completed) - len(results)
        logger.info(
            "results_loaded",
            path=str(self.path),
            rows=len(results),
            completed_without_row=skipped,
        )
        return results

    def finalize(self, results: Iterable[ContainerResult]) -> None:
        """Rewrite the file with every result, sorted and deduplicated."""
        unique = {result.container: result for result in results}
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for result in sorted(unique.values(), key=ranking_key):
            writer.writerow(result.to_row())

        with self._locked():
            atomic_write_text(self.path, buffer.getvalue())

        logger.info("results_finalized", path=str(self.path), rows=len(unique))


def write_summary(
    path: Path,
    summary: AuditSummary,
    failures: Iterable[FailureRecord] = (),
    top_n: int = 10,
) -> None:
    """Write the run summary as JSON next to the results file."""
    document = {
        "ContainerCount": summary.container_count,
        "TotalBlobCount": summary.total_count,
        "TotalSizeGB": round(summary.total_size_gb, 2),
        "BlobsToDelete": summary.deletion_count,
        "SizeToDeleteGB": round(summary.deletion_size_gb, 2),
        "PercentObjectsAffected": round(summary.percent_objects_affected, 2),
        "PercentSizeAffected": round(summary.percent_size_affected, 2),
        "EstMonthlySavings": round(summary.monthly_savings, 2),
        "EstAnnualSavings": round(summary.annual_savings, 2),
        "TopContainers": [result.to_row() for result in summary.top(top_n)],
        "FailedContainers": [
            {"Container": f.container, "Reason": f.reason, "ErrorType": f.error_type}
            for f in sorted(failures, key=lambda f: f.container)
        ],
    }
    atomic_write_text(Path(path), json.dumps(document, indent=2))
    logger.info("summary_written", path=str(path))
