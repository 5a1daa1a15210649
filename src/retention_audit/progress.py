"""Durable record of completed containers, shared by all audit workers."""

import json
import re
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from filelock import FileLock, Timeout
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from retention_audit.models import utc_now
from retention_audit.utils.fileio import atomic_write_text
from retention_audit.utils.logging import get_logger

logger = get_logger(__name__)

FILE_PREFIX = "audit_progress"
RUN_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class ProgressFileError(Exception):
    """A progress file is missing, unreadable or structurally incomplete."""

    pass


class ProgressState(BaseModel):
    """Persisted state of one audit run.

    Field aliases are the on-disk JSON keys. Every write serializes the whole
    model; fields added later carry defaults so older files still load.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    timestamp: str = Field(alias="Timestamp")
    account_id: str = Field(alias="AccountId")
    resource_group: Optional[str] = Field(alias="ResourceGroup")
    retention_days: int = Field(alias="RetentionDays", ge=0)
    start_time: datetime = Field(alias="StartTime")
    last_update: datetime = Field(alias="LastUpdate")
    completed_containers: tuple[str, ...] = Field(alias="CompletedContainers")
    provider: str = Field(default="azure", alias="Provider")
    schema_version: int = Field(default=1, alias="SchemaVersion")

    def to_document(self) -> dict:
        """Full JSON document with every field present."""
        return self.model_dump(by_alias=True, mode="json")


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail["loc"]) or "<root>"
        if detail["type"] == "missing":
            problems.append(f"missing field '{field}'")
        else:
            problems.append(f"invalid field '{field}': {detail['msg']}")
    return "; ".join(problems)


def parse_progress_document(raw: str, source: str = "<memory>") -> ProgressState:
    """Parse and validate a progress document.

    Raises:
        ProgressFileError: If the document is not JSON or lacks a required field.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProgressFileError(f"Cannot resume from {source}: not valid JSON ({e})")

    if not isinstance(data, dict):
        raise ProgressFileError(f"Cannot resume from {source}: expected a JSON object")

    try:
        return ProgressState.model_validate(data)
    except ValidationError as e:
        raise ProgressFileError(
            f"Cannot resume from {source}: {_describe_validation_error(e)}"
        )


def progress_file_name(account_id: str, run_timestamp: str) -> str:
    return f"{FILE_PREFIX}_{account_id}_{run_timestamp}.json"


def find_progress_files(account_id: str, search_dirs: Iterable[Path]) -> list[Path]:
    """Find progress files of an account, most recent first.

    Recency is the run timestamp embedded in the name, then modification time.
    """
    name_re = re.compile(
        rf"^{re.escape(FILE_PREFIX)}_{re.escape(account_id)}_(\d{{8}}_\d{{6}})\.json$"
    )
    found: dict[Path, tuple[str, float]] = {}

    for directory in search_dirs:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        for candidate in directory.iterdir():
            match = name_re.match(candidate.name)
            if match and candidate.is_file():
                found[candidate.resolve()] = (match.group(1), candidate.stat().st_mtime)

    return sorted(found, key=lambda p: found[p], reverse=True)


class ProgressStore:
    """Locked read-modify-write access to a progress file.

    Updates are serialized by a process-wide lock plus a file lock on
    ``<file>.lock``. Each update re-reads the file, merges, and rewrites the
    complete structure atomically, so no reader ever sees a partial record.
    """

    def __init__(
        self,
        path: Path,
        lock_timeout: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize store.

        Args:
            path: Progress file location.
            lock_timeout: Seconds to wait for the file lock.
            clock: Source of LastUpdate timestamps.
        """
        self.path = Path(path)
        self.clock = clock
        self.lock_timeout = lock_timeout
        self._thread_lock = threading.Lock()
        self._file_lock = FileLock(f"{self.path}.lock", timeout=lock_timeout)

    @classmethod
    def init(
        cls,
        directory: Path,
        account_id: str,
        resource_group: Optional[str],
        retention_days: int,
        run_timestamp: str,
        provider: str = "azure",
        lock_timeout: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ProgressStore":
        """Create a fresh progress file with an empty completed-set."""
        store = cls(
            Path(directory) / progress_file_name(account_id, run_timestamp),
            lock_timeout=lock_timeout,
            clock=clock,
        )
        now = clock()
        state = ProgressState(
            timestamp=run_timestamp,
            account_id=account_id,
            resource_group=resource_group,
            retention_days=retention_days,
            start_time=now,
            last_update=now,
            completed_containers=(),
            provider=provider,
        )
        store.write(state)
        logger.info("progress_initialized", path=str(store.path))
        return store

    @classmethod
    def load(
        cls,
        account_id: str,
        search_dirs: Iterable[Path],
        lock_timeout: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> Optional["ProgressStore"]:
        """Open the most recent progress file of an account.

        Returns:
            A store bound to the file, or None if no progress file exists.

        Raises:
            ProgressFileError: If the newest file is structurally incomplete.
        """
        candidates = find_progress_files(account_id, search_dirs)
        if not candidates:
            logger.info("progress_not_found", account_id=account_id)
            return None

        store = cls(candidates[0], lock_timeout=lock_timeout, clock=clock)
        state = store.read()
        if state.account_id != account_id:
            raise ProgressFileError(
                f"Cannot resume from {store.path}: file belongs to account '{state.account_id}'"
            )
        logger.info(
            "progress_loaded",
            path=str(store.path),
            completed=len(state.completed_containers),
            run_timestamp=state.timestamp,
        )
        return store

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._file_lock.acquire()
            except Timeout as e:
                raise ProgressFileError(
                    f"Timed out after {self.lock_timeout}s waiting for {self._file_lock.lock_file}"
                ) from e
            try:
                yield
            finally:
                self._file_lock.release()

    def _read_unlocked(self) -> ProgressState:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ProgressFileError(f"Progress file not found: {self.path}")
        return parse_progress_document(raw, str(self.path))

    def _write_unlocked(self, state: ProgressState) -> None:
        atomic_write_text(self.path, json.dumps(state.to_document(), indent=2))

    def read(self) -> ProgressState:
        """Read and validate the current on-disk state."""
        with self._locked():
            return self._read_unlocked()

    def write(self, state: ProgressState) -> None:
        """Replace the on-disk state with a complete record."""
        with self._locked():
            self._write_unlocked(state)

    def mark_completed(self, container: str) -> ProgressState:
        """Add a container to the durable completed-set.

        Args:
            container: Name of the container that finished.

        Returns:
            The state as written, including other workers' earlier updates.
        """
        with self._locked():
            current = self._read_unlocked()
            document = current.to_document()
            document["CompletedContainers"] = sorted(
                set(current.completed_containers) | {container}
            )
            document["LastUpdate"] = self.clock().isoformat()
            updated = ProgressState.model_validate(document)
            self._write_unlocked(updated)

        logger.debug(
            "progress_marked_completed",
            container=container,
            completed=len(updated.completed_containers),
        )
        return updated

    def completed(self) -> frozenset[str]:
        """Names of all containers recorded as completed."""
        return frozenset(self.read().completed_containers)
