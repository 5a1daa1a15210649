"""Per-container audit pipeline and the resumable run around it."""

import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

import structlog

from retention_audit.analyzer import analyze_container
from retention_audit.credentials import CredentialGuard
from retention_audit.models import (
    AuditSummary,
    ContainerInfo,
    ContainerResult,
    FailureRecord,
    Identity,
    utc_now,
)
from retention_audit.orchestrator import AuditOrchestrator, RunOutcome, validate_concurrency
from retention_audit.progress import RUN_TIMESTAMP_FORMAT, ProgressStore
from retention_audit.providers.base import CloudStorageError, StorageProvider
from retention_audit.results import ResultSink, results_file_name, write_summary
from retention_audit.summary import build_summary
from retention_audit.utils.deadline import Deadline
from retention_audit.utils.logging import bind_run_context, get_logger
from retention_audit.utils.retry import RetryPolicy, call_with_policy
from retention_audit.utils.validators import (
    compile_regex,
    matches_regex,
    validate_account_id,
    validate_retention_days,
)

logger = get_logger(__name__)


class AuditAbortedError(Exception):
    """The run could not start: authentication or enumeration failed."""

    pass


class ResumeMismatchError(Exception):
    """The progress file was written with different audit parameters."""

    pass


@dataclass(frozen=True)
class ContainerTask:
    """Everything one worker needs to audit one container.

    Workers receive only this object; nothing is captured from the
    scheduling scope. ``provider_factory`` builds a provider owned by the
    worker alone; ``region`` is where enumeration found the container.
    """

    container: str
    account_id: str
    run_timestamp: str
    retention_days: int
    now: datetime
    cost_per_gb_month: float
    provider_factory: Callable[[], StorageProvider]
    progress: ProgressStore
    sink: ResultSink
    retry_policy: RetryPolicy = RetryPolicy()
    expected_identity: Optional[Identity] = None
    credential_threshold: timedelta = timedelta(minutes=5)
    timeout_seconds: Optional[float] = None
    sleep: Callable[[float], None] = time.sleep
    region: Optional[str] = None


def audit_container(task: ContainerTask) -> Optional[ContainerResult]:
    """Audit one container: credential check, list, analyze, persist.

    Args:
        task: The container and its run parameters.

    Returns:
        The container's result, or None when the container is empty.

    Raises:
        CredentialRenewalError: If the worker's credential cannot be renewed.
        RetryExhaustedError: If listing failed on every attempt.
        TaskTimeoutError: If the task ran past its deadline.
    """
    with structlog.contextvars.bound_contextvars(
        account_id=task.account_id,
        run=task.run_timestamp,
        container=task.container,
    ):
        deadline = Deadline(task.timeout_seconds)
        logger.debug("container_started")

        provider = task.provider_factory()
        guard = CredentialGuard(
            provider,
            expected_identity=task.expected_identity,
            threshold=task.credential_threshold,
            retry_policy=task.retry_policy,
            sleep=task.sleep,
        )
        guard.ensure_fresh()
        deadline.check("credential check")

        objects = call_with_policy(
            lambda: list(
                deadline.guard(provider.list_objects(task.container, task.region), "object listing")
            ),
            task.retry_policy,
            f"list objects in {task.container}",
            sleep=task.sleep,
        )

        result = analyze_container(
            task.container,
            objects,
            task.retention_days,
            task.now,
            task.cost_per_gb_month,
        )
        deadline.check("analysis")

        if result.total_count == 0:
            state = task.progress.mark_completed(task.container)
            logger.info("container_empty", completed=len(state.completed_containers))
            return None

        task.sink.append_result(result)
        state = task.progress.mark_completed(task.container)

        logger.info(
            "container_completed",
            objects=result.total_count,
            to_delete=result.deletion_count,
            percent_to_delete=round(result.percent_to_delete, 2),
            age_distribution=result.age_distribution,
            completed=len(state.completed_containers),
        )
        return result


@dataclass(frozen=True)
class AuditOptions:
    """Parameters of an audit run."""

    account_id: str
    retention_days: int
    provider_name: str = "azure"
    resource_group: Optional[str] = None
    output_dir: Path = Path(".")
    concurrency: int = 5
    timeout_minutes: Optional[float] = None
    resume: bool = False
    container_pattern: Optional[str] = None
    cost_per_gb_month: float = 0.0184
    retry_policy: RetryPolicy = RetryPolicy()
    credential_threshold: timedelta = timedelta(minutes=5)
    lock_timeout: float = 60.0
    concurrency_warn_delay: float = 5.0
    top_n: int = 10

    def progress_search_dirs(self) -> list[Path]:
        """Locations searched for an earlier progress file, in order."""
        dirs = [Path(self.output_dir), Path.cwd(), Path(tempfile.gettempdir())]
        unique: list[Path] = []
        for d in dirs:
            if d.resolve() not in [u.resolve() for u in unique]:
                unique.append(d)
        return unique


@dataclass
class AuditReport:
    """Everything the caller needs to present a finished run."""

    run_timestamp: str
    results_path: Path
    summary_path: Path
    progress_path: Path
    summary: AuditSummary
    outcome: RunOutcome
    total_containers: int
    previously_completed: int = 0
    resumed: bool = False
    skipped_by_pattern: list[str] = field(default_factory=list)

    @property
    def failures(self) -> list[FailureRecord]:
        return self.outcome.failures

    @property
    def fully_successful(self) -> bool:
        return not self.outcome.failures


class RetentionAudit:
    """Runs a complete, resumable audit of one storage account."""

    def __init__(
        self,
        options: AuditOptions,
        provider_factory: Callable[[], StorageProvider],
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize audit.

        Args:
            options: Run parameters.
            provider_factory: Builds a new, independent provider per call.
            clock: Source of the reference time for object ages.
            sleep: Sleep function for retries and warnings.
        """
        validate_account_id(options.account_id)
        validate_retention_days(options.retention_days)
        self.options = options
        self.provider_factory = provider_factory
        self.clock = clock
        self.sleep = sleep

    def _connect(self) -> tuple[Identity, list[ContainerInfo]]:
        """Authenticate and enumerate containers on the main path."""
        options = self.options
        provider = self.provider_factory()

        try:
            identity = call_with_policy(
                provider.authenticate, options.retry_policy, "authenticate", sleep=self.sleep
            )
            CredentialGuard(
                provider,
                expected_identity=identity,
                threshold=options.credential_threshold,
                retry_policy=options.retry_policy,
                sleep=self.sleep,
            ).ensure_fresh()
        except CloudStorageError as e:
            raise AuditAbortedError(f"Authentication failed: {e}") from e

        try:
            containers = call_with_policy(
                lambda: list(provider.list_containers()),
                options.retry_policy,
                "list containers",
                sleep=self.sleep,
            )
        except CloudStorageError as e:
            raise AuditAbortedError(f"Cannot enumerate containers: {e}") from e

        return identity, containers

    def _open_progress(self, now: datetime) -> tuple[ProgressStore, bool]:
        options = self.options
        if options.resume:
            store = ProgressStore.load(
                options.account_id,
                options.progress_search_dirs(),
                lock_timeout=options.lock_timeout,
                clock=self.clock,
            )
            if store is not None:
                state = store.read()
                if state.retention_days != options.retention_days:
                    raise ResumeMismatchError(
                        f"Progress file {store.path} was written for {state.retention_days} "
                        f"retention days, not {options.retention_days}"
                    )
                if state.provider != options.provider_name:
                    raise ResumeMismatchError(
                        f"Progress file {store.path} belongs to provider '{state.provider}', "
                        f"not '{options.provider_name}'"
                    )
                return store, True
            logger.warning("resume_requested_without_progress", account_id=options.account_id)

        store = ProgressStore.init(
            options.output_dir,
            options.account_id,
            options.resource_group,
            options.retention_days,
            now.strftime(RUN_TIMESTAMP_FORMAT),
            provider=options.provider_name,
            lock_timeout=options.lock_timeout,
            clock=self.clock,
        )
        return store, False

    def execute(self) -> AuditReport:
        """Run the audit to completion.

        Returns:
            AuditReport with the summary and per-container outcome.

        Raises:
            AuditAbortedError: If authentication or enumeration failed.
            ResumeMismatchError: If the progress file has other parameters.
            ProgressFileError: If the progress file is incomplete.
            ResultsFileError: If the results file is incomplete.
        """
        options = self.options
        concurrency = validate_concurrency(
            options.concurrency, warn_delay=options.concurrency_warn_delay, sleep=self.sleep
        )
        now = self.clock()

        identity, containers = self._connect()

        skipped_by_pattern: list[str] = []
        if options.container_pattern:
            pattern = compile_regex(options.container_pattern)
            skipped_by_pattern = [c.name for c in containers if not matches_regex(c.name, pattern)]
            containers = [c for c in containers if matches_regex(c.name, pattern)]

        store, resumed = self._open_progress(now)
        state = store.read()
        run_timestamp = state.timestamp
        bind_run_context(account_id=options.account_id, run=run_timestamp)

        # a resumed run keeps its results next to the progress file it adopted
        run_dir = store.path.parent if resumed else Path(options.output_dir)
        results_path = run_dir / results_file_name(options.account_id, run_timestamp)
        summary_path = results_path.with_name(f"{results_path.stem}_summary.json")
        sink = ResultSink(results_path, lock_timeout=options.lock_timeout)

        completed = frozenset(state.completed_containers)
        prior = sink.load_results(completed) if resumed else {}
        sink.create()
        pending = [c for c in containers if c.name not in completed]

        logger.info(
            "audit_started",
            containers=len(containers),
            pending=len(pending),
            previously_completed=len(completed),
            retention_days=options.retention_days,
            concurrency=concurrency,
            resumed=resumed,
        )

        if pending:
            timeout = options.timeout_minutes * 60 if options.timeout_minutes else None
            tasks = [
                ContainerTask(
                    container=c.name,
                    account_id=options.account_id,
                    run_timestamp=run_timestamp,
                    retention_days=options.retention_days,
                    now=now,
                    cost_per_gb_month=options.cost_per_gb_month,
                    provider_factory=self.provider_factory,
                    progress=store,
                    sink=sink,
                    retry_policy=options.retry_policy,
                    expected_identity=identity,
                    credential_threshold=options.credential_threshold,
                    timeout_seconds=timeout,
                    sleep=self.sleep,
                    region=c.region,
                )
                for c in pending
            ]
            outcome = AuditOrchestrator(concurrency).run(tasks, audit_container)
        else:
            logger.info("all_containers_already_completed", completed=len(completed))
            outcome = RunOutcome()

        merged = dict(prior)
        merged.update((r.container, r) for r in outcome.results)

        sink.finalize(merged.values())
        summary = build_summary(merged.values(), options.cost_per_gb_month)
        write_summary(summary_path, summary, outcome.failures, top_n=options.top_n)

        logger.info(
            "audit_finished",
            containers_with_results=summary.container_count,
            failed=len(outcome.failures),
            objects=summary.total_count,
            to_delete=summary.deletion_count,
            monthly_savings=round(summary.monthly_savings, 2),
        )

        return AuditReport(
            run_timestamp=run_timestamp,
            results_path=results_path,
            summary_path=summary_path,
            progress_path=store.path,
            summary=summary,
            outcome=outcome,
            total_containers=len(containers),
            previously_completed=len(completed),
            resumed=resumed,
            skipped_by_pattern=skipped_by_pattern,
        )
