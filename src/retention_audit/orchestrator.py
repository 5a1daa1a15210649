"""Bounded parallel execution of per-container audit tasks."""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence, TypeVar

from retention_audit.models import ContainerResult, ContainerStatus, FailureRecord
from retention_audit.utils.logging import get_logger

logger = get_logger(__name__)

MIN_CONCURRENCY = 1
RECOMMENDED_MAX_CONCURRENCY = 10
MAX_CONCURRENCY = 15


class ContainerTaskLike(Protocol):
    container: str


TaskT = TypeVar("TaskT", bound=ContainerTaskLike)


def validate_concurrency(
    limit: int,
    warn_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Check a requested concurrency limit.

    Storage APIs throttle well before they fail cleanly, so large values are
    accepted with a warning and a pause the operator can interrupt, and values
    above MAX_CONCURRENCY are lowered to it.

    Args:
        limit: Requested number of parallel workers.
        warn_delay: Pause in seconds before continuing with a high limit.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The limit to use.

    Raises:
        ValueError: If limit is below 1.
        KeyboardInterrupt: If the operator cancels during the pause.
    """
    if limit < MIN_CONCURRENCY:
        raise ValueError(f"Concurrency must be at least {MIN_CONCURRENCY}, got {limit}")

    if limit <= RECOMMENDED_MAX_CONCURRENCY:
        return limit

    effective = min(limit, MAX_CONCURRENCY)
    logger.warning(
        "concurrency_above_recommended",
        requested=limit,
        effective=effective,
        recommended_max=RECOMMENDED_MAX_CONCURRENCY,
        delay_seconds=warn_delay,
    )
    if warn_delay > 0:
        sleep(warn_delay)
    return effective


@dataclass
class RunOutcome:
    """What happened to every scheduled container."""

    results: list[ContainerResult] = field(default_factory=list)
    failures: list[FailureRecord] = field(default_factory=list)
    empty: list[str] = field(default_factory=list)
    statuses: dict[str, ContainerStatus] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return sorted(
            name for name, status in self.statuses.items() if status == ContainerStatus.COMPLETED
        )


class AuditOrchestrator:
    """Runs one task per container on a bounded thread pool.

    Workers return a result or raise, and the caller collects futures as
    they complete. A status moves from PENDING to IN_PROGRESS when a worker
    picks the task up, then to COMPLETED or FAILED; ``outcome`` shows the
    current or last run. A failing task is recorded and never affects the
    others.
    """

    def __init__(self, concurrency_limit: int) -> None:
        """Initialize orchestrator.

        Args:
            concurrency_limit: Maximum number of containers processed at once.
        """
        if concurrency_limit < MIN_CONCURRENCY:
            raise ValueError(f"Concurrency must be at least {MIN_CONCURRENCY}")
        self.concurrency_limit = concurrency_limit
        self.outcome = RunOutcome()
        self._status_lock = threading.Lock()

    def run(
        self,
        tasks: Sequence[TaskT],
        per_container_fn: Callable[[TaskT], Optional[ContainerResult]],
    ) -> RunOutcome:
        """Execute all tasks and gather their outcomes.

        Args:
            tasks: One task per pending container.
            per_container_fn: Audits one container; returns its result, None
                for an empty container, or raises.

        Returns:
            RunOutcome with results, failures, empty containers and statuses.
        """
        outcome = RunOutcome(
            statuses={task.container: ContainerStatus.PENDING for task in tasks}
        )
        self.outcome = outcome
        if not tasks:
            return outcome

        logger.info(
            "orchestrator_started",
            containers=len(tasks),
            concurrency=self.concurrency_limit,
        )

        executor = ThreadPoolExecutor(
            max_workers=self.concurrency_limit, thread_name_prefix="audit-worker"
        )
        futures: dict[Future, str] = {}

        def start(task: TaskT) -> Optional[ContainerResult]:
            self._set_status(outcome, task.container, ContainerStatus.IN_PROGRESS)
            return per_container_fn(task)

        try:
            for task in tasks:
                futures[executor.submit(start, task)] = task.container

            for future in as_completed(futures):
                self._collect(futures[future], future, outcome)

        except KeyboardInterrupt:
            with self._status_lock:
                statuses = dict(outcome.statuses)
            logger.warning(
                "orchestrator_interrupted",
                in_progress=sorted(
                    n for n, s in statuses.items() if s == ContainerStatus.IN_PROGRESS
                ),
                pending=sum(1 for s in statuses.values() if s == ContainerStatus.PENDING),
            )
            executor.shutdown(wait=False, cancel_futures=True)
            raise

        executor.shutdown(wait=True)

        logger.info(
            "orchestrator_finished",
            completed=len(outcome.succeeded),
            with_results=len(outcome.results),
            empty=len(outcome.empty),
            failed=len(outcome.failures),
        )
        return outcome

    def _collect(self, name: str, future: Future, outcome: RunOutcome) -> None:
        try:
            result = future.result()
        except Exception as e:
            self._set_status(outcome, name, ContainerStatus.FAILED)
            outcome.failures.append(
                FailureRecord(container=name, reason=str(e), error_type=type(e).__name__)
            )
            logger.error(
                "container_failed",
                container=name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return

        self._set_status(outcome, name, ContainerStatus.COMPLETED)
        if result is None:
            outcome.empty.append(name)
        else:
            outcome.results.append(result)

    def _set_status(self, outcome: RunOutcome, name: str, status: ContainerStatus) -> None:
        with self._status_lock:
            outcome.statuses[name] = status
