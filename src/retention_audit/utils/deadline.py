"""Cooperative per-task deadline."""

import time
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from retention_audit.providers.base import TaskTimeoutError

T = TypeVar("T")


class Deadline:
    """Cancellation token that expires a fixed time after it is started.

    Tasks call ``check()`` at safe points between steps. Nothing is ever
    interrupted mid-operation, so an expired task never holds a file lock.
    """

    def __init__(
        self,
        seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize deadline.

        Args:
            seconds: Time budget. None disables the deadline.
            clock: Monotonic clock, replaceable in tests.
        """
        self.seconds = seconds
        self.clock = clock
        self.started_at = clock()

    @property
    def expired(self) -> bool:
        if self.seconds is None:
            return False
        return self.clock() - self.started_at >= self.seconds

    def check(self, step: str = "") -> None:
        """Raise TaskTimeoutError if the deadline has passed."""
        if self.expired:
            where = f" during {step}" if step else ""
            raise TaskTimeoutError(
                f"Task exceeded its {self.seconds:.0f}s deadline{where}"
            )

    def guard(self, items: Iterable[T], step: str = "") -> Iterator[T]:
        """Yield items, checking the deadline before each one."""
        for item in items:
            self.check(step)
            yield item
