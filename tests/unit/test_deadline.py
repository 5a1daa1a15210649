"""Unit tests for task deadlines."""

import pytest

from retention_audit.providers.base import TaskTimeoutError
from retention_audit.utils.deadline import Deadline


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_deadline_disabled() -> None:
    """Test that no budget never expires."""
    clock = FakeClock()
    deadline = Deadline(None, clock=clock)
    clock.now = 1e9

    assert not deadline.expired
    deadline.check("listing")


def test_deadline_expires() -> None:
    """Test expiry once the budget is spent."""
    clock = FakeClock()
    deadline = Deadline(10, clock=clock)

    clock.now = 9.9
    deadline.check()
    clock.now = 10.0

    assert deadline.expired
    with pytest.raises(TaskTimeoutError, match="during analysis"):
        deadline.check("analysis")


def test_deadline_guard_stops_iteration() -> None:
    """Test that a guarded listing stops once the deadline passes."""
    clock = FakeClock()
    deadline = Deadline(5, clock=clock)
    seen = []

    def items():
        for i in range(10):
            seen.append(i)
            if i == 2:
                clock.now = 6
            yield i

    with pytest.raises(TaskTimeoutError):
        list(deadline.guard(items(), "object listing"))

    assert seen == [0, 1, 2]
