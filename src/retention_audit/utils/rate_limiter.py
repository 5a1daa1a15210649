"""Token bucket rate limiter shared by all worker adapters."""

import time
from threading import Lock
from typing import Callable, Optional


class RateLimiter:
    """Token bucket rate limiter.

    One instance is shared by every provider built during a run, so the
    account-wide request rate stays bounded no matter how many workers
    are listing at once. Only the token arithmetic happens under the lock;
    waiting happens outside it.
    """

    def __init__(
        self,
        rate: float,
        capacity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize rate limiter.

        Args:
            rate: Maximum requests per second.
            capacity: Maximum burst capacity. Defaults to rate.
            clock: Monotonic clock, replaceable in tests.
            sleep: Sleep function, replaceable in tests.
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = capacity if capacity is not None else max(int(rate), 1)
        self.tokens = float(self.capacity)
        self.clock = clock
        self.sleep = sleep
        self.last_update = clock()
        self.lock = Lock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self.last_update
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_update = now

    def acquire(self, tokens: int = 1) -> None:
        """Acquire tokens, blocking until they are available.

        Args:
            tokens: Number of tokens to acquire.
        """
        while True:
            with self.lock:
                self._refill()
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                wait_time = (tokens - self.tokens) / self.rate
            self.sleep(wait_time)

    def try_acquire(self, tokens: int = 1) -> bool:
        """Try to acquire tokens without blocking.

        Args:
            tokens: Number of tokens to acquire.

        Returns:
            True if tokens were acquired, False otherwise.
        """
        with self.lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False
