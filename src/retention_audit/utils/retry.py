"""Bounded retry with fixed backoff for remote calls."""

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from retention_audit.providers.base import (
    AuthenticationError,
    CredentialRenewalError,
    RetryExhaustedError,
    TaskTimeoutError,
)
from retention_audit.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

NON_RETRYABLE = (AuthenticationError, CredentialRenewalError)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters handed to every worker."""

    max_attempts: int = 3
    delay: float = 5.0
    retry_auth_errors: bool = True


def _should_retry(retry_auth_errors: bool) -> Callable[[BaseException], bool]:
    def predicate(error: BaseException) -> bool:
        if not isinstance(error, Exception) or isinstance(error, TaskTimeoutError):
            return False
        if not retry_auth_errors and isinstance(error, NON_RETRYABLE):
            return False
        return True

    return predicate


def _log_retry(description: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retry_scheduled",
            operation=description,
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            delay=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error),
        )

    return before_sleep


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    delay: float = 5.0,
    description: str = "remote call",
    retry_auth_errors: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a remote call, retrying on failure with a fixed delay.

    Every remote error is retried identically unless ``retry_auth_errors`` is
    False, in which case authentication and credential renewal errors are
    raised on the first occurrence. An expired task deadline is never retried.

    Args:
        operation: Zero-argument callable performing the remote call.
        max_attempts: Total number of attempts, including the first.
        delay: Seconds to wait between attempts.
        description: Operation name used in logs and errors.
        retry_auth_errors: Whether authentication failures are retried too.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The operation's return value.

    Raises:
        RetryExhaustedError: If all attempts failed. Chained from the last error.
        ValueError: If max_attempts < 1 or delay < 0.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if delay < 0:
        raise ValueError("delay cannot be negative")

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(delay),
        retry=retry_if_exception(_should_retry(retry_auth_errors)),
        before_sleep=_log_retry(description, max_attempts),
        sleep=sleep,
        reraise=False,
    )

    try:
        return retrying(operation)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(
            "retry_exhausted",
            operation=description,
            attempts=max_attempts,
            error=str(last_error),
        )
        raise RetryExhaustedError(description, max_attempts, last_error) from last_error


def call_with_policy(
    operation: Callable[[], T],
    policy: RetryPolicy,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``with_retry`` using the parameters of a RetryPolicy."""
    return with_retry(
        operation,
        max_attempts=policy.max_attempts,
        delay=policy.delay,
        description=description,
        retry_auth_errors=policy.retry_auth_errors,
        sleep=sleep,
    )
