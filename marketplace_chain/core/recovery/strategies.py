"""
Retry Policies

Backoff schedules and the immutable policy consumed by the retry executor.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ErrorCode, ServiceError

BackoffFn = Callable[[int], float]
RetryPredicate = Callable[[BaseException], bool]


def linear_backoff(base_delay: float) -> BackoffFn:
    """Attempt 1 waits ``base_delay``, attempt 2 waits ``2 * base_delay``, ..."""

    def backoff(attempt: int) -> float:
        return base_delay * attempt

    return backoff


def exponential_backoff(
    base_delay: float,
    factor: float = 2.0,
    max_delay: float = 60.0,
) -> BackoffFn:
    """Attempt 1 waits ``base_delay``, then grows by ``factor`` up to ``max_delay``."""

    def backoff(attempt: int) -> float:
        return min(base_delay * (factor ** (attempt - 1)), max_delay)

    return backoff


def constant_backoff(delay: float) -> BackoffFn:
    def backoff(attempt: int) -> float:
        return delay

    return backoff


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for one retry sequence.

    ``backoff_fn`` maps the number of the attempt that just failed to the
    delay in seconds before the next one; None means linear backoff over
    ``base_delay``. ``retry_if`` decides whether a failure may be retried;
    None retries every failure. With ``wrap_errors`` the final failure is
    re-raised as a ServiceError chained from the original exception.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_fn: Optional[BackoffFn] = None
    retry_if: Optional[RetryPredicate] = None
    wrap_errors: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ServiceError(
                f"max_attempts must be a positive integer, got {self.max_attempts!r}",
                code=ErrorCode.INVALID_RETRY_POLICY,
            )
        if self.base_delay < 0:
            raise ServiceError(
                f"base_delay must not be negative, got {self.base_delay!r}",
                code=ErrorCode.INVALID_RETRY_POLICY,
            )

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        backoff = self.backoff_fn or linear_backoff(self.base_delay)
        return max(float(backoff(attempt)), 0.0)

    def should_retry(self, error: BaseException) -> bool:
        if self.retry_if is None:
            return True
        return bool(self.retry_if(error))


DEFAULT_RETRY_POLICY = RetryPolicy()
