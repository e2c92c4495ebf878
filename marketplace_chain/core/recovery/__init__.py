"""
Error Recovery Module

Provides the service error type, error classification, retry policies
and the retry executor used around every remote chain operation.
"""

from .errors import (
    ErrorCategory,
    ErrorCode,
    ErrorContext,
    ServiceError,
    classify_error,
    is_transient,
)
from .executor import RetryExecutor, execute_with_retry
from .strategies import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    constant_backoff,
    exponential_backoff,
    linear_backoff,
)

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorCode",
    "ErrorContext",
    "ServiceError",
    "classify_error",
    "is_transient",
    # Executor
    "RetryExecutor",
    "execute_with_retry",
    # Policies
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "constant_backoff",
    "exponential_backoff",
    "linear_backoff",
]
