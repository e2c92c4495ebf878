"""
Error Classification

Defines the single error type raised by the chain service and the
classification used to decide whether a failed remote call is worth retrying.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable machine-readable error codes."""

    # Bootstrap (fatal, never retried)
    MISSING_RPC_URL = "MISSING_RPC_URL"
    PROVIDER_INITIALIZATION_ERROR = "PROVIDER_INITIALIZATION_ERROR"
    INITIALIZATION_ERROR = "INITIALIZATION_ERROR"
    NOT_INITIALIZED = "NOT_INITIALIZED"

    # Transport
    RPC_ERROR = "RPC_ERROR"
    RPC_TRANSPORT_ERROR = "RPC_TRANSPORT_ERROR"

    # Contract binding
    INVALID_CONTRACT_ADDRESS = "INVALID_CONTRACT_ADDRESS"
    INVALID_ABI = "INVALID_ABI"
    UNKNOWN_FUNCTION = "UNKNOWN_FUNCTION"
    UNKNOWN_EVENT = "UNKNOWN_EVENT"
    CONTRACT_CALL_ERROR = "CONTRACT_CALL_ERROR"

    # Execution
    INVALID_RETRY_POLICY = "INVALID_RETRY_POLICY"
    OPERATION_FAILED = "OPERATION_FAILED"
    TRANSACTION_ERROR = "TRANSACTION_ERROR"


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    CONFIGURATION = "configuration"    # Missing or invalid setup
    NETWORK = "network"                # Network/connectivity issues
    RATE_LIMIT = "rate_limit"          # API rate limits
    TIMEOUT = "timeout"                # Operation timed out
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSACTION_REVERTED = "transaction_reverted"
    CONTRACT = "contract"              # ABI / call encoding problems
    PROVIDER = "provider"              # Endpoint returned an error object
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Classification of an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


_FATAL_CODES = {
    ErrorCode.MISSING_RPC_URL,
    ErrorCode.PROVIDER_INITIALIZATION_ERROR,
    ErrorCode.INITIALIZATION_ERROR,
    ErrorCode.NOT_INITIALIZED,
    ErrorCode.INVALID_CONTRACT_ADDRESS,
    ErrorCode.INVALID_ABI,
    ErrorCode.UNKNOWN_FUNCTION,
    ErrorCode.UNKNOWN_EVENT,
    ErrorCode.INVALID_RETRY_POLICY,
}


class ServiceError(Exception):
    """
    Tagged error raised by every component of the chain service.

    Carries a stable code, a human message, a UTC timestamp and a details
    payload. Wrapped exceptions are chained (``raise ... from exc``) and their
    text is kept under ``details["original_error"]``.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode | str = ErrorCode.TRANSACTION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        category: Optional[ErrorCategory] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        try:
            self.code = ErrorCode(code)
        except ValueError:
            self.code = code
        self.details: Dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(timezone.utc)
        if category is None:
            category = ErrorCategory.CONFIGURATION if self.code in _FATAL_CODES else ErrorCategory.UNKNOWN
        self.category = category
        if retryable is None:
            retryable = self.code not in _FATAL_CODES
        self.retryable = retryable

    @classmethod
    def wrap(
        cls,
        error: BaseException,
        message: str,
        code: ErrorCode | str,
        **details: Any,
    ) -> "ServiceError":
        """Build a ServiceError around ``error``; the caller chains it with ``from``."""
        context = classify_error(error)
        payload = {"original_error": str(error) or error.__class__.__name__, **details}
        retryable = context.recoverable if code not in _FATAL_CODES else False
        return cls(message, code=code, details=payload, category=context.category, retryable=retryable)

    @property
    def original_error(self) -> Optional[BaseException]:
        return self.__cause__

    def to_dict(self) -> Dict[str, Any]:
        code = self.code.value if isinstance(self.code, ErrorCode) else self.code
        return {
            "code": code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }

    def __str__(self) -> str:
        code = self.code.value if isinstance(self.code, ErrorCode) else self.code
        return f"[{code}] {self.message}"


def classify_error(error: BaseException) -> ErrorContext:
    """
    Classify an exception and return its error context.

    ServiceErrors carry their own classification; anything else is
    classified from its type and message.
    """
    if isinstance(error, ServiceError):
        return ErrorContext(
            category=error.category,
            recoverable=error.retryable,
            details=error.details,
        )

    if isinstance(error, (TimeoutError, ConnectionError)):
        category = ErrorCategory.TIMEOUT if isinstance(error, TimeoutError) else ErrorCategory.NETWORK
        return ErrorContext(category=category, recoverable=True, suggested_action="Retry operation")

    message = str(error).lower()

    rate_limit_patterns = ["rate limit", "too many requests", "429", "throttl", "quota exceeded"]
    if any(p in message for p in rate_limit_patterns):
        return ErrorContext(
            category=ErrorCategory.RATE_LIMIT,
            recoverable=True,
            suggested_action="Wait before retrying",
        )

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in message for p in timeout_patterns):
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=True,
            suggested_action="Retry with longer timeout",
        )

    network_patterns = ["connection", "network", "unreachable", "refused", "dns", "socket", "ssl"]
    if any(p in message for p in network_patterns):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Check network connectivity",
        )

    funds_patterns = ["insufficient funds", "not enough", "balance too low", "exceeds balance"]
    if any(p in message for p in funds_patterns):
        return ErrorContext(
            category=ErrorCategory.INSUFFICIENT_FUNDS,
            recoverable=False,
            suggested_action="Add funds to the signing account",
        )

    revert_patterns = ["revert", "execution reverted", "out of gas", "invalid opcode"]
    if any(p in message for p in revert_patterns):
        return ErrorContext(
            category=ErrorCategory.TRANSACTION_REVERTED,
            recoverable=False,
            suggested_action="Review transaction parameters",
        )

    # Default to unknown but recoverable
    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=True,
        suggested_action="Retry operation",
    )


def is_transient(error: BaseException) -> bool:
    """Retry predicate: true for failures a later attempt might not hit."""
    return classify_error(error).recoverable
