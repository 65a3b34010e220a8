"""Custom error types and error handling utilities."""

import asyncio
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better handling."""
    NETWORK = "network"
    VALIDATION = "validation"
    STORAGE = "storage"
    PROVIDER = "provider"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class ErrorKind(str, Enum):
    """Failure kinds reported as values between pipeline stages."""
    NO_PROVIDER_AVAILABLE = "no_provider_available"
    LIMIT_EXCEEDED = "limit_exceeded"
    PROVIDER_TIMEOUT = "provider_timeout"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    NO_SUITABLE_RESPONSE = "no_suitable_response"

    @property
    def retryable(self) -> bool:
        """Whether substituting another provider may succeed."""
        return self in (
            ErrorKind.LIMIT_EXCEEDED,
            ErrorKind.PROVIDER_TIMEOUT,
            ErrorKind.NETWORK_ERROR,
        )


class EconomicaError(Exception):
    """Base exception for the service."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        retry_after: Optional[int] = None
    ):
        """Initialize error."""
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.timestamp = datetime.now(timezone.utc)
        self.traceback = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/response."""
        return {
            "error": self.message,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "timestamp": self.timestamp.isoformat(),
            "traceback": self.traceback if self.details.get("include_traceback") else None
        }


class KnowledgeValidationError(EconomicaError):
    """A knowledge entry failed authoring validation."""

    def __init__(self, message: str, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            details={"errors": errors, "warnings": warnings or []},
            recoverable=False
        )
        self.errors = errors
        self.warnings = warnings or []


class EntryNotFoundError(EconomicaError):
    """Requested knowledge entry does not exist."""

    def __init__(self, entry_id: str):
        super().__init__(
            message=f"Knowledge entry not found: {entry_id}",
            category=ErrorCategory.NOT_FOUND,
            details={"entry_id": entry_id},
            recoverable=False
        )
        self.entry_id = entry_id


class StorageBackendError(EconomicaError):
    """A cache storage adapter failed."""

    def __init__(self, message: str, adapter: Optional[str] = None, operation: Optional[str] = None):
        details = {}
        if adapter:
            details["adapter"] = adapter
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            details=details,
            recoverable=True
        )


class StorageQuotaExceededError(StorageBackendError):
    """A write would exceed the adapter's size quota."""

    def __init__(self, adapter: str, requested: int, available: int):
        super().__init__(
            message=f"Quota exceeded on {adapter}: requested {requested} bytes, {available} available",
            adapter=adapter,
            operation="set",
        )
        self.details.update({"requested": requested, "available": available})


class ProviderClientError(EconomicaError):
    """Transport-level failure talking to a premium provider."""

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        details: Dict[str, Any] = {}
        if provider:
            details["provider"] = provider
        if status_code:
            details["status_code"] = status_code

        recoverable = status_code not in [400, 401, 403, 404] if status_code else True

        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            details=details,
            recoverable=recoverable
        )


class ProviderLimitError(EconomicaError):
    """The provider itself reported that our quota is spent."""

    def __init__(self, message: str, provider: Optional[str] = None, retry_after: Optional[int] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.RATE_LIMIT,
            details={"provider": provider, "retry_after": retry_after},
            recoverable=True,
            retry_after=retry_after
        )


# Keywords checked against the message of exceptions we don't own
_LIMIT_KEYWORDS = ("rate limit", "too many requests", "429", "quota")
_NETWORK_KEYWORDS = ("connection", "network", "refused", "unreachable", "reset")


def categorize_error(error: BaseException) -> ErrorKind:
    """Map an exception raised by a provider call onto an ErrorKind."""
    if isinstance(error, ProviderLimitError):
        return ErrorKind.LIMIT_EXCEEDED
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.PROVIDER_TIMEOUT
    if isinstance(error, (ProviderClientError, ConnectionError, OSError)):
        return ErrorKind.NETWORK_ERROR
    if isinstance(error, KnowledgeValidationError):
        return ErrorKind.VALIDATION_ERROR

    error_str = str(error).lower()
    if any(keyword in error_str for keyword in _LIMIT_KEYWORDS):
        return ErrorKind.LIMIT_EXCEEDED
    if "timeout" in error_str or "timed out" in error_str:
        return ErrorKind.PROVIDER_TIMEOUT
    if any(keyword in error_str for keyword in _NETWORK_KEYWORDS):
        return ErrorKind.NETWORK_ERROR

    return ErrorKind.NO_SUITABLE_RESPONSE
