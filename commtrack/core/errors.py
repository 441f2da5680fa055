"""
Error Hierarchy for the Communications-Tracking Data Layer

Design Principles:
- Forbid exceptions for control flow (stores return Result types)
- Keep the four failure kinds distinguishable by type and code:
    * ValidationError  - malformed input, rejected before any store access
    * StorageError     - connectivity/write failures, propagated unmodified
    * QueryError       - malformed cursor or paging arguments
    * (not-found is a result value, never an error)
- Carry the original driver exception in `cause`

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with logs

Usage:
    result = await store.update_event_status(...)
    match result:
        case Ok(True):
            ...
        case Ok(False):
            handle_not_found()
        case Err(StorageError() as e) if e.retryable:
            schedule_retry()
        case Err(ValidationError() as e):
            reject(e)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage errors
    - 2xxx: Validation errors
    - 3xxx: Query errors
    - 9xxx: Internal/configuration errors
    """

    # Storage errors (1xxx)
    STORAGE_CONNECTION_FAILED = 1001
    STORAGE_TIMEOUT = 1002
    STORAGE_DUPLICATE_KEY = 1003
    STORAGE_WRITE_FAILED = 1004
    STORAGE_NOT_CONNECTED = 1005
    STORAGE_OPERATION_FAILED = 1006

    # Validation errors (2xxx)
    VALIDATION_MISSING_FIELD = 2001
    VALIDATION_INVALID_FIELD = 2002
    VALIDATION_MALFORMED_DOCUMENT = 2003

    # Query errors (3xxx)
    QUERY_MALFORMED_CURSOR = 3001
    QUERY_INVALID_PAGE_SIZE = 3002

    # Internal errors (9xxx)
    INTERNAL_CONFIGURATION_ERROR = 9001
    INTERNAL_DEPENDENCY_UNAVAILABLE = 9002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class CommsError(Exception):
    """
    Base class for all data layer errors.

    Provides:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Whether a caller may safely retry an idempotent operation."""
        return False

    def with_context(self, **kwargs: Any) -> CommsError:
        """Add context to error (returns new instance of the same type)."""
        return type(self)(
            code=self.code,
            message=self.message,
            error_id=self.error_id,
            timestamp=self.timestamp,
            cause=self.cause,
            context={**self.context, **kwargs},
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error to dictionary for logging/API responses.

        Excludes the cause stack trace.
        """
        return {
            "error_id": self.error_id,
            "kind": type(self).__name__,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# VALIDATION ERRORS (CLIENT INPUT)
# =============================================================================
@dataclass
class ValidationError(CommsError):
    """
    Malformed or missing input.

    Raised (or returned) before any store access; maps to a client error
    at the transport layer.
    """

    @classmethod
    def missing_field(cls, field_name: str) -> ValidationError:
        """Required field absent."""
        return cls(
            code=ErrorCode.VALIDATION_MISSING_FIELD,
            message=f"Missing required field '{field_name}'",
            context={"field": field_name},
        )

    @classmethod
    def invalid_field(
        cls,
        field_name: str,
        value: Any,
        reason: str,
    ) -> ValidationError:
        """Field present but unparsable or out of range."""
        return cls(
            code=ErrorCode.VALIDATION_INVALID_FIELD,
            message=f"Invalid value for '{field_name}': {reason}",
            context={"field": field_name, "value": repr(value)[:100], "reason": reason},
        )

    @classmethod
    def malformed_document(
        cls,
        kind: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> ValidationError:
        """Stored document does not match the expected record shape."""
        return cls(
            code=ErrorCode.VALIDATION_MALFORMED_DOCUMENT,
            message=f"Malformed {kind} document: {reason}",
            cause=cause,
            context={"kind": kind, "reason": reason},
        )


# =============================================================================
# STORAGE ERRORS (DOCUMENT STORE)
# =============================================================================
_RETRYABLE_STORAGE_CODES = frozenset({
    ErrorCode.STORAGE_CONNECTION_FAILED,
    ErrorCode.STORAGE_TIMEOUT,
})


@dataclass
class StorageError(CommsError):
    """
    Errors from the document store.

    Propagated to the caller unmodified; this layer never retries.
    `retryable` marks transient failures, but only status updates and
    replaces are safe to retry: a blind append retry double-appends.
    """

    @property
    def retryable(self) -> bool:
        return self.code in _RETRYABLE_STORAGE_CODES

    @classmethod
    def connection_failed(
        cls,
        target: str,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Store unreachable."""
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Failed to reach document store at {target}",
            cause=cause,
            context={"target": target},
        )

    @classmethod
    def not_connected(cls, operation: str) -> StorageError:
        """Operation attempted before connect() or after close()."""
        return cls(
            code=ErrorCode.STORAGE_NOT_CONNECTED,
            message=f"Store not connected (operation '{operation}')",
            context={"operation": operation},
        )

    @classmethod
    def timeout(
        cls,
        operation: str,
        duration_ms: int,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Operation exceeded its time budget."""
        return cls(
            code=ErrorCode.STORAGE_TIMEOUT,
            message=f"Operation '{operation}' timed out after {duration_ms}ms",
            cause=cause,
            context={"operation": operation, "duration_ms": duration_ms},
        )

    @classmethod
    def duplicate_key(
        cls,
        collection: str,
        key: Any,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Unique index or primary key violated."""
        return cls(
            code=ErrorCode.STORAGE_DUPLICATE_KEY,
            message=f"Duplicate key {key!r} in collection '{collection}'",
            cause=cause,
            context={"collection": collection, "key": repr(key)},
        )

    @classmethod
    def write_failed(
        cls,
        operation: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Write rejected by the store."""
        return cls(
            code=ErrorCode.STORAGE_WRITE_FAILED,
            message=f"Write '{operation}' failed: {reason}",
            cause=cause,
            context={"operation": operation},
        )

    @classmethod
    def operation_failed(
        cls,
        operation: str,
        cause: BaseException,
    ) -> StorageError:
        """Any other store-side failure."""
        return cls(
            code=ErrorCode.STORAGE_OPERATION_FAILED,
            message=f"Operation '{operation}' failed: {cause}",
            cause=cause,
            context={"operation": operation},
        )


# =============================================================================
# QUERY ERRORS (READ PATH)
# =============================================================================
@dataclass
class QueryError(CommsError):
    """Errors in paging arguments on the read path."""

    @classmethod
    def malformed_cursor(cls, cursor: Any, reason: str) -> QueryError:
        """Pagination cursor is not a valid user id."""
        return cls(
            code=ErrorCode.QUERY_MALFORMED_CURSOR,
            message=f"Malformed cursor: {reason}",
            context={"cursor": repr(cursor)[:50], "reason": reason},
        )

    @classmethod
    def invalid_page_size(cls, page_size: Any, maximum: int) -> QueryError:
        """Page size outside [1, maximum]."""
        return cls(
            code=ErrorCode.QUERY_INVALID_PAGE_SIZE,
            message=f"page_size must be in [1, {maximum}], got {page_size!r}",
            context={"page_size": repr(page_size), "maximum": maximum},
        )


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================
@dataclass
class ConfigurationError(CommsError):
    """Invalid configuration or missing optional dependency."""

    @classmethod
    def invalid(cls, reason: str) -> ConfigurationError:
        return cls(
            code=ErrorCode.INTERNAL_CONFIGURATION_ERROR,
            message=f"Configuration error: {reason}",
        )

    @classmethod
    def dependency_unavailable(cls, package: str, hint: str) -> ConfigurationError:
        return cls(
            code=ErrorCode.INTERNAL_DEPENDENCY_UNAVAILABLE,
            message=f"{package} package not installed: {hint}",
            context={"package": package},
        )
