"""Error definitions for the adapter layer.

This module defines all adapter-specific exceptions with consistent
error codes that can be mapped across all source types.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for all adapters."""

    # Configuration errors
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_IDENTIFIER = "INVALID_IDENTIFIER"

    # Connection errors
    CONNECTION_FAILED = "CONNECTION_FAILED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    NOT_CONNECTED = "NOT_CONNECTED"

    # Permission errors
    ACCESS_DENIED = "ACCESS_DENIED"

    # Query errors
    QUERY_FAILED = "QUERY_FAILED"
    QUERY_TIMEOUT = "QUERY_TIMEOUT"
    QUERY_CANCELLED = "QUERY_CANCELLED"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"

    # Rate limiting
    RATE_LIMITED = "RATE_LIMITED"


class AdapterError(Exception):
    """Base exception for all adapter errors.

    Attributes:
        code: Standardized error code.
        message: Human-readable error message.
        details: Additional error details.
        retryable: Whether the operation can be retried by the caller.
        retry_after_seconds: Suggested wait time before retry.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        retry_after_seconds: int | None = None,
    ) -> None:
        """Initialize the adapter error."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API response."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details if self.details else None,
                "retryable": self.retryable,
                "retry_after_seconds": self.retry_after_seconds,
            }
        }


class ConfigurationError(AdapterError):
    """A required configuration field is missing or malformed.

    Raised before any network call is made.
    """

    def __init__(
        self,
        message: str = "Invalid configuration",
        field: str | None = None,
    ) -> None:
        """Initialize configuration error."""
        super().__init__(
            code=ErrorCode.INVALID_CONFIG,
            message=message,
            details={"field": field} if field else None,
            retryable=False,
        )
        self.field = field


class InvalidIdentifierError(AdapterError):
    """A table, schema or column name failed the identifier allow-list."""

    def __init__(
        self,
        field: str,
        value: str,
        message: str | None = None,
    ) -> None:
        """Initialize invalid identifier error."""
        super().__init__(
            code=ErrorCode.INVALID_IDENTIFIER,
            message=message or f"Invalid {field}: {value!r}",
            details={"field": field, "value": value},
            retryable=False,
        )
        self.field = field
        self.value = value


class ConnectionFailedError(AdapterError):
    """Failed to establish connection to data source."""

    def __init__(
        self,
        message: str = "Failed to connect to data source",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize connection failed error."""
        super().__init__(
            code=ErrorCode.CONNECTION_FAILED,
            message=message,
            details=details,
            retryable=True,
        )


class AuthenticationFailedError(AdapterError):
    """Authentication credentials were rejected."""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize authentication failed error."""
        super().__init__(
            code=ErrorCode.AUTHENTICATION_FAILED,
            message=message,
            details=details,
            retryable=False,
        )


class NotConnectedError(AdapterError):
    """An operation was attempted before a successful connect."""

    def __init__(self, source: str | None = None) -> None:
        """Initialize not connected error."""
        message = "Not connected. Call connect() first."
        if source:
            message = f"Not connected to {source}. Call connect() first."
        super().__init__(
            code=ErrorCode.NOT_CONNECTED,
            message=message,
            details={"source": source} if source else None,
            retryable=False,
        )


class AccessDeniedError(AdapterError):
    """Access to resource was denied."""

    def __init__(
        self,
        message: str = "Access denied",
        resource: str | None = None,
    ) -> None:
        """Initialize access denied error."""
        super().__init__(
            code=ErrorCode.ACCESS_DENIED,
            message=message,
            details={"resource": resource} if resource else None,
            retryable=False,
        )


class QueryError(AdapterError):
    """The backend rejected the query or returned a non-2xx response."""

    def __init__(
        self,
        message: str = "Query failed",
        query: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize query error."""
        details: dict[str, Any] = {}
        if query:
            details["query_preview"] = query[:200] if len(query) > 200 else query
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            code=ErrorCode.QUERY_FAILED,
            message=message,
            details=details if details else None,
            retryable=False,
        )
        self.status_code = status_code


class QueryTimeoutError(AdapterError):
    """Request to the backend timed out."""

    def __init__(
        self,
        message: str = "Query timed out",
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize query timeout error."""
        super().__init__(
            code=ErrorCode.QUERY_TIMEOUT,
            message=message,
            details={"timeout_seconds": timeout_seconds} if timeout_seconds else None,
            retryable=True,
        )


class QueryCancelledError(AdapterError):
    """An in-flight request was cancelled by disconnect."""

    def __init__(
        self,
        message: str = "Request was cancelled",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize query cancelled error."""
        super().__init__(
            code=ErrorCode.QUERY_CANCELLED,
            message=message,
            details=details,
            retryable=True,
        )


class UnsupportedOperationError(AdapterError):
    """A caller-supplied raw query is not read-only."""

    def __init__(
        self,
        message: str = "Only read-only queries are allowed",
        query: str | None = None,
    ) -> None:
        """Initialize unsupported operation error."""
        super().__init__(
            code=ErrorCode.UNSUPPORTED_OPERATION,
            message=message,
            details={"query_preview": query[:200]} if query else None,
            retryable=False,
        )


class RateLimitedError(AdapterError):
    """Request was rate limited."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after_seconds: int = 60,
    ) -> None:
        """Initialize rate limited error."""
        super().__init__(
            code=ErrorCode.RATE_LIMITED,
            message=message,
            retryable=True,
            retry_after_seconds=retry_after_seconds,
        )
