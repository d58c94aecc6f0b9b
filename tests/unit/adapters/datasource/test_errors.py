"""Tests for adapter error classes."""

from gameinsights.adapters.datasource.errors import (
    AccessDeniedError,
    AdapterError,
    AuthenticationFailedError,
    ConfigurationError,
    ConnectionFailedError,
    ErrorCode,
    InvalidIdentifierError,
    NotConnectedError,
    QueryCancelledError,
    QueryError,
    QueryTimeoutError,
    RateLimitedError,
    UnsupportedOperationError,
)


class TestAdapterError:
    """Tests for the AdapterError base class."""

    def test_to_dict(self):
        """Errors serialize to an API-friendly dict."""
        error = AdapterError(
            code=ErrorCode.QUERY_FAILED,
            message="boom",
            details={"status_code": 500},
        )

        assert error.to_dict() == {
            "error": {
                "code": "QUERY_FAILED",
                "message": "boom",
                "details": {"status_code": 500},
                "retryable": False,
                "retry_after_seconds": None,
            }
        }

    def test_empty_details_serialize_as_none(self):
        """Missing details become None in the dict."""
        error = AdapterError(code=ErrorCode.QUERY_FAILED, message="boom")

        assert error.to_dict()["error"]["details"] is None
        assert str(error) == "boom"


class TestErrorSubclasses:
    """Tests for the concrete error types."""

    def test_configuration_error(self):
        """Configuration errors name the offending field."""
        error = ConfigurationError("bad endpoint", field="endpoint")

        assert error.code == ErrorCode.INVALID_CONFIG
        assert error.field == "endpoint"
        assert error.details == {"field": "endpoint"}
        assert error.retryable is False

    def test_invalid_identifier_error(self):
        """Invalid identifiers carry field and value."""
        error = InvalidIdentifierError(field="column", value="a;b")

        assert error.code == ErrorCode.INVALID_IDENTIFIER
        assert error.details == {"field": "column", "value": "a;b"}
        assert "a;b" in error.message

    def test_retryable_flags(self):
        """Transient failures are retryable, caller mistakes are not."""
        assert ConnectionFailedError().retryable is True
        assert QueryTimeoutError(timeout_seconds=30).retryable is True
        assert QueryCancelledError().retryable is True
        assert RateLimitedError().retryable is True
        assert AuthenticationFailedError().retryable is False
        assert AccessDeniedError().retryable is False
        assert QueryError().retryable is False
        assert UnsupportedOperationError().retryable is False
        assert NotConnectedError().retryable is False

    def test_not_connected_message(self):
        """NotConnectedError names the source when given."""
        assert NotConnectedError("file").message == "Not connected to file. Call connect() first."
        assert NotConnectedError().code == ErrorCode.NOT_CONNECTED

    def test_query_error_status_code(self):
        """QueryError keeps the HTTP status and truncates the query preview."""
        error = QueryError("failed", query="x" * 500, status_code=502)

        assert error.status_code == 502
        assert error.details["status_code"] == 502
        assert len(error.details["query_preview"]) == 200

    def test_rate_limited_retry_after(self):
        """RateLimitedError exposes retry_after_seconds."""
        error = RateLimitedError(retry_after_seconds=5)

        assert error.code == ErrorCode.RATE_LIMITED
        assert error.retry_after_seconds == 5

    def test_all_errors_are_adapter_errors(self):
        """Every error derives from AdapterError."""
        for error in (
            ConfigurationError(),
            ConnectionFailedError(),
            AccessDeniedError(),
            QueryTimeoutError(),
        ):
            assert isinstance(error, AdapterError)
