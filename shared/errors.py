"""
Shared error handling for the Inventory Cache Layer.
"""

from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class CacheLayerException(Exception):
    """Base exception for Inventory Cache Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(CacheLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(CacheLayerException):
    """Requested item is not in the current snapshot."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StoreUnavailable(CacheLayerException):
    """Cache backend unreachable, timed out, or holding an unreadable value."""

    status_code = 503

    def __init__(self, operation: str, message: str = "Cache store unavailable",
                 details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("STORE_UNAVAILABLE", f"{operation}: {message}", details)


class UpstreamError(CacheLayerException):
    """Failure while fetching from the upstream reporting API."""

    status_code = 502
    retryable = False

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, f"upstream: {message}", details)


class UpstreamTimeout(UpstreamError):
    """Upstream did not answer within the hard request timeout."""

    status_code = 504
    retryable = True

    def __init__(self, message: str = "Request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_TIMEOUT", message, details)


class UpstreamUnavailable(UpstreamError):
    """Transient network failure or 5xx answer from upstream."""

    retryable = True

    def __init__(self, message: str = "Upstream unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_UNAVAILABLE", message, details)


class UpstreamAuthFailure(UpstreamError):
    """Upstream rejected the configured credentials."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_AUTH_FAILURE", message, details)


class UpstreamMalformed(UpstreamError):
    """Upstream answered with a body that is not a tabular report."""

    def __init__(self, message: str = "Malformed response", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_MALFORMED", message, details)


class UpstreamRateLimited(UpstreamError):
    """Upstream refused the request because of its rate limit."""

    status_code = 503

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_RATE_LIMITED", message, details)


class NoDataAvailable(CacheLayerException):
    """Nothing cached and the upstream fetch failed."""

    status_code = 503

    def __init__(self, key: str, cause: Optional[UpstreamError] = None):
        details: Dict[str, Any] = {"key": key}
        if cause is not None:
            details["cause"] = cause.code
            details["cause_message"] = cause.message
        super().__init__("NO_DATA_AVAILABLE", f"No inventory data available for {key}", details)
        self.cause = cause
