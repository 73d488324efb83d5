"""
Shared error handling for the Market Data Gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class GatewayException(Exception):
    """Base exception for the gateway."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(GatewayException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UpstreamError(GatewayException):
    """A single upstream attempt failed. Retryable."""


class RateLimitedError(UpstreamError):
    """Upstream explicitly throttled the request (HTTP 429)."""

    def __init__(self, message: str = "Upstream rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMITED", message, details)


class TransientFailureError(UpstreamError):
    """Network error, timeout, or unexpected upstream status."""

    def __init__(self, message: str = "Upstream request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_FAILURE", message, details)


class FetchError(GatewayException):
    """Raised when the retry budget for a request is exhausted."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        details = {"attempts": attempts, "last_error": str(last_exception)}
        if isinstance(last_exception, GatewayException):
            details["last_error_code"] = last_exception.code
        super().__init__("EXHAUSTED", message, details)
        self.last_exception = last_exception
        self.attempts = attempts
