"""
Shared error handling for the RedditView access layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: Optional[str] = None
    retry_after: Optional[int] = None


class ForwarderError(Exception):
    """Base exception for access layer services."""

    status_code = 500
    cache_status: Optional[str] = None

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.code, message=self.message)

    def response_headers(self) -> Dict[str, str]:
        """Extra headers to send along with the error body."""
        if self.cache_status:
            return {"X-Cache": self.cache_status}
        return {}


class ClientError(ForwarderError):
    """Malformed inbound request."""

    status_code = 400

    def __init__(self, message: str = "Bad request", details: Optional[Dict[str, Any]] = None):
        super().__init__("bad_request", message, details)


class UpstreamThrottled(ForwarderError):
    """Upstream kept rate limiting after every retry."""

    status_code = 429

    def __init__(self, retry_after: int, message: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.retry_after = retry_after
        super().__init__(
            "rate_limited",
            message or f"Upstream is rate limiting requests. Please wait {retry_after} seconds before retrying.",
            details
        )

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.code, message=self.message, retry_after=self.retry_after)

    def response_headers(self) -> Dict[str, str]:
        headers = super().response_headers()
        headers["Retry-After"] = str(self.retry_after)
        return headers


class UpstreamUnavailable(ForwarderError):
    """Connection-level failure talking to upstream."""

    status_code = 502

    def __init__(self, message: str = "Upstream connection failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "upstream_unavailable"):
        super().__init__(code, message, details)


class UpstreamTimeout(UpstreamUnavailable):
    """Upstream did not answer within the timeout."""

    status_code = 504

    def __init__(self, message: str = "Upstream request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="upstream_timeout")
