"""
Shared error handling for the Generic Cache Server.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheServerException(Exception):
    """Base exception for cache server operations."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class UnauthorizedError(CacheServerException):
    """Missing or unrecognised access token."""

    status_code = 401

    def __init__(self, message: str = "Bad token", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHORIZED", message, details)


class BadRequestError(CacheServerException):
    """Request that cannot be forwarded as described."""

    status_code = 400

    def __init__(self, message: str = "Unknown/invalid method", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_REQUEST", message, details)


class TransportError(CacheServerException):
    """Outbound call could not complete."""

    status_code = 502

    def __init__(self, url: str, message: str = "Outbound request failed", details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("url", url)
        super().__init__("TRANSPORT_FAILURE", message, details)


class DecodeError(CacheServerException):
    """Response body is not valid JSON."""

    status_code = 502

    def __init__(self, key: str, message: str = "Response body is not valid JSON", details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("key", key)
        super().__init__("DECODE_FAILURE", message, details)
