"""
Shared error handling for the resilient cache service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from cache_common.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheServiceException(Exception):
    """Base exception for the cache service."""

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


class ConfigInvalidError(CacheServiceException):
    """Configuration could not be validated."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIG_INVALID", message, details)


class ValidationError(CacheServiceException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotConnectedError(CacheServiceException):
    """No live connection to the remote store."""

    code_name = "NOT_CONNECTED"

    def __init__(self, state: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.state = state
        super().__init__(
            self.code_name,
            message or f"Remote store is not connected (state={state})",
            {"state": state, **(details or {})}
        )


class PermanentlyFailedError(NotConnectedError):
    """Reconnect budget exhausted; only an explicit start() recovers."""

    code_name = "CONNECTION_PERMANENTLY_FAILED"


class AlreadyClosedError(NotConnectedError):
    """The connection manager has been shut down."""

    code_name = "CONNECTION_CLOSED"


class UnavailableError(CacheServiceException):
    """Cache operation could not be served by any store."""

    def __init__(self, message: str = "Cache unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_UNAVAILABLE", message, details)


class TransportError(CacheServiceException):
    """A command failed while in flight against the remote store."""

    def __init__(self, operation: str, message: str = "Transport error", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("TRANSPORT_ERROR", f"{operation}: {message}", details)
