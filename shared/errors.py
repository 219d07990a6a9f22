"""
Shared error handling for the RetroLens access layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import session_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    session_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class RetroLensError(Exception):
    """Base exception for the access layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            session_id=session_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(RetroLensError):
    """Authentication-related errors."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class TokenUnavailableError(RetroLensError):
    """The identity provider returned no token."""

    def __init__(self, message: str = "No authentication token available", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_UNAVAILABLE", message, details)


class SyncTransportError(RetroLensError):
    """Network or backend failure while upserting the identity."""

    def __init__(self, message: str = "Backend user sync failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SYNC_TRANSPORT_FAILURE", message, details)


class SignOutError(RetroLensError):
    """The identity provider failed to sign out."""

    def __init__(self, message: str = "Sign out failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SIGN_OUT_FAILURE", message, details)


class CacheFetchError(RetroLensError):
    """A cached fetch failed after exhausting its retry budget."""

    def __init__(self, key: Any, cause: BaseException, attempts: int = 1):
        self.key = key
        self.cause = cause
        self.attempts = attempts
        super().__init__(
            "CACHE_FETCH_FAILURE",
            str(cause) or cause.__class__.__name__,
            {"key": list(key) if isinstance(key, tuple) else key, "attempts": attempts},
        )


class ApiError(RetroLensError):
    """Backend API errors; status 0 means the server was unreachable."""

    def __init__(self, status: int, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.status = status
        super().__init__(
            "API_ERROR",
            message or get_default_error_message(status),
            {"status": status, **(details or {})},
        )


def get_default_error_message(status: int) -> str:
    """Get default error message based on HTTP status code."""
    messages = {
        0: "Network error: Unable to connect to server",
        400: "Bad request - please check your input",
        401: "Authentication required - please sign in",
        403: "Access forbidden - you don't have permission",
        404: "Resource not found",
        409: "Conflict - resource already exists",
        429: "Too many requests - please try again later",
        500: "Internal server error - please try again later",
        502: "Bad gateway - service temporarily unavailable",
        503: "Service unavailable - please try again later",
        504: "Request timeout - please try again",
    }
    return messages.get(status, "An error occurred - please try again")


def is_network_error(error: ApiError) -> bool:
    return error.status == 0


def is_auth_error(error: ApiError) -> bool:
    return error.status in (401, 403)


def is_client_error(error: ApiError) -> bool:
    return 400 <= error.status < 500


def is_server_error(error: ApiError) -> bool:
    return error.status >= 500


def is_retryable(error: BaseException) -> bool:
    """Client errors are final; everything else may succeed on a retry."""
    if isinstance(error, ApiError) and is_client_error(error):
        return error.status in (408, 429)
    return True


def get_user_friendly_message(error: ApiError) -> str:
    """Get a message suitable for display next to stale data."""
    if is_network_error(error):
        return "Please check your internet connection and try again."
    if is_auth_error(error):
        return "Please sign in to continue."
    if is_client_error(error):
        return error.message
    if is_server_error(error):
        return "Something went wrong on our end. Please try again later."
    return error.message
