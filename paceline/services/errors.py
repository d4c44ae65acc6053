"""
Service layer exceptions.

Every failure the API client surfaces is an ApiError carrying a code from
the closed ErrorCode set, the HTTP status (when there was one), a retryable
flag and the raw response body.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    NETWORK_ERROR = "NETWORK_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    CLIENT_ERROR = "CLIENT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    TIMEOUT = "TIMEOUT"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"


class ServiceError(Exception):
    """Base exception for service layer errors."""

    pass


class ApiError(ServiceError):
    """A classified API failure."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status: int | None = None,
        retryable: bool = False,
        response: Any = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.retryable = retryable
        self.response = response
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "code": self.code.value,
            "message": self.message,
            "status": self.status,
            "retryable": self.retryable,
        }


class HttpStatusError(ApiError):
    """Server answered with a non-2xx status."""

    pass


class NetworkError(ApiError):
    """No response was received."""

    def __init__(self, message: str = "Network connection failed"):
        super().__init__(
            ErrorCode.NETWORK_ERROR,
            message,
            status=0,
            retryable=True,
        )


class CircuitOpenError(ApiError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, reset_after_seconds: float | None = None):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            ErrorCode.CIRCUIT_OPEN,
            "Service temporarily unavailable (circuit breaker open)",
            status=503,
            retryable=False,
        )


class RequestTimeoutError(ApiError):
    """Request timed out."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self.cancelled = False
        super().__init__(
            ErrorCode.TIMEOUT,
            f"Request timed out after {timeout}s",
            status=0,
            retryable=False,
        )


class RequestCancelledError(ApiError):
    """Request was aborted by the caller's cancel event."""

    def __init__(self):
        self.cancelled = True
        super().__init__(
            ErrorCode.TIMEOUT,
            "Request cancelled",
            status=0,
            retryable=False,
        )


# (code, message, retryable) per status
_STATUS_CODES: dict[int, tuple[ErrorCode, str, bool]] = {
    0: (ErrorCode.NETWORK_ERROR, "Network connection failed", True),
    401: (ErrorCode.UNAUTHORIZED, "Authentication required", False),
    403: (ErrorCode.FORBIDDEN, "Access denied", False),
    404: (ErrorCode.NOT_FOUND, "Resource not found", False),
    429: (
        ErrorCode.RATE_LIMITED,
        "Too many requests. Please try again later.",
        True,
    ),
}


def classify_status(status: int, response: Any = None) -> HttpStatusError:
    """Map an HTTP status code to a classified error."""
    if status in _STATUS_CODES:
        code, message, retryable = _STATUS_CODES[status]
    elif 400 <= status < 500:
        code, message, retryable = ErrorCode.CLIENT_ERROR, "Invalid request", False
    elif 500 <= status < 600:
        code, message, retryable = (
            ErrorCode.SERVER_ERROR,
            "Server error. Please try again.",
            True,
        )
    else:
        code, message, retryable = (
            ErrorCode.UNKNOWN_ERROR,
            "An unexpected error occurred",
            False,
        )

    return HttpStatusError(
        code,
        message,
        status=status,
        retryable=retryable,
        response=response,
    )
