"""Error taxonomy for the GPU metrics API client.

Every transport failure is normalized into one of these exceptions before it
reaches the query cache. Retry decisions are made on ``kind``, never on the
message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Category of an API failure."""

    TIMEOUT = "TIMEOUT"  # Request exceeded the transport timeout
    NETWORK = "NETWORK"  # No response at the transport level
    NOT_FOUND = "NOT_FOUND"  # HTTP 404
    SERVER = "SERVER"  # HTTP 500
    UNAVAILABLE = "UNAVAILABLE"  # HTTP 503
    HTTP = "HTTP"  # Any other non-2xx status
    INVALID_RESPONSE = "INVALID_RESPONSE"  # 2xx with a body that is not JSON


class ApiError(Exception):
    """Base exception raised when a call to the GPU metrics API fails."""

    kind: ErrorKind = ErrorKind.HTTP
    default_message: str = "API error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message or self.default_message
        self.status_code = status_code
        self.cause = cause
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Whether the query cache may retry after this failure."""
        return self.kind is not ErrorKind.NOT_FOUND

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
        }


class RequestTimeoutError(ApiError, TimeoutError):
    kind = ErrorKind.TIMEOUT
    default_message = "Request timeout"


class NetworkError(ApiError):
    kind = ErrorKind.NETWORK
    default_message = "Network error"


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND
    default_message = "API endpoint not found"


class ServerError(ApiError):
    kind = ErrorKind.SERVER
    default_message = "Server error"


class UnavailableError(ApiError):
    kind = ErrorKind.UNAVAILABLE
    default_message = "Service unavailable"


class HTTPStatusError(ApiError):
    """Non-2xx response without a dedicated exception type."""

    kind = ErrorKind.HTTP

    def __init__(self, status_code: int, *, cause: Optional[Exception] = None):
        super().__init__(f"HTTP error: {status_code}", status_code=status_code, cause=cause)


class InvalidResponseError(ApiError):
    kind = ErrorKind.INVALID_RESPONSE
    default_message = "Invalid response body"


_STATUS_ERRORS = {
    404: NotFoundError,
    500: ServerError,
    503: UnavailableError,
}


def error_for_status(status_code: int, cause: Optional[Exception] = None) -> ApiError:
    """Build the exception matching a non-2xx HTTP status."""
    error_cls = _STATUS_ERRORS.get(status_code)
    if error_cls is None:
        return HTTPStatusError(status_code, cause=cause)
    return error_cls(status_code=status_code, cause=cause)
