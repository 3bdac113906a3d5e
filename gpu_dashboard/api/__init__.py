"""GPU metrics API client and its error taxonomy."""

from .client import GPUApiClient, resolve_base_url
from .errors import (
    ApiError,
    ErrorKind,
    HTTPStatusError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ServerError,
    UnavailableError,
)

__all__ = [
    "GPUApiClient",
    "resolve_base_url",
    "ApiError",
    "ErrorKind",
    "HTTPStatusError",
    "InvalidResponseError",
    "NetworkError",
    "NotFoundError",
    "RequestTimeoutError",
    "ServerError",
    "UnavailableError",
]
