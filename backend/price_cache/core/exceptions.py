"""Core exception classes for the price cache.

Every upstream or storage failure maps to one ErrorKind. Exceptions exist for
callers that prefer raising; the service boundary itself returns ApiError
envelopes (see price_cache.core.results) and never lets these escape.
"""
from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable failure category carried by error envelopes."""

    CONFIG = "config"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    HTTP = "http"
    INVALID_RESPONSE = "invalid_response"
    INVALID_REQUEST = "invalid_request"
    STORAGE = "storage"


class PriceCacheError(Exception):
    """Base exception for price cache operations."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after
        self.status_code = status_code

    def to_result(self):
        """Convert to an ApiError envelope."""
        from price_cache.core.results import ApiError

        return ApiError(
            kind=self.kind,
            message=self.message,
            retry_after=self.retry_after,
            status_code=self.status_code,
        )


class ConfigError(PriceCacheError):
    """Raised when no Amber API key is configured for the caller or server."""

    kind = ErrorKind.CONFIG


class RateLimitedError(PriceCacheError):
    """Raised when the upstream quota is exhausted; see retry_after."""

    kind = ErrorKind.RATE_LIMITED


class UpstreamTimeoutError(PriceCacheError):
    """Raised when an upstream request exceeds its time budget."""

    kind = ErrorKind.TIMEOUT


class UpstreamNetworkError(PriceCacheError):
    """Raised when the upstream could not be reached."""

    kind = ErrorKind.NETWORK


class HttpStatusError(PriceCacheError):
    """Raised when the upstream answers with a non-success status."""

    kind = ErrorKind.HTTP


class InvalidResponseError(PriceCacheError):
    """Raised when the upstream body cannot be parsed."""

    kind = ErrorKind.INVALID_RESPONSE


class InvalidRequestError(PriceCacheError):
    """Raised when the caller supplied an unusable request (e.g. inverted range)."""

    kind = ErrorKind.INVALID_REQUEST


class StorageError(PriceCacheError):
    """Raised by document store backends when a read or write fails."""

    kind = ErrorKind.STORAGE


EXCEPTION_BY_KIND: dict[ErrorKind, type[PriceCacheError]] = {
    ErrorKind.CONFIG: ConfigError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.TIMEOUT: UpstreamTimeoutError,
    ErrorKind.NETWORK: UpstreamNetworkError,
    ErrorKind.HTTP: HttpStatusError,
    ErrorKind.INVALID_RESPONSE: InvalidResponseError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.STORAGE: StorageError,
}
