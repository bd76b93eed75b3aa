"""Uniform success/error envelope returned across the API boundary."""
from dataclasses import dataclass
from typing import Generic, Literal, TypeVar, Union

from price_cache.core.exceptions import EXCEPTION_BY_KIND, ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class ApiSuccess(Generic[T]):
    """Successful outcome carrying the payload."""

    data: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class ApiError:
    """Failed outcome with a machine-readable kind and a human-readable message.

    Attributes:
        kind: Failure category
        message: Description suitable for logs and user-facing messaging
        retry_after: Epoch seconds before which the caller should not retry
            (rate-limit errors only)
        status_code: Upstream HTTP status (HTTP errors only)
    """

    kind: ErrorKind
    message: str
    retry_after: float | None = None
    status_code: int | None = None
    ok: Literal[False] = False

    def raise_for_error(self) -> None:
        """Raise the matching PriceCacheError subclass."""
        raise EXCEPTION_BY_KIND[self.kind](
            self.message, retry_after=self.retry_after, status_code=self.status_code
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON responses."""
        result = {"ok": False, "kind": self.kind.value, "message": self.message}
        if self.retry_after is not None:
            result["retryAfter"] = self.retry_after
        if self.status_code is not None:
            result["statusCode"] = self.status_code
        return result


ApiResult = Union[ApiSuccess[T], ApiError]
