"""Process-wide rate-limit / circuit-breaker state for the Amber API.

Amber enforces one quota across every user of a deployment, so a single
instance is shared by all callers (see price_cache.core.deps). Tests build
their own instances with a fake clock.
"""
import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RateLimitState:
    """Tracks when the upstream may be called again.

    Attributes:
        retry_after: Epoch seconds until which calls are blocked (0 = clear)
        last_error: Diagnostic message from the last 429 observed
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._retry_after = 0.0
        self._limited_at = 0.0
        self._last_error: str | None = None

    @property
    def retry_after(self) -> float:
        with self._lock:
            return self._retry_after

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def now(self) -> float:
        return self._clock()

    def is_limited(self) -> bool:
        """Return True while the retry-after instant is in the future."""
        with self._lock:
            return self._retry_after > self._clock()

    def record_limited(self, delay_seconds: float) -> float:
        """Block calls for delay_seconds from now.

        Args:
            delay_seconds: Back-off reported by the upstream

        Returns:
            The new retry-after instant (epoch seconds)
        """
        with self._lock:
            now = self._clock()
            self._retry_after = now + delay_seconds
            self._limited_at = now
            self._last_error = f"Rate limited: retry after {delay_seconds:g}s"
            retry_after = self._retry_after

        logger.warning(f"Amber rate limit recorded, retry after {delay_seconds:g}s")
        return retry_after

    def record_success(self, request_started_at: float | None = None) -> None:
        """Clear the limit after a successful upstream response.

        A success for a request issued before the most recent 429 is ignored,
        so an in-flight response can never clear a newer limit.

        Args:
            request_started_at: When the successful request was issued
        """
        with self._lock:
            if (
                request_started_at is not None
                and self._limited_at
                and request_started_at < self._limited_at
            ):
                return
            if self._retry_after:
                logger.info("Amber rate limit cleared after successful response")
            self._retry_after = 0.0
