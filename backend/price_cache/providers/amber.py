"""Amber Electric API client.

Wraps every upstream call with:
- API key resolution (per-user key, falling back to the server key)
- Global rate-limit short-circuit and 429 handling
- Fire-and-forget usage metering
- A bounded request timeout
- Classification of every failure into an ApiError envelope

No exception escapes call(); callers branch on ``result.ok``.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from price_cache.core.config import Settings, get_settings
from price_cache.core.exceptions import ErrorKind
from price_cache.core.rate_limit import RateLimitState
from price_cache.core.results import ApiError, ApiResult, ApiSuccess
from price_cache.core.usage import UsageRecorder
from price_cache.providers.base import (
    DateRange,
    PriceRecord,
    UserPriceConfig,
    parse_price_records,
)
from price_cache.providers.payload import extract_records
from price_cache.utils.structured_logging import get_logger

logger = get_logger(__name__)


class AmberClient:
    """
    Amber Electric API client with rate limiting and error classification.

    The rate-limit state and usage recorder are injected so that one
    instance of each can be shared process-wide (see price_cache.core.deps)
    while tests build isolated ones.
    """

    provider_name = "amber"

    def __init__(
        self,
        settings: Settings | None = None,
        rate_limit: RateLimitState | None = None,
        usage: UsageRecorder | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Application settings (defaults to get_settings())
            rate_limit: Shared rate-limit state
            usage: Usage recorder for metering upstream calls
            http_client: httpx client to reuse (one is created and owned if None)
        """
        self.settings = settings or get_settings()
        self.rate_limit = rate_limit or RateLimitState()
        self.usage = usage or UsageRecorder(service_tag=self.settings.amber_usage_tag)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=self.settings.amber_request_timeout
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def resolve_api_key(self, user_config: UserPriceConfig | None) -> str | None:
        user_key = user_config.api_key if user_config else None
        return user_key or self.settings.amber_api_key or None

    async def call(
        self,
        path: str,
        query_params: dict[str, Any] | None = None,
        user_config: UserPriceConfig | None = None,
        caller_id: str | None = None,
        count_usage: bool = True,
    ) -> ApiResult[Any]:
        """
        Make one Amber API call.

        Args:
            path: API path (e.g. '/sites' or '/sites/{id}/prices')
            query_params: Query parameters; None values are dropped
            user_config: Per-user configuration (API key)
            caller_id: User ID for usage metering
            count_usage: Record a usage event for this call. Callers that
                meter at a coarser level (one event per cache miss) pass False.

        Returns:
            ApiSuccess with the decoded JSON body, or ApiError
        """
        api_key = self.resolve_api_key(user_config)
        if not api_key:
            return ApiError(kind=ErrorKind.CONFIG, message="Amber API key not configured")

        if self.rate_limit.is_limited():
            retry_after = self.rate_limit.retry_after
            return ApiError(
                kind=ErrorKind.RATE_LIMITED,
                message=f"Rate limited by Amber API. Retry after {_iso(retry_after)}",
                retry_after=retry_after,
            )

        if count_usage:
            self.usage.fire_and_forget(caller_id)

        url = f"{self.settings.amber_base_url.rstrip('/')}{path}"
        params = {k: str(v) for k, v in (query_params or {}).items() if v is not None}
        headers = {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}
        started_at = self.rate_limit.now()

        try:
            # httpx timeouts apply per phase; wait_for caps the whole call
            response = await asyncio.wait_for(
                self._http.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.settings.amber_request_timeout,
                ),
                timeout=self.settings.amber_request_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(
                "Amber request timed out",
                path=path,
                timeout=self.settings.amber_request_timeout,
            )
            return ApiError(kind=ErrorKind.TIMEOUT, message="Request timeout")
        except httpx.HTTPError as e:
            logger.warning("Amber request failed", path=path, error=str(e))
            return ApiError(kind=ErrorKind.NETWORK, message=str(e) or type(e).__name__)
        except Exception as e:
            logger.error("Unexpected error calling Amber", path=path, error=str(e))
            return ApiError(kind=ErrorKind.NETWORK, message=str(e) or type(e).__name__)

        if response.status_code == 429:
            delay = self._parse_retry_after(response.headers.get("retry-after"))
            retry_after = self.rate_limit.record_limited(delay)
            logger.warning("Amber rate limited (429)", path=path, retry_after_seconds=delay)
            return ApiError(
                kind=ErrorKind.RATE_LIMITED,
                message=f"Rate limited. Retry after {delay}s",
                retry_after=retry_after,
                status_code=429,
            )

        if not response.is_success:
            logger.warning(
                "Amber HTTP error",
                path=path,
                status=response.status_code,
                reason=response.reason_phrase,
                content_type=response.headers.get("content-type"),
                response_preview=response.text[: self.settings.amber_error_preview_chars],
            )
            return ApiError(
                kind=ErrorKind.HTTP,
                message=f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

        if response.status_code == 200:
            self.rate_limit.record_success(started_at)

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(
                "Failed to parse Amber JSON",
                path=path,
                error=str(e),
                response_preview=response.text[:500],
            )
            return ApiError(
                kind=ErrorKind.INVALID_RESPONSE,
                message="Invalid JSON response from Amber API",
            )

        return ApiSuccess(data)

    def _parse_retry_after(self, header: str | None) -> int:
        """Retry-After in seconds, or the configured default if absent/unparseable."""
        default = self.settings.amber_rate_limit_default_delay
        if not header:
            return default
        try:
            delay = int(header.strip())
        except ValueError:
            return default
        return delay if delay >= 0 else default

    # ===== ENDPOINTS =====

    async def get_sites(
        self,
        user_config: UserPriceConfig | None = None,
        caller_id: str | None = None,
        count_usage: bool = True,
    ) -> ApiResult[list[dict[str, Any]]]:
        """Fetch the sites linked to the API key."""
        result = await self.call("/sites", {}, user_config, caller_id, count_usage)
        if not result.ok:
            return result
        return ApiSuccess(extract_records(result.data))

    async def get_current_prices(
        self,
        site_id: str,
        next_intervals: int = 1,
        user_config: UserPriceConfig | None = None,
        caller_id: str | None = None,
        count_usage: bool = True,
    ) -> ApiResult[list[dict[str, Any]]]:
        """Fetch current interval prices plus next_intervals forecast intervals."""
        result = await self.call(
            f"/sites/{_encode(site_id)}/prices/current",
            {"next": next_intervals},
            user_config,
            caller_id,
            count_usage,
        )
        if not result.ok:
            return result
        return ApiSuccess(extract_records(result.data))

    async def get_prices(
        self,
        site_id: str,
        window: DateRange,
        resolution: int | None = None,
        user_config: UserPriceConfig | None = None,
        caller_id: str | None = None,
        count_usage: bool = False,
    ) -> ApiResult[list[PriceRecord]]:
        """Fetch historical prices for one window (at most the API's range limit)."""
        params = {
            **window.to_params(),
            "resolution": resolution or self.settings.amber_default_resolution,
        }
        result = await self.call(
            f"/sites/{_encode(site_id)}/prices", params, user_config, caller_id, count_usage
        )
        if not result.ok:
            return result
        return ApiSuccess(parse_price_records(extract_records(result.data)))


def _encode(site_id: str) -> str:
    return quote(str(site_id), safe="")


def _iso(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, timezone.utc).isoformat()
