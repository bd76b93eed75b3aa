"""Price service: Amber price data with cache-first orchestration.

This service composes the Amber client, the per-user cache store and the
gap/chunk helpers into the operations callers use:
- get_prices_with_cache: archive-backed historical prices, fetching only gaps
- get_actual_prices: fresh historical prices with forecasts removed
- get_current_prices: short-TTL current price snapshot
- get_sites: the user's Amber sites (7 day cache)

Every operation resolves to ApiSuccess or ApiError; upstream chunk failures
degrade completeness, never availability.
"""
import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from price_cache.core.config import Settings, get_settings
from price_cache.core.exceptions import ErrorKind
from price_cache.core.inflight import InFlightTracker
from price_cache.core.results import ApiError, ApiResult, ApiSuccess
from price_cache.core.usage import UsageRecorder
from price_cache.providers.amber import AmberClient
from price_cache.providers.base import (
    DateRange,
    PriceRecord,
    UserPriceConfig,
    dedupe_and_sort,
    parse_price_records,
)
from price_cache.repositories.cache_store import PriceCacheStore
from price_cache.services.gap_detection import (
    find_gaps,
    missing_channels,
    split_range_into_chunks,
)
from price_cache.utils.dates import to_date, utc_now

logger = logging.getLogger(__name__)

# Errors that would repeat for every remaining chunk, so the fetch loop stops
BLOCKING_ERRORS = {ErrorKind.CONFIG, ErrorKind.RATE_LIMITED}


@dataclass
class CacheInfo:
    """Diagnostics for a cache-backed fetch."""

    total: int
    from_cache: int
    from_api: int
    gaps: list[DateRange] = field(default_factory=list)
    failed_chunks: int = 0
    upstream_error: ApiError | None = None

    @property
    def cache_hit_rate(self) -> int:
        """Percentage of returned records that came from the cache."""
        if self.total == 0:
            return 0
        return round(self.from_cache / self.total * 100)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "total": self.total,
            "fromCache": self.from_cache,
            "fromAPI": self.from_api,
            "cacheHitRate": self.cache_hit_rate,
            "gaps": [str(gap) for gap in self.gaps],
            "failedChunks": self.failed_chunks,
        }
        if self.upstream_error is not None:
            result["upstreamError"] = self.upstream_error.to_dict()
        return result


@dataclass
class PriceHistory:
    """Historical prices for a range plus cache diagnostics."""

    records: list[PriceRecord]
    cache_info: CacheInfo

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": [r.to_dict() for r in self.records],
            "_cacheInfo": self.cache_info.to_dict(),
        }


@dataclass
class ActualPriceInfo:
    """Diagnostics for an uncached actual-only fetch."""

    total: int
    excluded_future: int
    failed_chunks: int = 0
    upstream_error: ApiError | None = None
    source: str = "fresh_api_no_cache"

    @property
    def filtered(self) -> str:
        return f"{self.excluded_future} future prices excluded"

    def to_dict(self) -> dict[str, Any]:
        result = {
            "total": self.total,
            "source": self.source,
            "filtered": self.filtered,
            "failedChunks": self.failed_chunks,
        }
        if self.upstream_error is not None:
            result["upstreamError"] = self.upstream_error.to_dict()
        return result


@dataclass
class ActualPrices:
    """Materialized (non-forecast) prices for a range."""

    records: list[PriceRecord]
    info: ActualPriceInfo

    def to_dict(self) -> dict[str, Any]:
        return {"result": [r.to_dict() for r in self.records], "_info": self.info.to_dict()}


@dataclass
class CurrentPrices:
    """Current interval prices (and requested forecast intervals)."""

    records: list[PriceRecord]
    from_cache: bool


@dataclass
class _FetchOutcome:
    records: list[PriceRecord] = field(default_factory=list)
    chunks: int = 0
    failed_chunks: int = 0
    blocking_error: ApiError | None = None


class PriceService:
    """
    Amber price service with cache-first architecture.

    Architecture:
    - Uses injected AmberClient (rate limiting, timeouts, error envelopes)
    - Uses PriceCacheStore for the three per-user cache shapes
    - Uses InFlightTracker so identical concurrent requests share one fetch
    - Meters usage once per request that reaches upstream, not per chunk
    """

    def __init__(
        self,
        client: AmberClient,
        cache: PriceCacheStore,
        inflight: InFlightTracker | None = None,
        usage: UsageRecorder | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize PriceService with dependencies.

        Args:
            client: Amber API client
            cache: Per-user cache store
            inflight: In-flight tracker (process-wide in production)
            usage: Usage recorder (defaults to the client's)
            settings: Service configuration (uses get_settings() if None)
            clock: Source of "now" for forecast filtering
        """
        self.client = client
        self.cache = cache
        self.inflight = inflight if inflight is not None else InFlightTracker()
        self.usage = usage or client.usage
        self.settings = settings or get_settings()
        self._clock = clock

    # ===== HISTORICAL PRICES =====

    async def get_prices_with_cache(
        self,
        site_id: str,
        start_date: date | str,
        end_date: date | str,
        resolution: int | None = None,
        user_config: UserPriceConfig | None = None,
        user_id: str | None = None,
    ) -> ApiResult[PriceHistory]:
        """
        Get historical prices for [start_date, end_date] using the archive.

        Flow:
        1. Read archived prices for the range
        2. If either required channel is absent, the whole range is one gap;
           otherwise detect the leading/trailing gaps
        3. Fetch each gap in chunks, skipping chunks that fail
        4. Merge fresh prices into the archive (one write)
        5. Return cached + fresh prices, de-duplicated and sorted

        Args:
            site_id: Amber site ID
            start_date: First day (date or YYYY-MM-DD)
            end_date: Last day, inclusive
            resolution: Interval length in minutes (default from settings)
            user_config: Per-user configuration (API key)
            user_id: Owner of the cache; also the metered caller

        Returns:
            ApiSuccess(PriceHistory), or ApiError for invalid ranges and for
            config/rate-limit failures when there is no data to return
        """
        dates = _parse_range(start_date, end_date)
        if isinstance(dates, ApiError):
            return dates
        start, end = dates
        resolution = resolution or self.settings.amber_default_resolution

        key = f"{self._caller_key(user_id, user_config)}:{site_id}:{start}:{end}:{resolution}"
        return await self.inflight.run(
            key,
            lambda: self._fetch_with_cache(site_id, start, end, resolution, user_config, user_id),
        )

    async def _fetch_with_cache(
        self,
        site_id: str,
        start: date,
        end: date,
        resolution: int,
        user_config: UserPriceConfig | None,
        user_id: str | None,
    ) -> ApiResult[PriceHistory]:
        cached = await self.cache.get_archive_range(user_id, site_id, start, end)
        logger.debug(f"Found {len(cached)} cached prices for {site_id} in {start}..{end}")

        absent = missing_channels(cached)
        if absent:
            # A partial earlier fetch must not hide a missing channel
            if cached:
                logger.info(
                    f"Cached prices for {site_id} lack channel(s) {', '.join(absent)}; "
                    f"refetching {start}..{end}"
                )
            gaps = [DateRange(start, end)]
        else:
            gaps = find_gaps(start, end, cached)

        outcome = _FetchOutcome()
        if gaps:
            self.usage.fire_and_forget(user_id)
            outcome = await self._fetch_ranges(site_id, gaps, resolution, user_config, user_id)

        if outcome.records:
            await self.cache.merge_archive(user_id, site_id, outcome.records)

        records = dedupe_and_sort(cached, outcome.records)
        if outcome.blocking_error is not None and not records:
            return outcome.blocking_error

        cache_info = CacheInfo(
            total=len(records),
            from_cache=len(cached),
            from_api=len(outcome.records),
            gaps=gaps,
            failed_chunks=outcome.failed_chunks,
            upstream_error=outcome.blocking_error,
        )
        logger.info(
            f"Prices for {site_id} {start}..{end}: {cache_info.total} total, "
            f"{cache_info.from_cache} cached, {cache_info.from_api} fetched "
            f"in {outcome.chunks} chunk(s)"
        )
        return ApiSuccess(PriceHistory(records=records, cache_info=cache_info))

    async def get_actual_prices(
        self,
        site_id: str,
        start_date: date | str,
        end_date: date | str,
        resolution: int | None = None,
        user_config: UserPriceConfig | None = None,
        user_id: str | None = None,
    ) -> ApiResult[ActualPrices]:
        """
        Fetch historical prices straight from Amber, keeping only actual prices.

        Bypasses the archive entirely so a cached forecast can never stand in
        for a materialized price. Records starting after the moment of the
        call are dropped. Counts as exactly one usage event.
        """
        dates = _parse_range(start_date, end_date)
        if isinstance(dates, ApiError):
            return dates
        start, end = dates
        resolution = resolution or self.settings.amber_default_resolution

        self.usage.fire_and_forget(user_id)
        now = self._clock()

        outcome = await self._fetch_ranges(
            site_id, [DateRange(start, end)], resolution, user_config, user_id
        )
        if outcome.blocking_error is not None and not outcome.records:
            return outcome.blocking_error

        actual = sorted(
            (r for r in outcome.records if r.start_time <= now), key=lambda r: r.key
        )
        info = ActualPriceInfo(
            total=len(actual),
            excluded_future=len(outcome.records) - len(actual),
            failed_chunks=outcome.failed_chunks,
            upstream_error=outcome.blocking_error,
        )
        logger.info(f"Actual prices for {site_id} {start}..{end}: {info.total}, {info.filtered}")
        return ApiSuccess(ActualPrices(records=actual, info=info))

    async def _fetch_ranges(
        self,
        site_id: str,
        ranges: list[DateRange],
        resolution: int,
        user_config: UserPriceConfig | None,
        user_id: str | None,
    ) -> _FetchOutcome:
        """Fetch ranges chunk by chunk, sequentially; failed chunks are skipped."""
        outcome = _FetchOutcome()
        for date_range in ranges:
            chunks = split_range_into_chunks(
                date_range.start, date_range.end, self.settings.amber_chunk_days
            )
            for chunk in chunks:
                outcome.chunks += 1
                result = await self.client.get_prices(
                    site_id, chunk, resolution, user_config, user_id, count_usage=False
                )
                if not result.ok:
                    outcome.failed_chunks += 1
                    logger.warning(
                        f"Skipping prices {chunk} for {site_id}: "
                        f"{result.kind.value}: {result.message}"
                    )
                    if result.kind in BLOCKING_ERRORS:
                        outcome.blocking_error = result
                        return outcome
                    continue

                outcome.records.extend(result.data)
        return outcome

    # ===== CURRENT PRICES =====

    async def get_current_prices(
        self,
        site_id: str,
        user_id: str | None,
        user_config: UserPriceConfig | None = None,
        next_intervals: int = 1,
    ) -> ApiResult[CurrentPrices]:
        """
        Get current prices, served from the snapshot cache while it is fresh.

        The snapshot TTL is the user's override or the server default.
        Concurrent misses for the same user/site share one upstream call.
        """
        ttl = self.current_cache_ttl(user_config)
        cached = await self.cache.get_snapshot(user_id, site_id, ttl, min_intervals=next_intervals)
        if cached is not None:
            return ApiSuccess(CurrentPrices(records=parse_price_records(cached), from_cache=True))

        key = f"{self._caller_key(user_id, user_config)}:{site_id}:current:{next_intervals}"
        return await self.inflight.run(
            key,
            lambda: self._refresh_current(site_id, user_id, user_config, next_intervals),
        )

    async def _refresh_current(
        self,
        site_id: str,
        user_id: str | None,
        user_config: UserPriceConfig | None,
        next_intervals: int,
    ) -> ApiResult[CurrentPrices]:
        result = await self.client.get_current_prices(
            site_id, next_intervals, user_config, user_id, count_usage=True
        )
        if not result.ok:
            return result

        await self.cache.put_snapshot(user_id, site_id, result.data, next_intervals=next_intervals)
        return ApiSuccess(
            CurrentPrices(records=parse_price_records(result.data), from_cache=False)
        )

    def _caller_key(self, user_id: str | None, user_config: UserPriceConfig | None) -> str:
        """In-flight key prefix; anonymous callers are told apart by credential."""
        if user_id:
            return user_id
        api_key = self.client.resolve_api_key(user_config) or ""
        return f"anonymous-{hashlib.sha256(api_key.encode()).hexdigest()[:16]}"

    def current_cache_ttl(self, user_config: UserPriceConfig | None) -> float:
        """Snapshot TTL in seconds: the user's override, else the server default."""
        if user_config is not None and user_config.cache_ttl is not None:
            return user_config.cache_ttl
        return self.settings.amber_current_cache_ttl

    # ===== SITES =====

    async def get_sites(
        self, user_id: str | None, user_config: UserPriceConfig | None = None
    ) -> ApiResult[list[dict[str, Any]]]:
        """Get the user's Amber sites, cached for 7 days."""
        cached = await self.cache.get_reference_list(user_id)
        if cached is not None:
            return ApiSuccess(cached)

        result = await self.client.get_sites(user_config, user_id, count_usage=True)
        if not result.ok:
            return result

        if result.data:
            await self.cache.put_reference_list(user_id, result.data)
        return result


def _parse_range(start_date: date | str, end_date: date | str) -> tuple[date, date] | ApiError:
    try:
        start = to_date(start_date)
        end = to_date(end_date)
    except (TypeError, ValueError, AttributeError) as e:
        return ApiError(kind=ErrorKind.INVALID_REQUEST, message=f"Invalid date: {e}")

    if start > end:
        return ApiError(
            kind=ErrorKind.INVALID_REQUEST,
            message=f"startDate {start} is after endDate {end}",
        )
    return start, end
