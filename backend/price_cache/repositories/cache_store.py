"""Per-user Amber cache store.

Three cache shapes, each scoped by owner key and kept as one document:
- Sites list      users/{user_id}/cache/amber_sites            (7 day TTL)
- Current prices  users/{user_id}/cache/amber_current_{site}   (per-user TTL)
- Price archive   users/{user_id}/cache/amber_{site}           (merged time series)

Caching is best-effort: storage errors on read are treated as a cache miss,
storage errors on write are logged and swallowed. Nothing here fails the
caller's primary request.
"""
import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from cachetools import TTLCache

from price_cache.core.config import Settings, get_settings
from price_cache.providers.base import PriceRecord, dedupe_and_sort, parse_price_records
from price_cache.repositories.document_store import DocumentStore
from price_cache.utils.dates import day_window, utc_now

logger = logging.getLogger(__name__)


def sites_path(user_id: str) -> str:
    return f"users/{user_id}/cache/amber_sites"


def current_prices_path(user_id: str, site_id: str) -> str:
    return f"users/{user_id}/cache/amber_current_{site_id}"


def archive_path(user_id: str, site_id: str) -> str:
    return f"users/{user_id}/cache/amber_{site_id}"


class PriceCacheStore:
    """
    Per-user cache for Amber sites, current prices and historical prices.

    The sites list has an in-memory L1 (cachetools.TTLCache) in front of the
    document store. Archive merges are serialised per (user, site) so that
    concurrent writers to the same archive never lose each other's records.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock
        # Entries vanish once no merge holds or awaits the lock
        self._merge_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        self.sites_l1: TTLCache = TTLCache(
            maxsize=self.settings.sites_l1_cache_size,
            ttl=self.settings.sites_l1_cache_ttl,
            timer=lambda: self._clock().timestamp(),
        )

    # ===== SITES =====

    async def get_reference_list(self, user_id: str | None) -> list[dict[str, Any]] | None:
        """Get the cached sites list, or None if missing or older than 7 days."""
        if not user_id:
            return None

        if user_id in self.sites_l1:
            return list(self.sites_l1[user_id])

        try:
            snapshot = await self.store.get(sites_path(user_id))
        except Exception as e:
            logger.error(f"Error reading sites cache for {user_id}: {e}")
            return None

        if not snapshot.exists or not self._is_fresh(
            snapshot.update_time, self.settings.amber_sites_cache_ttl
        ):
            return None

        sites = snapshot.data.get("sites") or []
        self.sites_l1[user_id] = list(sites)
        return sites

    async def put_reference_list(self, user_id: str | None, sites: list[dict[str, Any]]) -> None:
        """Store the sites list for user_id."""
        if not user_id or sites is None:
            return

        try:
            await self.store.set(sites_path(user_id), {"sites": sites})
            self.sites_l1[user_id] = list(sites)
        except Exception as e:
            logger.error(f"Error storing sites cache for {user_id}: {e}")

    # ===== CURRENT PRICES =====

    async def get_snapshot(
        self,
        user_id: str | None,
        site_id: str | None,
        ttl_seconds: float,
        min_intervals: int | None = None,
    ) -> list[dict[str, Any]] | None:
        """
        Get cached current prices, or None if missing or older than ttl_seconds.

        When min_intervals is given, a snapshot stored with fewer forecast
        intervals than requested is also treated as a miss.
        """
        if not user_id or not site_id:
            return None

        try:
            snapshot = await self.store.get(current_prices_path(user_id, site_id))
        except Exception as e:
            logger.warning(
                f"Error reading current prices for user {user_id}, site {site_id}: {e}"
            )
            return None

        if not snapshot.exists or not self._is_fresh(snapshot.update_time, ttl_seconds):
            return None

        if min_intervals is not None and snapshot.data.get("next", 0) < min_intervals:
            return None

        return snapshot.data.get("prices")

    async def put_snapshot(
        self,
        user_id: str | None,
        site_id: str | None,
        prices: list[dict[str, Any]],
        next_intervals: int | None = None,
    ) -> None:
        """Store current prices for (user_id, site_id)."""
        if not user_id or not site_id or prices is None:
            return

        document: dict[str, Any] = {"siteId": site_id, "prices": prices}
        if next_intervals is not None:
            document["next"] = next_intervals

        try:
            await self.store.set(current_prices_path(user_id, site_id), document)
        except Exception as e:
            logger.warning(
                f"Error caching current prices for user {user_id}, site {site_id}: {e}"
            )

    # ===== PRICE ARCHIVE =====

    async def get_archive_range(
        self, user_id: str | None, site_id: str, start: date, end: date
    ) -> list[PriceRecord]:
        """
        Get archived prices whose start time falls within [start, end].

        Both days are inclusive: the window runs from start 00:00:00 UTC up
        to (but excluding) 00:00:00 UTC on the day after end.

        Returns:
            Records sorted by start time; empty if nothing is cached
        """
        if not user_id:
            return []

        try:
            snapshot = await self.store.get(archive_path(user_id, site_id))
        except Exception as e:
            logger.warning(f"Error reading prices for user {user_id}, site {site_id}: {e}")
            return []

        if not snapshot.exists:
            return []

        lower, upper = day_window(start, end)
        records = parse_price_records(snapshot.data.get("prices") or [])
        in_range = [r for r in records if lower <= r.start_time < upper]
        return dedupe_and_sort(in_range)

    async def merge_archive(
        self, user_id: str | None, site_id: str, new_records: list[PriceRecord]
    ) -> int | None:
        """
        Merge new_records into the archive (new wins on key collision).

        Reads the existing entry, overlays new records by
        (start_time, channel_type), sorts, and writes the full set back with a
        fresh lastUpdated and retention horizon.

        Returns:
            Number of records stored, or None if nothing was written
        """
        if not user_id or not new_records:
            return None

        path = archive_path(user_id, site_id)
        async with self._merge_lock(path):
            try:
                snapshot = await self.store.get(path)
            except Exception as e:
                # Writing without the existing records would drop stored ranges
                logger.warning(
                    f"Skipping price cache merge for user {user_id}, site {site_id}, "
                    f"read failed: {e}"
                )
                return None

            existing = (
                parse_price_records(snapshot.data.get("prices") or [])
                if snapshot.exists
                else []
            )
            merged = dedupe_and_sort(existing, new_records)

            now = self._clock()
            expires_at = now + timedelta(days=self.settings.amber_archive_retention_days)
            try:
                await self.store.set(
                    path,
                    {
                        "siteId": site_id,
                        "prices": [r.to_dict() for r in merged],
                        "lastUpdated": now.isoformat(),
                        "priceCount": len(merged),
                        "expiresAt": expires_at.isoformat(),
                    },
                    expires_at=expires_at,
                )
            except Exception as e:
                logger.warning(f"Error caching prices for user {user_id}, site {site_id}: {e}")
                return None

        logger.debug(
            f"Merged {len(new_records)} prices into archive for {user_id}/{site_id} "
            f"({len(merged)} total)"
        )
        return len(merged)

    def _merge_lock(self, path: str) -> asyncio.Lock:
        lock = self._merge_locks.get(path)
        if lock is None:
            lock = self._merge_locks[path] = asyncio.Lock()
        return lock

    def _is_fresh(self, cached_at: datetime | None, ttl_seconds: float) -> bool:
        if cached_at is None:
            return False
        age = (self._clock() - cached_at).total_seconds()
        return age <= ttl_seconds
