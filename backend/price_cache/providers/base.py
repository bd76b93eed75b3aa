"""Data models shared by the Amber client, the cache store and the orchestrator.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from price_cache.utils.dates import format_date, parse_timestamp

logger = logging.getLogger(__name__)


class ChannelType(str, Enum):
    """Amber price channels."""

    GENERAL = "general"  # Consumption (buy) price
    FEED_IN = "feedIn"  # Export (sell) price
    CONTROLLED_LOAD = "controlledLoad"


# Both must be present in a cached window for it to count as covered
REQUIRED_CHANNELS: tuple[str, ...] = (ChannelType.GENERAL.value, ChannelType.FEED_IN.value)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def to_params(self) -> dict[str, str]:
        """Amber query parameters for this range."""
        return {"startDate": format_date(self.start), "endDate": format_date(self.end)}

    def __str__(self) -> str:
        return f"{format_date(self.start)}..{format_date(self.end)}"


@dataclass(frozen=True)
class PriceRecord:
    """Single price observation for one interval and channel.

    The upstream record is kept whole in ``raw`` so fields this service does
    not interpret (descriptor, spotPerKwh, renewables, type, ...) survive the
    round trip through the archive.
    """

    start_time: datetime
    channel_type: str
    per_kwh: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> tuple[datetime, str]:
        """Identity key: at most one record per (interval start, channel)."""
        return (self.start_time.astimezone(timezone.utc), self.channel_type)

    @property
    def day(self) -> date:
        """UTC calendar date of the interval start."""
        return self.start_time.astimezone(timezone.utc).date()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PriceRecord":
        """Build from an Amber price dict.

        Raises:
            ValueError: If startTime or channelType is missing or malformed
        """
        start_time = data.get("startTime")
        channel_type = data.get("channelType")
        if not start_time or not channel_type:
            raise ValueError("price record requires startTime and channelType")

        per_kwh = data.get("perKwh")
        return cls(
            start_time=parse_timestamp(start_time),
            channel_type=str(channel_type),
            per_kwh=float(per_kwh) if per_kwh is not None else None,
            raw=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for document storage and responses."""
        data = dict(self.raw)
        if "startTime" not in data:
            data["startTime"] = self.start_time.isoformat()
        data["channelType"] = self.channel_type
        data["perKwh"] = self.per_kwh
        return data


def parse_price_records(items: list[dict[str, Any]]) -> list[PriceRecord]:
    """Convert upstream/stored dicts to PriceRecords, skipping malformed entries."""
    records = []
    skipped = 0
    for item in items:
        try:
            records.append(PriceRecord.from_api(item))
        except (TypeError, ValueError, AttributeError):
            skipped += 1

    if skipped:
        logger.warning(f"Skipped {skipped} malformed price records")
    return records


def dedupe_and_sort(*batches: list[PriceRecord]) -> list[PriceRecord]:
    """Merge batches by identity key (later batches win) and sort by start time."""
    by_key: dict[tuple[datetime, str], PriceRecord] = {}
    for batch in batches:
        for record in batch:
            by_key[record.key] = record
    return sorted(by_key.values(), key=lambda r: r.key)


@dataclass(frozen=True)
class UserPriceConfig:
    """Per-user configuration resolved by the external config layer.

    Attributes:
        api_key: User's Amber API key (falls back to the server key if None)
        cache_ttl: Override for the current-price snapshot TTL in seconds
    """

    api_key: str | None = None
    cache_ttl: float | None = None
