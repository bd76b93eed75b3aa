"""Gap detection and date-range chunking for the price archive.

Pure functions over calendar dates. Chunking uses plain datetime.date
arithmetic, so day boundaries never move with time-zone conversions.
"""
from collections.abc import Iterable
from datetime import date, timedelta

from price_cache.providers.base import REQUIRED_CHANNELS, DateRange, PriceRecord

ONE_DAY = timedelta(days=1)


def find_gaps(start: date, end: date, existing: list[PriceRecord]) -> list[DateRange]:
    """
    Find the sub-ranges of [start, end] not covered by existing records.

    Only the two boundary gaps are detected: before the earliest cached day
    and after the latest cached day. Holes between cached days are not
    looked for, since the archive is only ever written from whole fetches.

    Args:
        start: First requested day
        end: Last requested day (inclusive)
        existing: Cached records for the range

    Returns:
        Gaps in calendar order (empty when the range is covered)
    """
    if not existing:
        return [DateRange(start, end)]

    days = [record.day for record in existing]
    first_cached = min(days)
    last_cached = max(days)

    gaps = []
    if start < first_cached:
        gaps.append(DateRange(start, first_cached - ONE_DAY))
    if end > last_cached:
        gaps.append(DateRange(last_cached + ONE_DAY, end))
    return gaps


def missing_channels(
    records: Iterable[PriceRecord], required: tuple[str, ...] = REQUIRED_CHANNELS
) -> list[str]:
    """Required channels with no record at all in records."""
    present = {record.channel_type for record in records}
    return [channel for channel in required if channel not in present]


def split_range_into_chunks(start: date, end: date, max_days_per_chunk: int) -> list[DateRange]:
    """
    Split an inclusive date range into chunks of at most max_days_per_chunk days.

    Chunks are contiguous, non-overlapping and ordered; the first starts at
    start, the last ends at end and may be shorter.

    Raises:
        ValueError: If max_days_per_chunk < 1
    """
    if max_days_per_chunk < 1:
        raise ValueError("max_days_per_chunk must be at least 1")

    chunks = []
    chunk_start = start
    span = timedelta(days=max_days_per_chunk - 1)  # inclusive range
    while chunk_start <= end:
        chunk_end = min(chunk_start + span, end)
        chunks.append(DateRange(chunk_start, chunk_end))
        chunk_start = chunk_end + ONE_DAY
    return chunks
