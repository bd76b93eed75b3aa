"""Unit tests for PriceRecord, DateRange and the merge helpers."""
from datetime import date, datetime, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from price_cache.providers.base import (
    DateRange,
    PriceRecord,
    dedupe_and_sort,
    parse_price_records,
)


def record(start: str, channel: str = "general", per_kwh: float = 20.0) -> PriceRecord:
    return PriceRecord.from_api({"startTime": start, "channelType": channel, "perKwh": per_kwh})


class TestPriceRecord:
    """Tests for PriceRecord."""

    def test_from_api_parses_z_suffix(self) -> None:
        price = record("2024-03-01T10:30:00Z")
        assert price.start_time == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
        assert price.channel_type == "general"
        assert price.per_kwh == 20.0

    def test_day_is_utc_calendar_date(self) -> None:
        price = record("2024-03-02T09:00:00+10:00")
        assert price.day == date(2024, 3, 1)

    def test_key_normalises_offsets(self) -> None:
        assert record("2024-03-02T09:00:00+10:00").key == record("2024-03-01T23:00:00Z").key

    def test_to_dict_preserves_unknown_fields(self) -> None:
        raw = {
            "startTime": "2024-03-01T00:00:00Z",
            "channelType": "feedIn",
            "perKwh": -5.2,
            "descriptor": "low",
            "renewables": 61.0,
        }
        assert PriceRecord.from_api(raw).to_dict() == raw

    def test_parse_skips_malformed_records(self) -> None:
        items = [
            {"startTime": "2024-03-01T00:00:00Z", "channelType": "general", "perKwh": 1},
            {"channelType": "general"},
            {"startTime": "not a date", "channelType": "general"},
            {"startTime": "2024-03-01T00:30:00Z", "channelType": "general", "perKwh": "x"},
        ]
        assert len(parse_price_records(items)) == 1


class TestDateRange:
    def test_days_is_inclusive(self) -> None:
        assert DateRange(date(2024, 3, 1), date(2024, 3, 5)).days == 5

    def test_to_params(self) -> None:
        assert DateRange(date(2024, 3, 1), date(2024, 3, 5)).to_params() == {
            "startDate": "2024-03-01",
            "endDate": "2024-03-05",
        }


class TestDedupeAndSort:
    """Tests for dedupe_and_sort()."""

    def test_later_batch_wins(self) -> None:
        old = record("2024-03-01T00:00:00Z", per_kwh=10.0)
        new = record("2024-03-01T00:00:00Z", per_kwh=99.0)

        merged = dedupe_and_sort([old], [new])

        assert len(merged) == 1
        assert merged[0].per_kwh == 99.0

    def test_channels_are_distinct_keys(self) -> None:
        merged = dedupe_and_sort(
            [record("2024-03-01T00:00:00Z", "general")],
            [record("2024-03-01T00:00:00Z", "feedIn")],
        )
        assert len(merged) == 2

    @given(
        batches=st.lists(
            st.lists(
                st.tuples(
                    st.integers(min_value=0, max_value=96),
                    st.sampled_from(["general", "feedIn", "controlledLoad"]),
                ),
                max_size=30,
            ),
            max_size=5,
        )
    )
    @settings(max_examples=100, deadline=None)
    def test_never_yields_duplicate_keys(self, batches) -> None:
        """Property: any sequence of merges leaves one record per key, sorted."""
        base = datetime(2024, 3, 1, tzinfo=timezone.utc).timestamp()
        record_batches = [
            [
                PriceRecord(
                    start_time=datetime.fromtimestamp(base + slot * 1800, timezone.utc),
                    channel_type=channel,
                )
                for slot, channel in batch
            ]
            for batch in batches
        ]

        merged = dedupe_and_sort(*record_batches)

        keys = [r.key for r in merged]
        assert len(keys) == len(set(keys))
        assert keys == sorted(keys)
        expected = {r.key for batch in record_batches for r in batch}
        assert set(keys) == expected
