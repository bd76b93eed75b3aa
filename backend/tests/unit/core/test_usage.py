"""Unit tests for fire-and-forget usage metering."""
from unittest.mock import AsyncMock

import pytest

from price_cache.core.usage import InMemoryUsageMeter, UsageMeter, UsageRecorder


class TestUsageRecorder:
    """Tests for UsageRecorder.fire_and_forget()."""

    @pytest.mark.asyncio
    async def test_records_event_in_background(self) -> None:
        meter = InMemoryUsageMeter()
        recorder = UsageRecorder(meter=meter, service_tag="amber")

        recorder.fire_and_forget("user-1")
        await recorder.drain()

        assert meter.count("user-1") == 1

    @pytest.mark.asyncio
    async def test_no_meter_is_noop(self) -> None:
        recorder = UsageRecorder(meter=None)
        recorder.fire_and_forget("user-1")
        await recorder.drain()

    @pytest.mark.asyncio
    async def test_missing_caller_is_not_recorded(self) -> None:
        meter = InMemoryUsageMeter()
        recorder = UsageRecorder(meter=meter)

        recorder.fire_and_forget(None)
        recorder.fire_and_forget("")
        await recorder.drain()

        assert sum(meter.counts.values()) == 0

    @pytest.mark.asyncio
    async def test_meter_failure_is_swallowed(self) -> None:
        """A metering failure never reaches the caller."""
        meter = AsyncMock(spec=UsageMeter)
        meter.record_usage.side_effect = RuntimeError("meter unavailable")
        recorder = UsageRecorder(meter=meter, service_tag="amber")

        recorder.fire_and_forget("user-1")
        await recorder.drain()

        meter.record_usage.assert_awaited_once_with("user-1", "amber")

    @pytest.mark.asyncio
    async def test_service_tag_is_passed_through(self) -> None:
        meter = InMemoryUsageMeter()
        recorder = UsageRecorder(meter=meter, service_tag="amber-prices")

        recorder.fire_and_forget("user-1")
        recorder.fire_and_forget("user-1")
        await recorder.drain()

        assert meter.count("user-1", "amber-prices") == 2
        assert meter.count("user-1") == 0
