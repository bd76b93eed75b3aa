"""Mock Amber API for testing and local development.

Serves fake but realistic-looking Amber responses through an
httpx.MockTransport, so AmberClient runs unmodified without network access.
Useful for:
- Unit tests that need predictable upstream data and call counts
- Failure injection (429s, 5xx, timeouts, malformed bodies)
- Development environments without an Amber API key
"""
import logging
from collections import deque
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import httpx

from price_cache.providers.base import ChannelType
from price_cache.utils.dates import day_window, parse_timestamp

logger = logging.getLogger(__name__)


class MockAmberApi:
    """
    In-process fake of the Amber REST API.

    Attributes:
        requests: Every request received, in order
        price_records: Fixed records served by /prices instead of generated ones
            (filtered to the requested window)
        sites: Sites returned by /sites
    """

    def __init__(
        self,
        channels: tuple[str, ...] = (ChannelType.GENERAL.value, ChannelType.FEED_IN.value),
        base_price: float = 25.0,
        wrap_responses: bool = False,
    ):
        self.channels = channels
        self.base_price = base_price
        self.wrap_responses = wrap_responses
        self.requests: list[httpx.Request] = []
        self.price_records: list[dict[str, Any]] | None = None
        self.sites: list[dict[str, Any]] = [
            {"id": "01MOCKSITE", "nmi": "4102000000", "status": "active", "network": "Ausgrid"}
        ]
        self._queued: deque[httpx.Response | Exception] = deque()

    def queue(self, *responses: httpx.Response | Exception) -> None:
        """Serve these responses (or raise these exceptions) before normal routing."""
        self._queued.extend(responses)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def price_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/prices")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self._queued:
            queued = self._queued.popleft()
            if isinstance(queued, Exception):
                raise queued
            return queued

        path = request.url.path
        if path.endswith("/sites"):
            return self._json(self.sites)
        if path.endswith("/prices/current"):
            next_intervals = int(request.url.params.get("next", "1"))
            return self._json(self._current_prices(next_intervals))
        if path.endswith("/prices"):
            params = request.url.params
            start = date.fromisoformat(params["startDate"])
            end = date.fromisoformat(params["endDate"])
            resolution = int(params.get("resolution", "30"))
            return self._json(self._historical_prices(start, end, resolution))

        return httpx.Response(404, json={"message": "Not Found"})

    def _json(self, records: list[dict[str, Any]]) -> httpx.Response:
        body: Any = {"errno": 0, "result": records} if self.wrap_responses else records
        return httpx.Response(200, json=body)

    def _historical_prices(self, start: date, end: date, resolution: int) -> list[dict[str, Any]]:
        if self.price_records is not None:
            lower, upper = day_window(start, end)
            return [
                r for r in self.price_records
                if lower <= parse_timestamp(r["startTime"]) < upper
            ]

        records = []
        current = datetime.combine(start, time.min, tzinfo=timezone.utc)
        stop = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        step = timedelta(minutes=resolution)
        while current < stop:
            for channel in self.channels:
                records.append(self.make_price(current, channel, step))
            current += step

        logger.debug(f"Generated {len(records)} mock prices for {start}..{end}")
        return records

    def _current_prices(self, next_intervals: int) -> list[dict[str, Any]]:
        step = timedelta(minutes=30)
        now = datetime.now(timezone.utc)
        current = now.replace(minute=0 if now.minute < 30 else 30, second=0, microsecond=0)
        records = []
        for offset in range(next_intervals + 1):
            interval_type = "CurrentInterval" if offset == 0 else "ForecastInterval"
            for channel in self.channels:
                record = self.make_price(current + step * offset, channel, step)
                record["type"] = interval_type
                records.append(record)
        return records

    def make_price(self, start: datetime, channel: str, step: timedelta) -> dict[str, Any]:
        """Build one Amber-shaped price dict."""
        price = self.base_price + (start.hour % 12)
        if channel == ChannelType.FEED_IN.value:
            price = -round(price * 0.3, 2)
        return {
            "type": "ActualInterval",
            "duration": int(step.total_seconds() // 60),
            "date": start.date().isoformat(),
            "startTime": start.isoformat().replace("+00:00", "Z"),
            "endTime": (start + step).isoformat().replace("+00:00", "Z"),
            "channelType": channel,
            "perKwh": float(price),
            "spotPerKwh": round(float(price) * 0.4, 2),
            "renewables": 40.0,
            "descriptor": "neutral",
        }
