"""Usage metering side channel.

Usage events are recorded fire-and-forget: the metering call runs as a
background task whose outcome is intentionally discarded. A metering failure
is logged and must never affect the primary request.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter

logger = logging.getLogger(__name__)


class UsageMeter(ABC):
    """Contract for the external usage-metering collaborator."""

    @abstractmethod
    async def record_usage(self, caller_id: str, service_tag: str) -> None:
        """Record one upstream API usage event for caller_id."""
        pass


class InMemoryUsageMeter(UsageMeter):
    """Counts usage events per (caller, service) in process memory."""

    def __init__(self) -> None:
        self.counts: Counter[tuple[str, str]] = Counter()

    async def record_usage(self, caller_id: str, service_tag: str) -> None:
        self.counts[(caller_id, service_tag)] += 1

    def count(self, caller_id: str, service_tag: str = "amber") -> int:
        return self.counts[(caller_id, service_tag)]


class UsageRecorder:
    """Schedules usage events without awaiting them.

    Pending tasks are referenced until they finish so they are not garbage
    collected mid-flight; drain() awaits them (used on shutdown and in tests).
    """

    def __init__(self, meter: UsageMeter | None = None, service_tag: str = "amber"):
        self.meter = meter
        self.service_tag = service_tag
        self._tasks: set[asyncio.Task] = set()

    def fire_and_forget(self, caller_id: str | None) -> None:
        """Record one usage event for caller_id in the background."""
        if self.meter is None or not caller_id:
            return

        task = asyncio.ensure_future(self._record(caller_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _record(self, caller_id: str) -> None:
        try:
            await self.meter.record_usage(caller_id, self.service_tag)
        except Exception as e:
            logger.warning(f"Failed to record {self.service_tag} usage for {caller_id}: {e}")

    async def drain(self) -> None:
        """Wait for all pending usage events to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
