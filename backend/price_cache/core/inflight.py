"""In-flight request tracking to collapse duplicate concurrent upstream fetches."""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InFlightTracker:
    """Share one pending operation between concurrent callers of the same key.

    The first caller for a key starts the operation as a task; later callers
    await that same task and receive the same outcome (value or exception).
    The entry is removed as soon as the task settles, so the next request
    after completion always runs a fresh operation.

    Example:
        >>> tracker = InFlightTracker()
        >>> prices = await tracker.run("user-1:site-9", lambda: fetch(...))
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run factory() unless an operation for key is already pending.

        Args:
            key: Composite resource key (e.g. "user_id:site_id")
            factory: Zero-argument callable returning the awaitable to share

        Returns:
            Result of the shared operation
        """
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        else:
            logger.debug(f"Joining in-flight request for {key}")

        # shield: a waiter being cancelled must not cancel the shared task
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the exception retrieved when every waiter went away
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"In-flight request for {key} failed: {task.exception()}")
