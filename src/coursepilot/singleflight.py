"""At most one in-flight call per key; concurrent callers share its result."""
import asyncio
from typing import Any, Awaitable, Callable, Hashable

from coursepilot.logger import get_logger

logger = get_logger(__name__)


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("Joining in-flight request for %s", key)
        # shield so one waiter being cancelled does not cancel the shared call
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # mark the exception retrieved; callers re-raise it from await
            task.exception()

    def clear(self) -> None:
        self._inflight.clear()
