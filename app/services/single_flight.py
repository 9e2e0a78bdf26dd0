"""Per-key deduplication of in-flight generations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Hashable
from typing import Any
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _consume_result(task: asyncio.Task) -> None:
    # Keeps asyncio from warning about an exception nobody awaited
    if not task.cancelled():
        task.exception()


class SingleFlight:
    """Runs at most one generation per key at a time.

    Concurrent callers for a key that is already being generated await the same
    task instead of starting their own. Cancelling one waiter never cancels the
    shared task.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task[Any]] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(fn())
            task.add_done_callback(_consume_result)
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
            self._inflight[key] = task
        else:
            logger.debug("Joining in-flight generation for %s", key)
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
