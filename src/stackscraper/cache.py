from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

import structlog

logger = structlog.get_logger()

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _mark_retrieved(task: asyncio.Task) -> None:
    # Waiters may all have been cancelled before a failing computation finished
    if not task.cancelled():
        task.exception()


class OnceCache(Generic[K, V]):
    """Append-only async cache with get-or-compute-once semantics per key.

    The first caller for a key starts the initializer as a task; concurrent
    callers for the same key await that task instead of starting their own.
    Successful values are kept for the lifetime of the cache. A failed
    initialization is forgotten so that a later call can try again.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._values: dict[K, V] = {}
        self._pending: dict[K, asyncio.Task[V]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def peek(self, key: K) -> V | None:
        """Return a cached value without computing it."""
        return self._values.get(key)

    async def get_or_compute(self, key: K, initializer: Callable[[], Awaitable[V]]) -> V:
        if key in self._values:
            return self._values[key]

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, initializer))
            task.add_done_callback(_mark_retrieved)
            self._pending[key] = task

        # Shield so that a cancelled waiter does not cancel the shared computation
        return await asyncio.shield(task)

    async def _compute(self, key: K, initializer: Callable[[], Awaitable[V]]) -> V:
        try:
            value = await initializer()
        except BaseException:
            logger.debug("cache_initializer_failed", cache=self._name, key=str(key))
            raise
        else:
            self._values[key] = value
            return value
        finally:
            self._pending.pop(key, None)
