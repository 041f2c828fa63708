"""In-process timed cache with stale retention, plus single-flight refresh.

``TimedCache`` only stores and expires values. The read policy (fresh hit,
stale hit with one background refresh, or awaited refresh on a miss) lives in
the route table and the page resolver, which pair a ``TimedCache`` with a
``SingleFlight`` keyed the same way.

Both are plain objects constructed once in the app lifespan and injected;
nothing here is module-global.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

import structlog

from notionsite.models.cache import TimedCacheEntry

log = structlog.get_logger()

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


class TimedCache(Generic[K, V]):
    """Expiring key/value store that keeps expired entries for stale reads.

    Reads return the ``TimedCacheEntry`` rather than the bare value so that a
    cached ``None`` (a remembered "not found") is distinguishable from a miss.
    A TTL of zero disables caching: writes are dropped.
    """

    def __init__(self, ttl_seconds: float, *, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[K, TimedCacheEntry[V]] = {}

    def read_fresh(self, key: K) -> TimedCacheEntry[V] | None:
        """Return the entry only while ``now < expires_at``."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry

    def read_stale(self, key: K) -> TimedCacheEntry[V] | None:
        """Return the entry regardless of expiry."""
        return self._entries.get(key)

    def write(self, key: K, value: V) -> None:
        if self._ttl <= 0:
            return
        self._entries[key] = TimedCacheEntry(value=value, expires_at=self._clock() + self._ttl)

    def invalidate(self, key: K | None = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        if key is None:
            self._entries.clear()
            return
        self._entries.pop(key, None)


class SingleFlight(Generic[K, V]):
    """At most one in-flight refresh per key.

    ``run`` returns the running task for ``key`` if there is one, otherwise
    starts ``factory()`` as a new task. The key is released as soon as the
    task finishes, successfully or not.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._inflight: dict[K, asyncio.Task[V]] = {}

    def run(self, key: K, factory: Callable[[], Awaitable[V]]) -> asyncio.Task[V]:
        task = self._inflight.get(key)
        if task is not None:
            return task

        task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._release(key, done))
        return task

    async def wait(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        """Join (or start) the refresh for ``key`` and await its result.

        Shielded so a cancelled caller does not cancel the shared refresh.
        """
        return await asyncio.shield(self.run(key, factory))

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    def _release(self, key: K, task: asyncio.Task[V]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        # Retrieve the exception so unawaited background refreshes do not
        # trigger "exception was never retrieved"; awaiting callers still get it.
        exc = task.exception()
        if exc is not None:
            log.warning(
                "refresh_failed",
                cache=self._name,
                key=str(key),
                exc_info=(type(exc), exc, exc.__traceback__),
            )
