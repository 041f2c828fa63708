"""Unit tests for notionsite.cache."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from notionsite.cache import SingleFlight, TimedCache

if TYPE_CHECKING:
    from tests.fakes import FakeClock

# ---------------------------------------------------------------------------
# TimedCache
# ---------------------------------------------------------------------------


class TestTimedCache:
    def test_fresh_within_ttl(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int] = TimedCache(60, clock=clock)
        cache.write("a", 1)
        clock.advance(59)
        entry = cache.read_fresh("a")
        assert entry is not None
        assert entry.value == 1

    def test_expired_entry_only_readable_as_stale(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int] = TimedCache(60, clock=clock)
        cache.write("a", 1)
        clock.advance(60)
        assert cache.read_fresh("a") is None
        stale = cache.read_stale("a")
        assert stale is not None
        assert stale.value == 1

    def test_miss(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int] = TimedCache(60, clock=clock)
        assert cache.read_fresh("missing") is None
        assert cache.read_stale("missing") is None

    def test_cached_none_is_distinguishable_from_miss(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int | None] = TimedCache(60, clock=clock)
        cache.write("gone", None)
        entry = cache.read_fresh("gone")
        assert entry is not None
        assert entry.value is None

    def test_write_supersedes(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int] = TimedCache(60, clock=clock)
        cache.write("a", 1)
        clock.advance(30)
        cache.write("a", 2)
        clock.advance(45)
        entry = cache.read_fresh("a")
        assert entry is not None
        assert entry.value == 2

    def test_zero_ttl_disables_caching(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int] = TimedCache(0, clock=clock)
        cache.write("a", 1)
        assert cache.read_fresh("a") is None
        assert cache.read_stale("a") is None

    def test_invalidate_one_key(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int] = TimedCache(60, clock=clock)
        cache.write("a", 1)
        cache.write("b", 2)
        cache.invalidate("a")
        assert cache.read_stale("a") is None
        assert cache.read_stale("b") is not None

    def test_invalidate_all(self, clock: FakeClock) -> None:
        cache: TimedCache[str, int] = TimedCache(60, clock=clock)
        cache.write("a", 1)
        cache.write("b", 2)
        cache.invalidate()
        assert cache.read_stale("a") is None
        assert cache.read_stale("b") is None


# ---------------------------------------------------------------------------
# SingleFlight
# ---------------------------------------------------------------------------


class TestSingleFlight:
    async def test_concurrent_callers_share_one_call(self) -> None:
        flight: SingleFlight[str, int] = SingleFlight("test")
        calls = 0
        release = asyncio.Event()

        async def factory() -> int:
            nonlocal calls
            calls += 1
            await release.wait()
            return 42

        waiters = [asyncio.create_task(flight.wait("k", factory)) for _ in range(3)]
        await asyncio.sleep(0)
        assert flight.in_flight("k")
        release.set()

        assert await asyncio.gather(*waiters) == [42, 42, 42]
        assert calls == 1
        assert not flight.in_flight("k")

    async def test_key_released_after_failure(self) -> None:
        flight: SingleFlight[str, int] = SingleFlight("test")

        async def boom() -> int:
            raise RuntimeError("backend down")

        with pytest.raises(RuntimeError):
            await flight.wait("k", boom)
        await asyncio.sleep(0)
        assert not flight.in_flight("k")

        async def ok() -> int:
            return 1

        assert await flight.wait("k", ok) == 1

    async def test_cancelled_waiter_does_not_cancel_shared_task(self) -> None:
        flight: SingleFlight[str, int] = SingleFlight("test")
        release = asyncio.Event()

        async def factory() -> int:
            await release.wait()
            return 7

        first = asyncio.create_task(flight.wait("k", factory))
        await asyncio.sleep(0)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        second = asyncio.create_task(flight.wait("k", factory))
        release.set()
        assert await second == 7

    async def test_distinct_keys_run_independently(self) -> None:
        flight: SingleFlight[str, str] = SingleFlight("test")

        async def make(value: str) -> str:
            await asyncio.sleep(0)
            return value

        a, b = await asyncio.gather(
            flight.wait("a", lambda: make("A")),
            flight.wait("b", lambda: make("B")),
        )
        assert (a, b) == ("A", "B")
