"""Tests for the TTL result cache."""

import asyncio

import pytest

from app.core.result_cache import ResultCache, SEARCH, DETAIL, AUTOCOMPLETE


class Loader:
    def __init__(self, value="value"):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        return self.value


class TestEntries:
    def test_get_after_set(self, cache):
        cache.set(SEARCH, "k", {"total": 3})
        assert cache.get(SEARCH, "k") == {"total": 3}

    def test_entry_expires_after_ttl(self, cache, clock, config):
        cache.set(SEARCH, "k", [1])
        clock.advance(config.CACHE_TTL_SEARCH_SECONDS - 1)
        assert cache.get(SEARCH, "k") == [1]
        clock.advance(1)
        assert cache.get(SEARCH, "k") is None

    def test_namespaces_have_independent_ttls(self, cache, clock):
        cache.set(SEARCH, "k", "search")
        cache.set(DETAIL, "k", "detail")
        clock.advance(301)
        assert cache.get(SEARCH, "k") is None
        assert cache.get(DETAIL, "k") == "detail"

    def test_values_are_snapshots(self, cache):
        value = {"ids": ["a"]}
        cache.set(SEARCH, "k", value)
        value["ids"].append("b")
        returned = cache.get(SEARCH, "k")
        returned["ids"].append("c")
        assert cache.get(SEARCH, "k") == {"ids": ["a"]}

    def test_unknown_namespace(self, cache):
        with pytest.raises(KeyError):
            cache.set("nope", "k", 1)

    def test_invalidate_and_clear(self, cache):
        cache.set(SEARCH, "a", 1)
        cache.set(SEARCH, "b", 2)
        cache.set(DETAIL, "a", 3)
        cache.invalidate(SEARCH, "a")
        assert cache.get(SEARCH, "a") is None
        cache.clear(SEARCH)
        assert cache.get(SEARCH, "b") is None
        assert cache.get(DETAIL, "a") == 3
        cache.clear()
        assert cache.get(DETAIL, "a") is None

    def test_oldest_evicted_when_full(self, clock):
        cache = ResultCache({SEARCH: 300}, max_entries=2, clock=clock)
        cache.set(SEARCH, "first", 1)
        clock.advance(1)
        cache.set(SEARCH, "second", 2)
        clock.advance(1)
        cache.set(SEARCH, "third", 3)
        assert cache.get(SEARCH, "first") is None
        assert cache.get(SEARCH, "second") == 2
        assert cache.get(SEARCH, "third") == 3

    def test_stats(self, cache):
        cache.set(AUTOCOMPLETE, "pal", ["Palmira"])
        cache.get(AUTOCOMPLETE, "pal")
        cache.get(AUTOCOMPLETE, "ken")
        stats = cache.stats()[AUTOCOMPLETE]
        assert stats == {"ttl_seconds": 86400, "entries": 1, "hits": 1, "misses": 1}


class TestGetOrLoad:
    async def test_miss_loads_then_hits(self, cache):
        loader = Loader()
        assert await cache.get_or_load(SEARCH, "k", loader) == "value"
        assert await cache.get_or_load(SEARCH, "k", loader) == "value"
        assert loader.calls == 1

    async def test_reloads_after_expiry(self, cache, clock):
        loader = Loader()
        await cache.get_or_load(SEARCH, "k", loader)
        clock.advance(300)
        await cache.get_or_load(SEARCH, "k", loader)
        assert loader.calls == 2

    async def test_failed_load_not_cached(self, cache):
        calls = []

        async def failing():
            calls.append(1)
            raise RuntimeError("store down")

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cache.get_or_load(SEARCH, "k", failing)
        assert len(calls) == 2
        assert cache.get(SEARCH, "k") is None

    async def test_concurrent_misses_share_one_load(self, cache):
        loader = Loader()
        results = await asyncio.gather(*[cache.get_or_load(SEARCH, "k", loader) for _ in range(5)])
        assert results == ["value"] * 5
        assert loader.calls == 1

    async def test_cancelled_caller_still_populates_cache(self, cache):
        started = asyncio.Event()
        release = asyncio.Event()

        async def loader():
            started.set()
            await release.wait()
            return "late"

        caller = asyncio.create_task(cache.get_or_load(SEARCH, "k", loader))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        for _ in range(5):
            await asyncio.sleep(0)
        assert cache.get(SEARCH, "k") == "late"
