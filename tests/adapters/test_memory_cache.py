from __future__ import annotations

import asyncio

import pytest

from licensesync.adapters.memory_cache import CacheStats, InMemoryCache
from licensesync.domain.ports.cache import Cache


class _Ticker:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_memory_cache_satisfies_cache_port() -> None:
    assert isinstance(InMemoryCache(), Cache)


def test_entries_expire_after_ttl() -> None:
    ticker = _Ticker()
    cache = InMemoryCache(default_ttl_seconds=10, clock=ticker)
    cache.set("license:a", {"id": "a"})
    cache.set("license:b", {"id": "b"}, ttl_seconds=100)

    ticker.now = 10.0

    assert cache.get("license:a") is None
    assert cache.get("license:b") == {"id": "b"}
    assert cache.exists("license:b")
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)


def test_clear_pattern_uses_glob_matching() -> None:
    cache = InMemoryCache()
    cache.set_many({"license:1": 1, "licenses:{}": [], "licenses:stats": {}, "other": 0})

    removed = cache.clear_pattern("licenses:*")

    assert removed == 2
    assert cache.get("license:1") == 1
    assert cache.get("other") == 0
    assert cache.get("licenses:stats") is None


def test_delete_reports_whether_key_existed() -> None:
    cache = InMemoryCache()
    cache.set("license:1", 1)

    assert cache.delete("license:1") is True
    assert cache.delete("license:1") is False
    assert cache.stats().deletes == 1


def test_reset_clears_entries_and_counters() -> None:
    cache = InMemoryCache()
    cache.set("a", 1)
    cache.get("a")

    cache.reset()

    assert cache.stats() == CacheStats(hits=0, misses=0, sets=0, deletes=0, size=0)


def test_remember_shares_one_load_between_concurrent_callers() -> None:
    cache = InMemoryCache()
    calls = 0

    async def loader() -> str:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return "loaded"

    async def scenario() -> list[str]:
        loads = (cache.remember("licenses:{}", loader) for _ in range(5))
        return list(await asyncio.gather(*loads))

    assert asyncio.run(scenario()) == ["loaded"] * 5
    assert calls == 1
    assert cache.get("licenses:{}") == "loaded"


def test_remember_propagates_loader_failure_without_caching() -> None:
    cache = InMemoryCache()

    async def loader() -> str:
        raise LookupError("store unavailable")

    with pytest.raises(LookupError):
        asyncio.run(cache.remember("license:x", loader))

    assert cache.get("license:x") is None
