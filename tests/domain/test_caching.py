from __future__ import annotations

import asyncio
from uuid import uuid4

from licensesync.adapters.memory_cache import InMemoryCache
from licensesync.domain.caching import (
    STATS_KEY,
    cached_read,
    invalidate_all_licenses,
    invalidate_license,
    license_key,
    list_key,
    write_through,
)


def test_list_key_is_independent_of_filter_order() -> None:
    assert list_key({"status": "active", "page": 2}) == list_key({"page": 2, "status": "active"})
    assert list_key({}) == "licenses:{}"


def test_invalidate_license_drops_entity_lists_and_stats() -> None:
    cache = InMemoryCache()
    target, other = uuid4(), uuid4()
    cache.set(license_key(target), "target")
    cache.set(license_key(other), "other")
    cache.set(list_key({"page": 1}), [])
    cache.set(STATS_KEY, {})

    removed = invalidate_license(cache, target)

    assert removed == 3
    assert cache.get(license_key(other)) == "other"
    assert cache.get(STATS_KEY) is None


def test_invalidate_all_licenses_clears_every_license_key() -> None:
    cache = InMemoryCache()
    cache.set(license_key(uuid4()), 1)
    cache.set(license_key(uuid4()), 2)
    cache.set(list_key({"q": "x"}), [])
    cache.set("unrelated", True)

    assert invalidate_all_licenses(cache) == 3
    assert cache.get("unrelated") is True


def test_write_through_invalidates_after_mutation() -> None:
    cache = InMemoryCache()
    license_id = uuid4()
    cache.set(license_key(license_id), "stale")
    store: dict[str, str] = {}

    result = write_through(cache, lambda: store.setdefault("value", "fresh"), license_id)

    assert result == "fresh"
    assert cache.get(license_key(license_id)) is None


def test_cached_read_loads_once() -> None:
    cache = InMemoryCache()
    loads: list[int] = []

    async def loader() -> int:
        loads.append(1)
        return 42

    async def scenario() -> tuple[int, int]:
        first = await cached_read(cache, STATS_KEY, loader, ttl_seconds=60)
        second = await cached_read(cache, STATS_KEY, loader, ttl_seconds=60)
        return first, second

    assert asyncio.run(scenario()) == (42, 42)
    assert len(loads) == 1
