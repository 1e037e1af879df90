"""In-process TTL cache with glob-pattern invalidation."""

from __future__ import annotations

import asyncio
import fnmatch
import time
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

log = getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass(slots=True)
class CacheEntry:
    value: object
    inserted_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_seconds


@dataclass(slots=True, frozen=True)
class CacheStats:
    hits: int
    misses: int
    sets: int
    deletes: int
    size: int


class InMemoryCache:
    """Key/value store whose entries expire lazily on read.

    Single event loop only: there is no locking around the entry map.
    """

    def __init__(
        self,
        *,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Future[object]] = {}
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

    def get(self, key: str) -> object | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def exists(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def set(self, key: str, value: object, ttl_seconds: float | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl_seconds=ttl)
        self._sets += 1

    def set_many(self, items: Mapping[str, object], ttl_seconds: float | None = None) -> None:
        for key, value in items.items():
            self.set(key, value, ttl_seconds)

    def delete(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._deletes += 1
        return removed

    def clear_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob such as ``licenses:*``."""

        matching = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in matching:
            del self._entries[key]
        self._deletes += len(matching)
        if matching:
            log.debug(f"Cleared {len(matching)} cache entries matching {pattern!r}")
        return len(matching)

    def clear(self) -> int:
        return self.clear_pattern("*")

    def stats(self) -> CacheStats:
        now = self._clock()
        size = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            deletes=self._deletes,
            size=size,
        )

    def reset(self) -> None:
        self._entries.clear()
        self._pending.clear()
        self._hits = self._misses = self._sets = self._deletes = 0

    async def remember[T](
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl_seconds: float | None = None,
    ) -> T:
        """Return the cached value or produce it once, even for concurrent callers."""

        cached = self.get(key)
        if cached is not None:
            return cast("T", cached)

        pending = self._pending.get(key)
        if pending is not None:
            return cast("T", await asyncio.shield(pending))

        future: asyncio.Future[object] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            value = await producer()
            self.set(key, value, ttl_seconds)
            future.set_result(value)
            return value
        except Exception as exc:
            future.set_exception(exc)
            # waiters observe the failure; mark it retrieved for the no-waiter case
            future.exception()
            raise
        finally:
            self._pending.pop(key, None)
            if not future.done():
                future.cancel()
