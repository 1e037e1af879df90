"""License cache key conventions and invalidation helpers.

The CRUD layer reads through these keys; the sync pipeline and lifecycle jobs
invalidate them after writing. Three key families exist:

- ``license:{id}`` for single entities
- ``licenses:{filters}`` for list queries (any filter variation is its own key)
- ``licenses:stats`` for dashboard aggregates
"""

from __future__ import annotations

import json
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from uuid import UUID

    from licensesync.domain.ports.cache import Cache

log = getLogger(__name__)

ENTITY_TTL_SECONDS = 300.0
LIST_TTL_SECONDS = 300.0
STATS_TTL_SECONDS = 1800.0

LICENSE_KEY_PREFIX = "license:"
LIST_KEY_PREFIX = "licenses:"
STATS_KEY = "licenses:stats"


def license_key(license_id: UUID | str) -> str:
    return f"{LICENSE_KEY_PREFIX}{license_id}"


def list_key(filters: Mapping[str, object]) -> str:
    serialized = json.dumps(dict(filters), sort_keys=True, separators=(",", ":"), default=str)
    return f"{LIST_KEY_PREFIX}{serialized}"


def invalidate_license(cache: Cache, license_id: UUID | str) -> int:
    """Drop one entity key plus every list and aggregate key."""

    removed = int(cache.delete(license_key(license_id)))
    removed += cache.clear_pattern(f"{LIST_KEY_PREFIX}*")
    return removed


def invalidate_all_licenses(cache: Cache) -> int:
    """Drop every license-related key; used after bulk writes."""

    removed = cache.clear_pattern(f"{LICENSE_KEY_PREFIX}*")
    removed += cache.clear_pattern(f"{LIST_KEY_PREFIX}*")
    log.debug(f"Invalidated {removed} license cache entries")
    return removed


async def cached_read[T](
    cache: Cache,
    key: str,
    loader: Callable[[], Awaitable[T]],
    *,
    ttl_seconds: float,
) -> T:
    """Cache-first read; concurrent misses for one key share a single load."""

    return await cache.remember(key, loader, ttl_seconds)


def write_through[T](cache: Cache, mutation: Callable[[], T], license_id: UUID | str) -> T:
    """Apply a store mutation, then invalidate (never update) the affected keys."""

    result = mutation()
    invalidate_license(cache, license_id)
    return result
