"""Port for the key/value cache shared with the CRUD layer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


@runtime_checkable
class Cache(Protocol):
    def get(self, key: str) -> object | None: ...

    def set(self, key: str, value: object, ttl_seconds: float | None = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def clear_pattern(self, pattern: str) -> int: ...

    async def remember[T](
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl_seconds: float | None = None,
    ) -> T: ...
