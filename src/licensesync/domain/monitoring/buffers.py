"""Fixed-capacity buffers for samples and alerts."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class RingBuffer[T]:
    """Keeps the most recent ``capacity`` items; appending beyond it evicts the oldest."""

    __slots__ = ("_items",)

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("RingBuffer capacity must be positive")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        maxlen = self._items.maxlen
        assert maxlen is not None
        return maxlen

    def append(self, item: T) -> None:
        self._items.append(item)

    def clear(self) -> None:
        self._items.clear()

    def snapshot(self) -> list[T]:
        return list(self._items)

    def latest(self) -> T | None:
        return self._items[-1] if self._items else None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)
