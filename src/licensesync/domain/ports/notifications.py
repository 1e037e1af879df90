"""Port for pushing sync events to connected dashboards."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from uuid import UUID


@runtime_checkable
class SyncEventPublisher(Protocol):
    def emit_sync_complete(self, summary: Mapping[str, object]) -> None: ...

    def emit_data_changed(self, source: str, ids: Iterable[UUID | str] | None = None) -> None: ...
