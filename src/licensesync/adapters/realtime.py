"""Fire-and-forget push of sync events to whatever realtime transport is attached."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from uuid import UUID

log = getLogger(__name__)

SYNC_COMPLETE_EVENT = "license:sync_complete"
DATA_CHANGED_EVENT = "license:data_changed"


@runtime_checkable
class RealtimeTransport(Protocol):
    def emit(self, event: str, payload: Mapping[str, object]) -> None: ...


class RealtimeNotifier:
    """Publishes ``license:*`` events; a missing or failing transport never breaks a sync."""

    def __init__(
        self,
        transport: RealtimeTransport | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._transport = transport
        self._clock = clock

    @property
    def attached(self) -> bool:
        return self._transport is not None

    def attach(self, transport: RealtimeTransport) -> None:
        self._transport = transport
        log.debug(f"Realtime transport attached: {type(transport).__name__}")

    def detach(self) -> None:
        self._transport = None

    def emit_sync_complete(self, summary: Mapping[str, object]) -> None:
        payload: dict[str, object] = {
            "timestamp": summary.get("timestamp") or self._clock().isoformat(),
            "duration": summary.get("duration"),
            "created": summary.get("created", 0),
            "updated": summary.get("updated", 0),
            "failed": summary.get("failed", 0),
            "success": summary.get("success", False),
        }
        self._emit(SYNC_COMPLETE_EVENT, payload)

    def emit_data_changed(self, source: str, ids: Iterable[UUID | str] | None = None) -> None:
        payload: dict[str, object] = {"source": source}
        if ids is not None:
            payload["ids"] = [str(license_id) for license_id in ids]
        self._emit(DATA_CHANGED_EVENT, payload)

    def _emit(self, event: str, payload: Mapping[str, object]) -> None:
        transport = self._transport
        if transport is None:
            return
        try:
            transport.emit(event, payload)
        except Exception:  # noqa: BLE001
            log.warning(f"Failed to emit {event} to realtime transport", exc_info=True)


if TYPE_CHECKING:
    from licensesync.domain.ports.notifications import SyncEventPublisher

    _publisher_check: SyncEventPublisher = RealtimeNotifier()
