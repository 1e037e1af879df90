"""Alert records and the bounded alert feed."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from .buffers import RingBuffer

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

log = getLogger(__name__)

ALERT_FEED_CAPACITY = 100


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertType(StrEnum):
    SLOW_API_REQUEST = "SLOW_API_REQUEST"
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    HIGH_MEMORY_USAGE = "HIGH_MEMORY_USAGE"
    SLOW_DATABASE_OPERATION = "SLOW_DATABASE_OPERATION"
    VERY_SLOW_SYNC_OPERATION = "VERY_SLOW_SYNC_OPERATION"
    HIGH_ERROR_RATE = "HIGH_ERROR_RATE"
    SYNC_FAILED = "SYNC_FAILED"
    JOB_FAILED = "JOB_FAILED"


_LOG_LEVEL_BY_SEVERITY = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.ERROR: logging.ERROR,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_alert_id(now: datetime) -> str:
    return f"alert_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}"


@dataclass(slots=True, kw_only=True)
class Alert:
    """Everything but the acknowledgement fields is fixed at creation."""

    id: str
    type: AlertType
    severity: AlertSeverity
    message: str
    details: Mapping[str, object] = field(default_factory=dict[str, object])
    timestamp: datetime
    acknowledged: bool = False
    acknowledged_at: datetime | None = None


class AlertFeed:
    def __init__(
        self,
        *,
        capacity: int = ALERT_FEED_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._alerts: RingBuffer[Alert] = RingBuffer(capacity)
        self._clock = clock

    def create(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        details: Mapping[str, object] | None = None,
    ) -> Alert:
        now = self._clock()
        alert = Alert(
            id=_new_alert_id(now),
            type=alert_type,
            severity=severity,
            message=message,
            details=dict(details or {}),
            timestamp=now,
        )
        self._alerts.append(alert)
        log.log(
            _LOG_LEVEL_BY_SEVERITY[severity],
            f"Alert {alert.type} ({alert.severity}): {alert.message}",
        )
        return alert

    def query(
        self,
        *,
        severity: AlertSeverity | None = None,
        acknowledged: bool | None = None,
        alert_type: AlertType | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """Return matching alerts, newest first."""

        matches = [
            alert
            for alert in reversed(self._alerts.snapshot())
            if (severity is None or alert.severity is severity)
            and (acknowledged is None or alert.acknowledged is acknowledged)
            and (alert_type is None or alert.type is alert_type)
        ]
        return matches[:limit] if limit is not None else matches

    def acknowledge(self, alert_id: str) -> bool:
        for alert in self._alerts:
            if alert.id == alert_id:
                if not alert.acknowledged:
                    alert.acknowledged = True
                    alert.acknowledged_at = self._clock()
                return True
        return False

    def clear(self) -> None:
        self._alerts.clear()

    def __len__(self) -> int:
        return len(self._alerts)
