"""Renewal reminders, grace periods and auto-suspension of internal licenses."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from licensesync.domain.caching import invalidate_all_licenses
from licensesync.domain.model import ReminderType

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from licensesync.domain.ports.cache import Cache
    from licensesync.domain.ports.notifications import SyncEventPublisher
    from licensesync.domain.ports.unit_of_work import LicenseUnitOfWork

log = getLogger(__name__)

EXPIRING_REMINDERS_JOB = "expiring_reminders"
EXPIRATION_CHECKS_JOB = "expiration_checks"
GRACE_PERIOD_UPDATES_JOB = "grace_period_updates"
LIFECYCLE_JOBS = (EXPIRING_REMINDERS_JOB, EXPIRATION_CHECKS_JOB, GRACE_PERIOD_UPDATES_JOB)

AUTO_SUSPEND_REASON = "Auto-suspended due to expiration and grace period end"
EVENT_SOURCE = "license_lifecycle"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True, frozen=True)
class LifecycleJobResult:
    job: str
    processed: int
    license_ids: tuple[UUID, ...] = ()


class LicenseLifecycleService:
    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], LicenseUnitOfWork],
        cache: Cache | None = None,
        events: SyncEventPublisher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._cache = cache
        self._events = events
        self._clock = clock

    def run_job(self, name: str) -> LifecycleJobResult:
        match name:
            case "expiring_reminders":
                return self.process_expiring_licenses()
            case "expiration_checks":
                return self.process_expired_licenses()
            case "grace_period_updates":
                return self.update_grace_periods()
            case _:
                raise ValueError(
                    f"Unknown lifecycle job {name!r}; expected one of {', '.join(LIFECYCLE_JOBS)}"
                )

    def process_expiring_licenses(self) -> LifecycleJobResult:
        """Record each due renewal reminder (30 days, 7 days, 1 day) once per license."""

        now = self._clock()
        today = now.date()
        touched: dict[UUID, None] = {}
        with self._uow_factory() as uow:
            for license_ in uow.repositories.licenses.list_expiring():
                for reminder in ReminderType:
                    if license_.should_send_renewal_reminder(reminder, today):
                        license_.mark_renewal_reminder_sent(reminder, now)
                        touched[license_.id] = None
                        log.info(f"Renewal reminder {reminder} due for license {license_.key}")
            if touched:
                uow.commit()
        return self._finish(EXPIRING_REMINDERS_JOB, tuple(touched))

    def process_expired_licenses(self) -> LifecycleJobResult:
        """Suspend auto-suspend licenses that are expired and past their grace period."""

        now = self._clock()
        today = now.date()
        suspended: list[UUID] = []
        with self._uow_factory() as uow:
            for license_ in uow.repositories.licenses.list_expiring():
                if not license_.should_be_suspended(today):
                    continue
                license_.suspend(AUTO_SUSPEND_REASON, now)
                suspended.append(license_.id)
                log.info(f"Auto-suspended expired license {license_.key}")
            if suspended:
                uow.commit()
        return self._finish(EXPIRATION_CHECKS_JOB, tuple(suspended))

    def update_grace_periods(self) -> LifecycleJobResult:
        now = self._clock()
        updated: list[UUID] = []
        with self._uow_factory() as uow:
            for license_ in uow.repositories.licenses.list_expiring():
                if not license_.auto_suspend_enabled or license_.grace_period_end is not None:
                    continue
                license_.grace_period_end = license_.calculate_grace_period_end()
                license_.touch(now)
                updated.append(license_.id)
            if updated:
                uow.commit()
        return self._finish(GRACE_PERIOD_UPDATES_JOB, tuple(updated))

    def _finish(self, job: str, ids: tuple[UUID, ...]) -> LifecycleJobResult:
        if ids:
            if self._cache is not None:
                invalidate_all_licenses(self._cache)
            if self._events is not None:
                self._events.emit_data_changed(EVENT_SOURCE, ids)
        log.info(f"Lifecycle job {job} processed {len(ids)} license(s)")
        return LifecycleJobResult(job=job, processed=len(ids), license_ids=ids)
