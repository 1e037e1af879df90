from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import pytest

from licensesync.adapters.realtime import DATA_CHANGED_EVENT, RealtimeNotifier
from licensesync.domain.caching import list_key
from licensesync.domain.lifecycle import (
    AUTO_SUSPEND_REASON,
    EXPIRATION_CHECKS_JOB,
    GRACE_PERIOD_UPDATES_JOB,
    LicenseLifecycleService,
)
from licensesync.domain.model import License, LicenseStatus
from tests.helpers.licenses import FixedClock, RecordingTransport, make_license

if TYPE_CHECKING:
    from collections.abc import Callable

    from licensesync.adapters.memory_cache import InMemoryCache
    from licensesync.adapters.sqlalchemy import SqlAlchemyLicenseUnitOfWork

type UowFactory = Callable[[], SqlAlchemyLicenseUnitOfWork]


def _seed(uow_factory: UowFactory, *licenses: License) -> None:
    with uow_factory() as uow:
        for license_ in licenses:
            uow.repositories.licenses.add(license_)
        uow.commit()


def _by_key(uow_factory: UowFactory) -> dict[str, License]:
    with uow_factory() as uow:
        return {license_.key: license_ for license_ in uow.repositories.licenses.list_all()}


def _service(
    uow_factory: UowFactory,
    clock: FixedClock,
    *,
    cache: InMemoryCache | None = None,
    transport: RecordingTransport | None = None,
) -> LicenseLifecycleService:
    return LicenseLifecycleService(
        unit_of_work_factory=uow_factory,
        cache=cache,
        events=RealtimeNotifier(transport) if transport is not None else None,
        clock=clock,
    )


def test_due_reminders_are_recorded_once(
    sqlite_unit_of_work: UowFactory, clock: FixedClock
) -> None:
    _seed(
        sqlite_unit_of_work,
        make_license(key="MONTH", expires_at=date(2024, 7, 10)),
        make_license(key="WEEK", expires_at=date(2024, 6, 20)),
        make_license(key="DAY", expires_at=date(2024, 6, 16)),
        make_license(key="LATER", expires_at=date(2024, 12, 1)),
        make_license(key="GONE", expires_at=date(2024, 6, 1)),
    )
    service = _service(sqlite_unit_of_work, clock)

    first = service.process_expiring_licenses()
    second = service.process_expiring_licenses()

    assert first.processed == 3
    assert second.processed == 0
    stored = _by_key(sqlite_unit_of_work)
    assert stored["MONTH"].renewal_reminders_sent == ["30days"]
    assert stored["WEEK"].renewal_reminders_sent == ["7days"]
    assert stored["DAY"].renewal_reminders_sent == ["1day"]
    assert stored["DAY"].last_renewal_reminder == clock.now
    assert stored["LATER"].renewal_reminders_sent == []
    assert stored["GONE"].renewal_reminders_sent == []


def test_expired_licenses_past_grace_are_suspended(
    sqlite_unit_of_work: UowFactory,
    clock: FixedClock,
    cache: InMemoryCache,
) -> None:
    expired = date(2024, 5, 1)
    _seed(
        sqlite_unit_of_work,
        make_license(
            key="SUSPEND",
            expires_at=expired,
            auto_suspend_enabled=True,
            grace_period_end=date(2024, 6, 1),
        ),
        make_license(
            key="IN-GRACE",
            expires_at=expired,
            auto_suspend_enabled=True,
            grace_period_end=date(2024, 6, 20),
        ),
        make_license(key="MANUAL", expires_at=expired),
        make_license(
            key="CANCELLED",
            status=LicenseStatus.CANCEL,
            expires_at=expired,
            auto_suspend_enabled=True,
        ),
    )
    cache.set(list_key({}), ["stale"])
    transport = RecordingTransport()
    service = _service(sqlite_unit_of_work, clock, cache=cache, transport=transport)

    result = service.run_job(EXPIRATION_CHECKS_JOB)

    stored = _by_key(sqlite_unit_of_work)
    assert result.processed == 1
    assert result.license_ids == (stored["SUSPEND"].id,)
    assert stored["SUSPEND"].status is LicenseStatus.EXPIRED
    assert stored["SUSPEND"].suspension_reason == AUTO_SUSPEND_REASON
    assert stored["SUSPEND"].suspended_at == clock.now
    assert stored["IN-GRACE"].status is LicenseStatus.ACTIVE
    assert stored["MANUAL"].status is LicenseStatus.ACTIVE
    assert stored["CANCELLED"].status is LicenseStatus.CANCEL
    assert cache.get(list_key({})) is None
    assert transport.names() == [DATA_CHANGED_EVENT]
    assert transport.events[0][1]["source"] == "license_lifecycle"


def test_grace_period_end_is_filled_for_auto_suspend_licenses(
    sqlite_unit_of_work: UowFactory, clock: FixedClock
) -> None:
    _seed(
        sqlite_unit_of_work,
        make_license(key="AUTO", expires_at=date(2024, 6, 1), auto_suspend_enabled=True),
        make_license(
            key="SHORT",
            expires_at=date(2024, 6, 1),
            auto_suspend_enabled=True,
            grace_period_days=7,
        ),
        make_license(
            key="SET",
            expires_at=date(2024, 6, 1),
            auto_suspend_enabled=True,
            grace_period_end=date(2024, 6, 5),
        ),
        make_license(key="OFF", expires_at=date(2024, 6, 1)),
    )

    result = _service(sqlite_unit_of_work, clock).run_job(GRACE_PERIOD_UPDATES_JOB)

    stored = _by_key(sqlite_unit_of_work)
    assert result.processed == 2
    assert stored["AUTO"].grace_period_end == date(2024, 7, 1)
    assert stored["SHORT"].grace_period_end == date(2024, 6, 8)
    assert stored["SET"].grace_period_end == date(2024, 6, 5)
    assert stored["OFF"].grace_period_end is None


def test_nothing_to_do_leaves_cache_and_events_alone(
    sqlite_unit_of_work: UowFactory, clock: FixedClock, cache: InMemoryCache
) -> None:
    cache.set(list_key({}), ["kept"])
    transport = RecordingTransport()

    result = _service(sqlite_unit_of_work, clock, cache=cache, transport=transport).run_job(
        "expiring_reminders"
    )

    assert result.processed == 0
    assert cache.get(list_key({})) == ["kept"]
    assert transport.events == []


def test_unknown_job_is_rejected(sqlite_unit_of_work: UowFactory, clock: FixedClock) -> None:
    with pytest.raises(ValueError, match="Unknown lifecycle job"):
        _service(sqlite_unit_of_work, clock).run_job("purge_everything")
