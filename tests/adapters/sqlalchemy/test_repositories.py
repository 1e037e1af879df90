from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

from licensesync.domain.model import ExternalSyncStatus, LicenseStatus, ReminderType
from licensesync.domain.ports.persistence import LicenseRepository
from tests.helpers.licenses import make_license

if TYPE_CHECKING:
    from collections.abc import Callable

    from licensesync.adapters.sqlalchemy import SqlAlchemyLicenseUnitOfWork

type UowFactory = Callable[[], SqlAlchemyLicenseUnitOfWork]


def test_repository_satisfies_port(sqlite_unit_of_work: UowFactory) -> None:
    with sqlite_unit_of_work() as uow:
        assert isinstance(uow.repositories.licenses, LicenseRepository)


def test_round_trip_keeps_types(sqlite_unit_of_work: UowFactory) -> None:
    last_active = datetime(2024, 6, 1, 10, 30, tzinfo=UTC)
    license_ = make_license(
        key="LIC-1",
        appid="APP-1",
        countid=11,
        status=LicenseStatus.CANCEL,
        external_sync_status=ExternalSyncStatus.SYNCED,
        last_active=last_active,
        expires_at=date(2025, 1, 1),
        package_data={"modules": ["pos", "sms"]},
        renewal_reminders_sent=[ReminderType.THIRTY_DAYS.value],
    )

    with sqlite_unit_of_work() as uow:
        uow.repositories.licenses.add(license_)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        stored = uow.repositories.licenses.get(license_.id)

    assert stored is not None
    assert stored.status is LicenseStatus.CANCEL
    assert stored.external_sync_status is ExternalSyncStatus.SYNCED
    assert stored.last_active == last_active
    assert stored.last_active is not None and stored.last_active.tzinfo is not None
    assert stored.expires_at == date(2025, 1, 1)
    assert stored.package_data == {"modules": ["pos", "sms"]}
    assert stored.renewal_reminders_sent == ["30days"]


def test_identifier_lookups(sqlite_unit_of_work: UowFactory) -> None:
    a = make_license(key="LIC-A", appid="APP-1", countid=1, email_license="Owner@Example.com")
    b = make_license(key="LIC-B", countid=1, email_license="owner@example.com ")
    c = make_license(key="LIC-C", appid="APP-3")

    with sqlite_unit_of_work() as uow:
        for license_ in (a, b, c):
            uow.repositories.licenses.add(license_)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        repository = uow.repositories.licenses
        assert [found.key for found in repository.find_by_appid("APP-1")] == ["LIC-A"]
        assert {found.key for found in repository.find_by_countid(1)} == {"LIC-A", "LIC-B"}
        assert {found.key for found in repository.find_by_email(" OWNER@example.com")} == {
            "LIC-A"
        }
        assert repository.find_by_appid("APP-404") == []


def test_linked_and_needing_sync_filters(sqlite_unit_of_work: UowFactory) -> None:
    now = datetime(2024, 6, 1, tzinfo=UTC)
    unlinked = make_license(key="LIC-0", external_sync_status=ExternalSyncStatus.FAILED)
    synced = make_license(
        key="LIC-1", appid="APP-1", external_sync_status=ExternalSyncStatus.SYNCED
    )
    failed = make_license(
        key="LIC-2",
        countid=2,
        external_sync_status=ExternalSyncStatus.FAILED,
        updated_at=now,
    )
    pending = make_license(
        key="LIC-3",
        appid="APP-3",
        external_sync_status=ExternalSyncStatus.PENDING,
        updated_at=now - timedelta(days=1),
    )

    with sqlite_unit_of_work() as uow:
        for license_ in (unlinked, synced, failed, pending):
            uow.repositories.licenses.add(license_)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        repository = uow.repositories.licenses
        assert {found.key for found in repository.list_linked()} == {"LIC-1", "LIC-2", "LIC-3"}
        assert [found.key for found in repository.list_needing_sync(limit=10)] == [
            "LIC-3",
            "LIC-2",
        ]
        assert len(repository.list_needing_sync(limit=1)) == 1


def test_list_expiring_orders_by_expiry(sqlite_unit_of_work: UowFactory) -> None:
    with sqlite_unit_of_work() as uow:
        repository = uow.repositories.licenses
        repository.add(make_license(key="LIC-LATE", expires_at=date(2025, 3, 1)))
        repository.add(make_license(key="LIC-NONE"))
        repository.add(make_license(key="LIC-SOON", expires_at=date(2024, 7, 1)))
        uow.commit()

    with sqlite_unit_of_work() as uow:
        keys = [found.key for found in uow.repositories.licenses.list_expiring()]

    assert keys == ["LIC-SOON", "LIC-LATE"]


def test_remove_deletes_license(sqlite_unit_of_work: UowFactory) -> None:
    license_ = make_license(key="LIC-1")
    with sqlite_unit_of_work() as uow:
        uow.repositories.licenses.add(license_)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        stored = uow.repositories.licenses.get(license_.id)
        assert stored is not None
        uow.repositories.licenses.remove(stored)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.licenses.list_all() == []
