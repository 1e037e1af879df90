from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from licensesync import app as app_module
from licensesync.app import (
    LICENSE_SYNC_TASK,
    SyncServices,
    build_scheduler,
    build_services,
    default_sync_options,
    get_health_status,
    get_sync_status,
    run_lifecycle_job,
    serve_scheduler,
    sync_external_licenses,
    sync_pending_licenses,
    sync_single_license,
)
from licensesync.config import ScheduleConfig, SyncConfig
from licensesync.domain.lifecycle import LIFECYCLE_JOBS
from licensesync.domain.ports.external_api import ApiErrorKind
from licensesync.domain.reconciliation import SyncInProgressError
from tests.helpers.licenses import FakeLicenseSource, api_error, external_record

if TYPE_CHECKING:
    from collections.abc import Callable

    from licensesync.adapters.sqlalchemy import SqlAlchemyLicenseUnitOfWork
    from licensesync.domain.monitoring import Monitor

type UowFactory = Callable[[], SqlAlchemyLicenseUnitOfWork]


def _services(
    uow_factory: UowFactory,
    monitor: Monitor,
    *,
    source: FakeLicenseSource | None = None,
    sync_config: SyncConfig | None = None,
) -> SyncServices:
    return build_services(
        source=source or FakeLicenseSource([[external_record(1), external_record(2)]]),
        unit_of_work_factory=uow_factory,
        sync_config=sync_config or SyncConfig(),
        monitor=monitor,
    )


def test_default_options_follow_config() -> None:
    options = default_sync_options(SyncConfig(batch_size=25, comprehensive=True))

    assert options.batch_size == 25
    assert options.comprehensive
    assert options.detect_duplicates
    assert not options.bidirectional


def test_sync_returns_envelope_with_result(
    sqlite_unit_of_work: UowFactory, monitor: Monitor
) -> None:
    services = _services(sqlite_unit_of_work, monitor)

    response = sync_external_licenses(services=services)

    assert response.success
    assert response.message == "External license sync completed"
    payload = response.to_dict()
    data = payload["data"]
    assert isinstance(data, dict)
    assert data["created"] == 2
    assert isinstance(data["timestamp"], str)


def test_overrides_adjust_configured_defaults(
    sqlite_unit_of_work: UowFactory, monitor: Monitor
) -> None:
    source = FakeLicenseSource([[external_record(1)]])
    services = _services(
        sqlite_unit_of_work, monitor, source=source, sync_config=SyncConfig(batch_size=10)
    )

    response = sync_external_licenses(
        overrides={"dry_run": True, "batch_size": 3}, services=services
    )

    assert response.message == "External license sync dry run completed"
    assert source.page_calls[0][1] == 3
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.licenses.list_all() == []


def test_invalid_override_raises(sqlite_unit_of_work: UowFactory, monitor: Monitor) -> None:
    services = _services(sqlite_unit_of_work, monitor)

    with pytest.raises(ValueError, match="batch_size"):
        sync_external_licenses(overrides={"batch_size": 0}, services=services)


def test_concurrent_sync_is_reported_not_raised(
    sqlite_unit_of_work: UowFactory, monitor: Monitor, monkeypatch: pytest.MonkeyPatch
) -> None:
    services = _services(sqlite_unit_of_work, monitor)

    async def busy(*_: object) -> None:
        raise SyncInProgressError

    monkeypatch.setattr(services.engine, "execute", busy)

    response = sync_external_licenses(services=services)

    assert not response.success
    assert response.message == "A license sync is already in progress"


def test_aborted_sync_is_unsuccessful(
    sqlite_unit_of_work: UowFactory, monitor: Monitor
) -> None:
    source = FakeLicenseSource([api_error(ApiErrorKind.AUTHENTICATION)])
    services = _services(sqlite_unit_of_work, monitor, source=source)

    response = sync_external_licenses(services=services)

    assert not response.success
    assert response.message == "External license sync aborted"


def test_single_and_pending_sync(sqlite_unit_of_work: UowFactory, monitor: Monitor) -> None:
    source = FakeLicenseSource(records=[external_record(7)])
    services = _services(sqlite_unit_of_work, monitor, source=source)

    found = sync_single_license("APP-7", services=services)
    missing = sync_single_license("APP-404", services=services)
    pending = sync_pending_licenses(services=services)

    assert found.success
    assert found.message == "License APP-7 synced"
    assert not missing.success
    assert missing.message == (
        "License APP-404 sync failed: License APP-404 not found in external system"
    )
    assert pending.success
    assert pending.message == "Processed 0 pending licenses"


def test_status_reports_config_and_last_result(
    sqlite_unit_of_work: UowFactory, monitor: Monitor
) -> None:
    services = _services(sqlite_unit_of_work, monitor, sync_config=SyncConfig(batch_size=75))
    sync_external_licenses(services=services)

    response = get_sync_status(services=services)

    assert response.message == "Sync idle"
    data = response.to_dict()["data"]
    assert isinstance(data, dict)
    assert data["config"] == {
        "batch_size": 75,
        "bidirectional": False,
        "comprehensive": False,
        "strict_validation": False,
    }
    status = data["status"]
    assert isinstance(status, dict)
    assert status["sync_in_progress"] is False
    assert status["last_result"]["created"] == 2
    assert isinstance(status["last_completed_at"], str)


def test_lifecycle_job_and_health(sqlite_unit_of_work: UowFactory, monitor: Monitor) -> None:
    services = _services(sqlite_unit_of_work, monitor)

    lifecycle = run_lifecycle_job("grace_period_updates", services=services)
    health = get_health_status(services=services)

    assert lifecycle.message == "Lifecycle job grace_period_updates processed 0 license(s)"
    data = health.to_dict()["data"]
    assert isinstance(data, dict)
    assert data["external_api_reachable"] is None
    assert data["health"]["status"] == "warning"
    assert data["alerts"] == []


def test_scheduler_registers_sync_and_lifecycle_jobs(
    sqlite_unit_of_work: UowFactory, monitor: Monitor
) -> None:
    services = _services(sqlite_unit_of_work, monitor)
    config = ScheduleConfig(sync="*/5 * * * *", timezone="Europe/Berlin")

    scheduler = build_scheduler(services, schedule_config=config)

    assert set(scheduler.tasks) == {LICENSE_SYNC_TASK, *LIFECYCLE_JOBS}
    assert scheduler.tasks[LICENSE_SYNC_TASK].schedule == "*/5 * * * *"
    assert {task.timezone for task in scheduler.tasks.values()} == {"Europe/Berlin"}

    stats = asyncio.run(scheduler.trigger(LICENSE_SYNC_TASK))

    assert stats.successful_runs == 1
    assert services.engine.last_result is not None
    assert services.engine.last_result.created == 2


def test_serve_scheduler_stops_cleanly(
    sqlite_unit_of_work: UowFactory, monitor: Monitor
) -> None:
    services = _services(sqlite_unit_of_work, monitor)

    async def scenario() -> bool:
        stop = asyncio.Event()
        stop.set()
        scheduler = await serve_scheduler(
            services, stop_event=stop, schedule_config=ScheduleConfig()
        )
        return scheduler.is_running

    assert asyncio.run(scenario()) is False


def test_services_are_built_once(monkeypatch: pytest.MonkeyPatch) -> None:
    built: list[object] = []

    def fake_build() -> object:
        built.append(object())
        return built[-1]

    monkeypatch.setattr(app_module, "build_services", fake_build)
    app_module.reset_services()
    try:
        first = app_module.get_services()
        second = app_module.get_services()
    finally:
        app_module.reset_services()

    assert first is second
    assert len(built) == 1
