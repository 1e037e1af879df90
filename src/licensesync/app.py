"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, is_dataclass, replace
from datetime import datetime
from enum import Enum
from logging import getLogger
from typing import TYPE_CHECKING
from uuid import UUID

from licensesync.adapters.external_api import ExternalLicenseApiClient
from licensesync.adapters.memory_cache import InMemoryCache
from licensesync.adapters.realtime import RealtimeNotifier
from licensesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    is_started,
    startup,
)
from licensesync.config import (
    get_external_api_config,
    get_schedule_config,
    get_sync_config,
)
from licensesync.domain.lifecycle import (
    EXPIRATION_CHECKS_JOB,
    EXPIRING_REMINDERS_JOB,
    GRACE_PERIOD_UPDATES_JOB,
    LicenseLifecycleService,
)
from licensesync.domain.monitoring import Monitor
from licensesync.domain.reconciliation import (
    LicenseSyncEngine,
    SyncInProgressError,
    SyncOptions,
)
from licensesync.domain.scheduling import Scheduler
from licensesync.domain.validation import ValidationOptions

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from licensesync.config import ExternalApiConfig, ScheduleConfig, SyncConfig
    from licensesync.domain.ports.external_api import ExternalLicenseSource
    from licensesync.domain.ports.unit_of_work import LicenseUnitOfWork

type UnitOfWorkFactory = Callable[[], LicenseUnitOfWork]

log = getLogger(__name__)

LICENSE_SYNC_TASK = "license_sync"


def _plain(value: object) -> object:
    """Dataclasses, enums, UUIDs and datetimes as JSON-friendly values."""

    if is_dataclass(value) and not isinstance(value, type):
        return _plain(asdict(value))
    if isinstance(value, dict):
        items = value.items()  # pyright: ignore[reportUnknownVariableType]
        return {str(key): _plain(item) for key, item in items}
    if isinstance(value, list | tuple | set | frozenset):
        return [_plain(item) for item in value]  # pyright: ignore[reportUnknownVariableType]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


@dataclass(slots=True, frozen=True)
class SyncResponse:
    """``{success, message, data}`` envelope returned by every entry point."""

    success: bool
    message: str
    data: object = None

    def to_dict(self) -> dict[str, object]:
        return {"success": self.success, "message": self.message, "data": _plain(self.data)}


@dataclass(slots=True)
class SyncServices:
    """Everything one process needs; built once and shared by the entry points."""

    sync_config: SyncConfig
    monitor: Monitor
    cache: InMemoryCache
    notifier: RealtimeNotifier
    engine: LicenseSyncEngine
    lifecycle: LicenseLifecycleService
    client: ExternalLicenseApiClient | None = None

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()


def build_services(
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    sync_config: SyncConfig | None = None,
    api_config: ExternalApiConfig | None = None,
    monitor: Monitor | None = None,
    cache: InMemoryCache | None = None,
    notifier: RealtimeNotifier | None = None,
) -> SyncServices:
    """Wire the engine and lifecycle jobs to the configured adapters."""

    effective_sync_config = sync_config or get_sync_config()
    client: ExternalLicenseApiClient | None = None
    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemyLicenseUnitOfWork

    if source is None:
        effective_api_config = api_config or get_external_api_config()
        effective_monitor = monitor or Monitor(
            api_timeout_seconds=effective_api_config.timeout_seconds
        )
        client = ExternalLicenseApiClient(effective_api_config, monitor=effective_monitor)
        source = client
    else:
        effective_monitor = monitor or Monitor()

    effective_cache = cache or InMemoryCache()
    effective_notifier = notifier or RealtimeNotifier()
    engine = LicenseSyncEngine(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        validation=ValidationOptions(
            strict_mode=effective_sync_config.strict_validation,
            max_field_length=effective_sync_config.max_field_length,
            allowed_license_types=effective_sync_config.allowed_license_types,
        ),
        monitor=effective_monitor,
        cache=effective_cache,
        events=effective_notifier,
    )
    lifecycle = LicenseLifecycleService(
        unit_of_work_factory=unit_of_work_factory,
        cache=effective_cache,
        events=effective_notifier,
    )
    return SyncServices(
        sync_config=effective_sync_config,
        monitor=effective_monitor,
        cache=effective_cache,
        notifier=effective_notifier,
        engine=engine,
        lifecycle=lifecycle,
        client=client,
    )


_SERVICES: SyncServices | None = None


def get_services() -> SyncServices:
    global _SERVICES  # noqa: PLW0603
    if _SERVICES is None:
        _SERVICES = build_services()
    return _SERVICES


def reset_services() -> None:
    global _SERVICES  # noqa: PLW0603
    _SERVICES = None


def _run[T](services: SyncServices, operation: Callable[[], Awaitable[T]]) -> T:
    """Run one coroutine on a fresh loop; the HTTP client never outlives it."""

    async def runner() -> T:
        try:
            return await operation()
        finally:
            await services.aclose()

    return asyncio.run(runner())


def default_sync_options(config: SyncConfig) -> SyncOptions:
    return SyncOptions(
        batch_size=config.batch_size,
        bidirectional=config.bidirectional,
        comprehensive=config.comprehensive,
        detect_duplicates=config.comprehensive,
    )


# sync ----------------------------------------------------------------------------


def sync_external_licenses(
    options: SyncOptions | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
    services: SyncServices | None = None,
) -> SyncResponse:
    """Run one full reconciliation; ``overrides`` adjust the configured defaults."""

    effective = services or get_services()
    effective_options = options or replace(
        default_sync_options(effective.sync_config),
        **(overrides or {}),  # pyright: ignore[reportArgumentType]
    )
    try:
        result = _run(effective, lambda: effective.engine.execute(effective_options))
    except SyncInProgressError as exc:
        return SyncResponse(success=False, message=str(exc), data=effective.engine.status())

    if result.aborted:
        message = "External license sync aborted"
    elif result.dry_run:
        message = "External license sync dry run completed"
    else:
        message = "External license sync completed"
    return SyncResponse(success=result.success, message=message, data=result)


def sync_single_license(appid: str, *, services: SyncServices | None = None) -> SyncResponse:
    effective = services or get_services()
    try:
        result = _run(effective, lambda: effective.engine.sync_single(appid))
    except SyncInProgressError as exc:
        return SyncResponse(success=False, message=str(exc))
    if result.success:
        return SyncResponse(success=True, message=f"License {appid} synced", data=result)
    return SyncResponse(
        success=False, message=f"License {appid} sync failed: {result.error}", data=result
    )


def sync_pending_licenses(
    *,
    limit: int = 100,
    batch_size: int = 20,
    services: SyncServices | None = None,
) -> SyncResponse:
    effective = services or get_services()
    try:
        result = _run(
            effective, lambda: effective.engine.sync_pending(limit=limit, batch_size=batch_size)
        )
    except SyncInProgressError as exc:
        return SyncResponse(success=False, message=str(exc))
    return SyncResponse(
        success=result.failed == 0,
        message=f"Processed {result.processed} pending licenses",
        data=result,
    )


def get_sync_status(*, services: SyncServices | None = None) -> SyncResponse:
    effective = services or get_services()
    status = effective.engine.status()
    return SyncResponse(
        success=True,
        message="Sync in progress" if status.sync_in_progress else "Sync idle",
        data={
            "status": status,
            "config": {
                "batch_size": effective.sync_config.batch_size,
                "bidirectional": effective.sync_config.bidirectional,
                "comprehensive": effective.sync_config.comprehensive,
                "strict_validation": effective.sync_config.strict_validation,
            },
        },
    )


# lifecycle and monitoring --------------------------------------------------------


def run_lifecycle_job(name: str, *, services: SyncServices | None = None) -> SyncResponse:
    effective = services or get_services()
    result = effective.lifecycle.run_job(name)
    return SyncResponse(
        success=True,
        message=f"Lifecycle job {name} processed {result.processed} license(s)",
        data=result,
    )


def get_health_status(
    *,
    check_external: bool = True,
    services: SyncServices | None = None,
) -> SyncResponse:
    effective = services or get_services()
    external_reachable: bool | None = None
    client = effective.client
    if check_external and client is not None:
        external_reachable = _run(effective, client.health_check)
    report = effective.monitor.get_health_status()
    return SyncResponse(
        success=True,
        message=f"Sync health is {report.status}",
        data={
            "health": report,
            "external_api_reachable": external_reachable,
            "performance": effective.monitor.get_performance_summary(),
            "alerts": effective.monitor.get_alerts(acknowledged=False, limit=20),
        },
    )


# scheduling ----------------------------------------------------------------------


def build_scheduler(
    services: SyncServices,
    *,
    schedule_config: ScheduleConfig | None = None,
) -> Scheduler:
    config = schedule_config or get_schedule_config()
    scheduler = Scheduler(monitor=services.monitor)

    async def license_sync() -> None:
        await services.engine.execute(default_sync_options(services.sync_config))

    def lifecycle_job(name: str) -> Callable[[], Awaitable[None]]:
        async def job() -> None:
            services.lifecycle.run_job(name)

        return job

    scheduler.register(LICENSE_SYNC_TASK, config.sync, license_sync, timezone=config.timezone)
    scheduler.register(
        EXPIRING_REMINDERS_JOB,
        config.expiring_reminders,
        lifecycle_job(EXPIRING_REMINDERS_JOB),
        timezone=config.timezone,
    )
    scheduler.register(
        EXPIRATION_CHECKS_JOB,
        config.expiration_checks,
        lifecycle_job(EXPIRATION_CHECKS_JOB),
        timezone=config.timezone,
    )
    scheduler.register(
        GRACE_PERIOD_UPDATES_JOB,
        config.grace_period_updates,
        lifecycle_job(GRACE_PERIOD_UPDATES_JOB),
        timezone=config.timezone,
    )
    return scheduler


async def serve_scheduler(
    services: SyncServices,
    *,
    stop_event: asyncio.Event | None = None,
    schedule_config: ScheduleConfig | None = None,
) -> Scheduler:
    """Run the scheduler and periodic health checks until ``stop_event`` is set."""

    scheduler = build_scheduler(services, schedule_config=schedule_config)
    stop = stop_event or asyncio.Event()
    services.monitor.start_health_checks(services.sync_config.health_check_interval_seconds)
    scheduler.start()
    try:
        await stop.wait()
    finally:
        scheduler.stop()
        await scheduler.wait_idle()
        await services.monitor.stop_health_checks()
        await services.aclose()
    return scheduler


def run_scheduler(*, services: SyncServices | None = None) -> None:
    effective = services or get_services()
    log.info("Starting license sync scheduler")
    asyncio.run(serve_scheduler(effective))
