"""Metrics, alerting and health for sync runs, API calls and store operations.

One :class:`Monitor` is constructed at startup and injected into the engine, the
external API client and the scheduler. Alert thresholds are module constants and
cannot be tuned at runtime.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

import psutil

from licensesync.domain.ports.external_api import ApiErrorKind, classify_error

from .alerts import Alert, AlertFeed, AlertSeverity, AlertType
from .health import (
    HealthLevel,
    HealthReport,
    activity_health,
    error_rate_health,
    memory_health,
    overall_level,
)
from .metrics import MetricsRegistry

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

log = getLogger(__name__)

SLOW_API_REQUEST_RATIO = 0.8
SLOW_SYNC_OPERATION_SECONDS = 600.0
HIGH_ERROR_RATE = 0.1
HIGH_MEMORY_BYTES = 100 * 1024 * 1024
SLOW_DATABASE_OPERATION_SECONDS = 1.0
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 300.0

SYNC_DURATION_BUCKETS = (1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)
API_DURATION_BUCKETS = (0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)
DB_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1.0, 5.0)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def current_rss_bytes() -> int:
    """Resident set size of this process right now."""
    return int(psutil.Process().memory_info().rss)


@dataclass(slots=True, frozen=True)
class SyncContext:
    operation_id: str
    operation_type: str
    started_at: datetime
    started_monotonic: float
    options: Mapping[str, object] = field(default_factory=dict[str, object])


@dataclass(slots=True, frozen=True)
class RunStats:
    """Per-run counts the monitor needs to judge error rate."""

    processed: int
    failed: int


@dataclass(slots=True, frozen=True)
class PerformanceSummary:
    sync_total: float
    sync_errors: float
    sync_active: float
    sync_average_duration: float
    api_requests: float
    api_errors: float
    api_average_duration: float
    database_operations: float
    database_average_duration: float
    data_processed: float
    peak_memory_bytes: float
    validation_errors: float


class Monitor:
    def __init__(
        self,
        *,
        api_timeout_seconds: float = 30.0,
        memory_probe: Callable[[], int] = current_rss_bytes,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.api_timeout_seconds = api_timeout_seconds
        self._memory_probe = memory_probe
        self._clock = clock
        self._wall_clock = wall_clock
        self.metrics = MetricsRegistry()
        self.alerts = AlertFeed(clock=wall_clock)
        self._last_success_at: datetime | None = None
        self._last_health: HealthReport | None = None
        self._health_task: asyncio.Task[None] | None = None
        # highest memory reading per open run, keyed by operation id
        self._run_peaks: dict[str, int] = {}
        self._register_metrics()

    def _register_metrics(self) -> None:
        m = self.metrics
        self._sync_total = m.counter(
            "sync_operations_total", "Completed sync operations", ("operation", "status")
        )
        self._sync_duration = m.histogram(
            "sync_operations_duration", "Sync operation duration (s)", SYNC_DURATION_BUCKETS
        )
        self._sync_errors = m.counter(
            "sync_operations_errors_total", "Failed sync operations", ("operation", "error_type")
        )
        self._data_processed = m.counter(
            "sync_data_processed_total", "Records processed", ("operation", "action")
        )
        self._memory_peak = m.gauge("sync_memory_peak_usage", "Peak memory during runs (bytes)")
        self._active = m.gauge("sync_active_operations", "Sync operations in flight")
        self._last_completed = m.gauge(
            "sync_last_completed_timestamp", "Unix time of the last successful sync"
        )
        self._api_requests = m.counter(
            "external_api_requests_total",
            "External API requests",
            ("endpoint", "method", "status"),
        )
        self._api_duration = m.histogram(
            "external_api_request_duration", "External API latency (s)", API_DURATION_BUCKETS
        )
        self._api_errors = m.counter(
            "external_api_errors_total", "External API errors", ("endpoint", "error_type")
        )
        self._validation_errors = m.counter(
            "validation_errors_total", "Validation errors", ("field", "error_type")
        )
        self._db_operations = m.counter(
            "database_operations_total", "Store operations", ("operation", "table", "status")
        )
        self._db_duration = m.histogram(
            "database_operation_duration", "Store operation duration (s)", DB_DURATION_BUCKETS
        )

    # sync runs -----------------------------------------------------------------

    def record_sync_start(self, operation_type: str, **options: object) -> SyncContext:
        started = self._wall_clock()
        context = SyncContext(
            operation_id=(
                f"{operation_type}_{int(started.timestamp() * 1000)}_{secrets.token_hex(3)}"
            ),
            operation_type=operation_type,
            started_at=started,
            started_monotonic=self._clock(),
            options=dict(options),
        )
        self._active.inc()
        self._run_peaks[context.operation_id] = self._memory_probe()
        log.debug(f"Sync operation {context.operation_id} started")
        return context

    def _sample_memory(self) -> None:
        if not self._run_peaks:
            return
        reading = self._memory_probe()
        for operation_id, peak in self._run_peaks.items():
            if reading > peak:
                self._run_peaks[operation_id] = reading

    def record_sync_end(
        self,
        context: SyncContext,
        *,
        success: bool,
        error: BaseException | None = None,
        stats: RunStats | None = None,
    ) -> float:
        """Close a run bracket and return its duration in seconds."""

        duration = self._clock() - context.started_monotonic
        operation = context.operation_type
        self._active.dec()
        self._sync_total.inc(operation=operation, status="success" if success else "failure")
        self._sync_duration.observe(duration)

        if not success:
            kind = classify_error(error) if error is not None else ApiErrorKind.UNKNOWN
            self._sync_errors.inc(operation=operation, error_type=kind.value)
        else:
            completed = self._wall_clock()
            self._last_success_at = completed
            self._last_completed.set(completed.timestamp())

        run_peak = max(self._run_peaks.pop(context.operation_id, 0), self._memory_probe())
        self._check_memory(context, run_peak)
        if duration > SLOW_SYNC_OPERATION_SECONDS:
            self.create_alert(
                AlertType.VERY_SLOW_SYNC_OPERATION,
                AlertSeverity.WARNING,
                f"Sync operation {operation} took {duration:.0f}s",
                {"operation_id": context.operation_id, "duration_seconds": duration},
            )
        if stats is not None and stats.processed > 0:
            rate = stats.failed / stats.processed
            if rate > HIGH_ERROR_RATE:
                self.create_alert(
                    AlertType.HIGH_ERROR_RATE,
                    AlertSeverity.ERROR,
                    f"Sync operation {operation} failed {rate:.1%} of records",
                    {
                        "operation_id": context.operation_id,
                        "processed": stats.processed,
                        "failed": stats.failed,
                    },
                )
        log.debug(
            f"Sync operation {context.operation_id} finished: success={success}, "
            f"duration={duration:.2f}s"
        )
        return duration

    def _check_memory(self, context: SyncContext, peak: int) -> None:
        """Alert on memory measured while this run was open, not earlier process history."""

        if peak > self._memory_peak.value:
            self._memory_peak.set(peak)
        if peak > HIGH_MEMORY_BYTES:
            self.create_alert(
                AlertType.HIGH_MEMORY_USAGE,
                AlertSeverity.WARNING,
                f"Peak memory {peak / (1024 * 1024):.0f} MB during {context.operation_type}",
                {"operation_id": context.operation_id, "peak_bytes": peak},
            )

    # external API --------------------------------------------------------------

    def record_api_request(
        self,
        endpoint: str,
        method: str,
        duration_seconds: float,
        status_code: int | None,
    ) -> None:
        self._api_requests.inc(endpoint=endpoint, method=method, status=status_code or "error")
        self._sample_memory()
        self._api_duration.observe(duration_seconds)
        limit = self.api_timeout_seconds * SLOW_API_REQUEST_RATIO
        if duration_seconds > limit:
            self.create_alert(
                AlertType.SLOW_API_REQUEST,
                AlertSeverity.WARNING,
                f"{method} {endpoint} took {duration_seconds:.2f}s",
                {"endpoint": endpoint, "duration_seconds": duration_seconds, "limit": limit},
            )

    def record_api_error(self, endpoint: str, error: BaseException) -> ApiErrorKind:
        kind = classify_error(error)
        self._api_errors.inc(endpoint=endpoint, error_type=kind.value)
        severity = (
            AlertSeverity.ERROR if kind is ApiErrorKind.AUTHENTICATION else AlertSeverity.WARNING
        )
        self.create_alert(
            AlertType.EXTERNAL_API_ERROR,
            severity,
            f"External API {kind.value} error on {endpoint}: {error}",
            {"endpoint": endpoint, "error_type": kind.value},
        )
        return kind

    # data and store ----------------------------------------------------------

    def record_data_processed(self, operation: str, count: int, **labels: object) -> None:
        if count > 0:
            self._data_processed.inc(count, operation=operation, **labels)
        self._sample_memory()

    def record_database_operation(
        self,
        operation: str,
        table: str,
        duration_seconds: float,
        *,
        success: bool = True,
    ) -> None:
        self._db_operations.inc(
            operation=operation, table=table, status="success" if success else "failure"
        )
        self._db_duration.observe(duration_seconds)
        self._sample_memory()
        if duration_seconds > SLOW_DATABASE_OPERATION_SECONDS:
            self.create_alert(
                AlertType.SLOW_DATABASE_OPERATION,
                AlertSeverity.WARNING,
                f"{operation} on {table} took {duration_seconds:.2f}s",
                {"operation": operation, "table": table, "duration_seconds": duration_seconds},
            )

    def record_validation_error(self, field_name: str, error_type: str) -> None:
        self._validation_errors.inc(field=field_name, error_type=error_type)

    # alerts ------------------------------------------------------------------

    def create_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        details: Mapping[str, object] | None = None,
    ) -> Alert:
        return self.alerts.create(alert_type, severity, message, details)

    def get_alerts(
        self,
        *,
        severity: AlertSeverity | None = None,
        acknowledged: bool | None = None,
        alert_type: AlertType | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        return self.alerts.query(
            severity=severity, acknowledged=acknowledged, alert_type=alert_type, limit=limit
        )

    def acknowledge_alert(self, alert_id: str) -> bool:
        return self.alerts.acknowledge(alert_id)

    # reporting ---------------------------------------------------------------

    def get_metrics(self) -> dict[str, object]:
        return self.metrics.snapshot()

    def export_metrics(self) -> str:
        """Metrics in the Prometheus text exposition format."""
        return self.metrics.exposition()

    @property
    def last_success_at(self) -> datetime | None:
        return self._last_success_at

    def get_health_status(self) -> HealthReport:
        components = {
            "memory": memory_health(self._memory_probe()),
            "error_rate": error_rate_health(self._sync_errors.total(), self._sync_total.total()),
            "activity": activity_health(self._last_success_at, self._wall_clock()),
        }
        report = HealthReport(
            status=overall_level(components),
            timestamp=self._wall_clock(),
            components=components,
        )
        previous = self._last_health
        if previous is not None and previous.status is not report.status:
            log.warning(f"Sync health changed from {previous.status} to {report.status}")
        self._last_health = report
        return report

    def get_performance_summary(self) -> PerformanceSummary:
        return PerformanceSummary(
            sync_total=self._sync_total.total(),
            sync_errors=self._sync_errors.total(),
            sync_active=self._active.value,
            sync_average_duration=self._sync_duration.average(),
            api_requests=self._api_requests.total(),
            api_errors=self._api_errors.total(),
            api_average_duration=self._api_duration.average(),
            database_operations=self._db_operations.total(),
            database_average_duration=self._db_duration.average(),
            data_processed=self._data_processed.total(),
            peak_memory_bytes=self._memory_peak.value,
            validation_errors=self._validation_errors.total(),
        )

    # periodic health -----------------------------------------------------------

    def start_health_checks(
        self, interval_seconds: float = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS
    ) -> asyncio.Task[None]:
        if self._health_task is not None and not self._health_task.done():
            return self._health_task
        self._health_task = asyncio.get_running_loop().create_task(
            self._health_loop(interval_seconds), name="license-sync-health"
        )
        return self._health_task

    async def stop_health_checks(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            log.debug("Health check loop stopped")

    async def _health_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            report = self.get_health_status()
            if report.status is not HealthLevel.HEALTHY:
                log.info(f"Sync health {report.status}: {report.components}")

    def reset(self) -> None:
        """Drop all metrics and alerts (tests and operator resets)."""

        self.metrics.clear()
        self.alerts.clear()
        self._last_success_at = None
        self._last_health = None
        self._run_peaks.clear()
        self._register_metrics()
