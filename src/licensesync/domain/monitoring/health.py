"""Health evaluation for the sync subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

HEALTHY_MEMORY_BYTES = 200 * 1024 * 1024
HEALTHY_ERROR_RATE = 0.05
WARNING_ERROR_RATE = 0.15
ACTIVITY_WINDOW = timedelta(hours=1)


class HealthLevel(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


@dataclass(slots=True, frozen=True)
class ComponentHealth:
    status: HealthLevel
    message: str
    value: float | None = None


@dataclass(slots=True, frozen=True)
class HealthReport:
    status: HealthLevel
    timestamp: datetime
    components: dict[str, ComponentHealth] = field(default_factory=dict[str, ComponentHealth])


def memory_health(memory_bytes: int) -> ComponentHealth:
    megabytes = memory_bytes / (1024 * 1024)
    if memory_bytes < HEALTHY_MEMORY_BYTES:
        return ComponentHealth(HealthLevel.HEALTHY, f"{megabytes:.1f} MB in use", megabytes)
    return ComponentHealth(HealthLevel.WARNING, f"High memory usage: {megabytes:.1f} MB", megabytes)


def error_rate_health(errors: float, total: float) -> ComponentHealth:
    rate = errors / total if total else 0.0
    if rate < HEALTHY_ERROR_RATE:
        level = HealthLevel.HEALTHY
    elif rate < WARNING_ERROR_RATE:
        level = HealthLevel.WARNING
    else:
        level = HealthLevel.UNHEALTHY
    return ComponentHealth(level, f"Error rate {rate:.1%} over {int(total)} runs", rate)


def activity_health(last_success: datetime | None, now: datetime) -> ComponentHealth:
    if last_success is None:
        return ComponentHealth(HealthLevel.WARNING, "No successful sync recorded yet")
    age = now - last_success
    if age < ACTIVITY_WINDOW:
        return ComponentHealth(
            HealthLevel.HEALTHY, "Recent successful sync", age.total_seconds()
        )
    return ComponentHealth(
        HealthLevel.WARNING,
        f"No successful sync for {int(age.total_seconds() // 60)} minutes",
        age.total_seconds(),
    )


def overall_level(components: dict[str, ComponentHealth]) -> HealthLevel:
    levels = {component.status for component in components.values()}
    if HealthLevel.UNHEALTHY in levels:
        return HealthLevel.UNHEALTHY
    if levels - {HealthLevel.HEALTHY}:
        return HealthLevel.WARNING
    return HealthLevel.HEALTHY
