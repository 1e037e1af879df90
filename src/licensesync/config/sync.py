"""Synchronization and scheduling defaults."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_bool, env_int, env_list, env_str
from .errors import ConfigurationError

DEFAULT_SYNC_BATCH_SIZE = 50
MAX_SYNC_BATCH_SIZE = 500
DEFAULT_HEALTH_CHECK_INTERVAL_MS = 300_000
DEFAULT_MAX_FIELD_LENGTH = 1000
DEFAULT_ALLOWED_LICENSE_TYPES = ("demo", "product")

DEFAULT_SYNC_SCHEDULE = "*/15 * * * *"
DEFAULT_EXPIRING_REMINDER_SCHEDULE = "0 9,13,17 * * 1-5"
DEFAULT_EXPIRATION_CHECK_SCHEDULE = "0 2 * * *"
DEFAULT_GRACE_PERIOD_SCHEDULE = "0 3 * * 0"
DEFAULT_TIMEZONE = "UTC"


@dataclass(frozen=True, slots=True)
class SyncConfig:
    batch_size: int = DEFAULT_SYNC_BATCH_SIZE
    health_check_interval_seconds: float = DEFAULT_HEALTH_CHECK_INTERVAL_MS / 1000
    strict_validation: bool = False
    max_field_length: int = DEFAULT_MAX_FIELD_LENGTH
    allowed_license_types: tuple[str, ...] = DEFAULT_ALLOWED_LICENSE_TYPES
    bidirectional: bool = False
    comprehensive: bool = False


@dataclass(frozen=True, slots=True)
class ScheduleConfig:
    """Cron expressions (five fields) for the recurring jobs."""

    sync: str = DEFAULT_SYNC_SCHEDULE
    expiring_reminders: str = DEFAULT_EXPIRING_REMINDER_SCHEDULE
    expiration_checks: str = DEFAULT_EXPIRATION_CHECK_SCHEDULE
    grace_period_updates: str = DEFAULT_GRACE_PERIOD_SCHEDULE
    timezone: str = DEFAULT_TIMEZONE


def get_sync_config() -> SyncConfig:
    batch_size = env_int("LICENSE_SYNC_BATCH_SIZE", DEFAULT_SYNC_BATCH_SIZE, minimum=1)
    if batch_size > MAX_SYNC_BATCH_SIZE:
        raise ConfigurationError(
            f"LICENSE_SYNC_BATCH_SIZE must be <= {MAX_SYNC_BATCH_SIZE}, got {batch_size}"
        )
    interval_ms = env_int(
        "LICENSE_SYNC_HEALTH_CHECK_INTERVAL_MS", DEFAULT_HEALTH_CHECK_INTERVAL_MS, minimum=1000
    )
    return SyncConfig(
        batch_size=batch_size,
        health_check_interval_seconds=interval_ms / 1000,
        strict_validation=env_bool("LICENSE_SYNC_VALIDATION_STRICT", default=False),
        max_field_length=env_int(
            "LICENSE_SYNC_MAX_FIELD_LENGTH", DEFAULT_MAX_FIELD_LENGTH, minimum=1
        ),
        allowed_license_types=env_list(
            "LICENSE_SYNC_ALLOWED_TYPES", DEFAULT_ALLOWED_LICENSE_TYPES
        ),
        bidirectional=env_bool("LICENSE_SYNC_BIDIRECTIONAL_ENABLED", default=False),
        comprehensive=env_bool("LICENSE_SYNC_COMPREHENSIVE_ENABLED", default=False),
    )


def get_schedule_config() -> ScheduleConfig:
    return ScheduleConfig(
        sync=env_str("LICENSE_SYNC_SCHEDULE", DEFAULT_SYNC_SCHEDULE),
        expiring_reminders=env_str(
            "LICENSE_EXPIRING_REMINDER_SCHEDULE", DEFAULT_EXPIRING_REMINDER_SCHEDULE
        ),
        expiration_checks=env_str(
            "LICENSE_EXPIRATION_CHECK_SCHEDULE", DEFAULT_EXPIRATION_CHECK_SCHEDULE
        ),
        grace_period_updates=env_str(
            "LICENSE_GRACE_PERIOD_SCHEDULE", DEFAULT_GRACE_PERIOD_SCHEDULE
        ),
        timezone=env_str("LICENSE_SYNC_TIMEZONE", DEFAULT_TIMEZONE),
    )
