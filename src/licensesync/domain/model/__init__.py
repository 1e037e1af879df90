"""Domain model for internal licenses."""

from __future__ import annotations

from .license import (
    DEFAULT_GRACE_PERIOD_DAYS,
    ExternalSyncStatus,
    License,
    LicenseStatus,
    ReminderType,
)

__all__ = [
    "DEFAULT_GRACE_PERIOD_DAYS",
    "ExternalSyncStatus",
    "License",
    "LicenseStatus",
    "ReminderType",
]
