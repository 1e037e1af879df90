"""Internal license record (system of record) and its lifecycle rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from uuid import UUID, uuid4

DEFAULT_GRACE_PERIOD_DAYS = 30


class LicenseStatus(StrEnum):
    ACTIVE = "active"
    PENDING = "pending"
    CANCEL = "cancel"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ExternalSyncStatus(StrEnum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class ReminderType(StrEnum):
    THIRTY_DAYS = "30days"
    SEVEN_DAYS = "7days"
    ONE_DAY = "1day"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, kw_only=True)
class License:
    """A license owned by the back office, optionally linked to one external record."""

    id: UUID = field(default_factory=uuid4)
    key: str
    product: str
    plan: str
    term: str
    status: LicenseStatus = LicenseStatus.PENDING
    seats_total: int = 1
    seats_used: int = 0

    dba: str | None = None
    zip: str | None = None
    email_license: str | None = None
    notes: str | None = None

    last_payment: float = 0.0
    sms_purchased: float = 0.0
    sms_balance: float = 0.0

    starts_at: date | None = None
    expires_at: date | None = None
    cancel_date: date | None = None
    last_active: datetime | None = None

    # external linkage
    appid: str | None = None
    countid: int | None = None
    external_sync_status: ExternalSyncStatus | None = None
    last_external_sync: datetime | None = None
    external_sync_error: str | None = None
    mid: str | None = None
    license_type: str | None = None
    package_data: dict[str, object] | list[object] | None = None
    sendbat_workspace: str | None = None

    # lifecycle
    renewal_reminders_sent: list[str] = field(default_factory=list)
    last_renewal_reminder: datetime | None = None
    auto_suspend_enabled: bool = False
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    grace_period_end: date | None = None
    suspension_reason: str | None = None
    suspended_at: datetime | None = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def has_external_link(self) -> bool:
        return self.appid is not None or self.countid is not None

    def touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or _utcnow()

    def mark_synced(self, now: datetime | None = None) -> None:
        moment = now or _utcnow()
        self.external_sync_status = ExternalSyncStatus.SYNCED
        self.last_external_sync = moment
        self.external_sync_error = None
        self.touch(moment)

    def mark_sync_failed(self, error: str, now: datetime | None = None) -> None:
        moment = now or _utcnow()
        self.external_sync_status = ExternalSyncStatus.FAILED
        self.external_sync_error = error
        self.touch(moment)

    # lifecycle -------------------------------------------------------------

    def days_until_expiration(self, today: date) -> int | None:
        if self.expires_at is None:
            return None
        return (self.expires_at - today).days

    def is_expired(self, today: date) -> bool:
        return self.expires_at is not None and today > self.expires_at

    def is_in_grace_period(self, today: date) -> bool:
        if not self.is_expired(today) or self.grace_period_end is None:
            return False
        return today <= self.grace_period_end

    def should_be_suspended(self, today: date) -> bool:
        if not self.auto_suspend_enabled or not self.is_expired(today):
            return False
        if self.is_in_grace_period(today):
            return False
        return self.status not in {
            LicenseStatus.REVOKED,
            LicenseStatus.CANCEL,
            LicenseStatus.EXPIRED,
        }

    def should_send_renewal_reminder(self, reminder: ReminderType, today: date) -> bool:
        days_left = self.days_until_expiration(today)
        if days_left is None or self.is_expired(today):
            return False
        if reminder.value in self.renewal_reminders_sent:
            return False
        match reminder:
            case ReminderType.THIRTY_DAYS:
                return 7 < days_left <= 30
            case ReminderType.SEVEN_DAYS:
                return 1 < days_left <= 7
            case ReminderType.ONE_DAY:
                return days_left == 1

    def mark_renewal_reminder_sent(
        self, reminder: ReminderType, now: datetime | None = None
    ) -> None:
        if reminder.value in self.renewal_reminders_sent:
            return
        moment = now or _utcnow()
        # reassign so the ORM sees the change
        self.renewal_reminders_sent = [*self.renewal_reminders_sent, reminder.value]
        self.last_renewal_reminder = moment
        self.touch(moment)

    def calculate_grace_period_end(self) -> date | None:
        if self.expires_at is None:
            return None
        return self.expires_at + timedelta(days=self.grace_period_days)

    def suspend(self, reason: str, now: datetime | None = None) -> None:
        moment = now or _utcnow()
        self.status = LicenseStatus.EXPIRED
        self.suspension_reason = reason
        self.suspended_at = moment
        self.touch(moment)
