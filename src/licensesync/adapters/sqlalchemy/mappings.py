"""SQLAlchemy mapping metadata for the internal license store."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Dialect,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
    orm,
)

from licensesync.domain.model import ExternalSyncStatus, License, LicenseStatus

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    """Store aware datetimes in UTC; sqlite hands back naive values, re-tag them."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _enum_values(enum_cls: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_cls]


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}

license_table = Table(
    "license",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("key", String(64), nullable=False, unique=True),
    Column("product", String, nullable=False),
    Column("plan", String, nullable=False),
    Column("term", String(32), nullable=False),
    Column(
        "status",
        Enum(LicenseStatus, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
    ),
    Column("seats_total", Integer, nullable=False, default=1),
    Column("seats_used", Integer, nullable=False, default=0),
    Column("dba", String, nullable=True),
    Column("zip", String(10), nullable=True),
    Column("email_license", String, nullable=True),
    Column("notes", Text, nullable=True),
    Column("last_payment", Float, nullable=False, default=0.0),
    Column("sms_purchased", Float, nullable=False, default=0.0),
    Column("sms_balance", Float, nullable=False, default=0.0),
    Column("starts_at", Date, nullable=True),
    Column("expires_at", Date, nullable=True),
    Column("cancel_date", Date, nullable=True),
    Column("last_active", UTCDateTime, nullable=True),
    # external linkage
    Column("appid", String, nullable=True),
    Column("countid", Integer, nullable=True),
    Column(
        "external_sync_status",
        Enum(
            ExternalSyncStatus, native_enum=False, length=16, values_callable=_enum_values
        ),
        nullable=True,
    ),
    Column("last_external_sync", UTCDateTime, nullable=True),
    Column("external_sync_error", Text, nullable=True),
    Column("mid", String, nullable=True),
    Column("license_type", String(32), nullable=True),
    Column("package_data", JSON, nullable=True),
    Column("sendbat_workspace", String, nullable=True),
    # lifecycle
    Column("renewal_reminders_sent", JSON, nullable=False, default=list),
    Column("last_renewal_reminder", UTCDateTime, nullable=True),
    Column("auto_suspend_enabled", Boolean, nullable=False, default=False),
    Column("grace_period_days", Integer, nullable=False, default=30),
    Column("grace_period_end", Date, nullable=True),
    Column("suspension_reason", Text, nullable=True),
    Column("suspended_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

Index("ix_license_appid", license_table.c.appid)
Index("ix_license_countid", license_table.c.countid)
Index("ix_license_email_license", license_table.c.email_license)
Index("ix_license_external_sync_status", license_table.c.external_sync_status)


@cache
def start_mappers() -> orm.registry:
    """Map the License dataclass onto its table (idempotent)."""

    log.info("Starting SQLAlchemy mappers")
    mapper_registry.map_imperatively(License, license_table)
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
