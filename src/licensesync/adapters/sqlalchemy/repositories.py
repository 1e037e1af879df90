"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select

from licensesync.adapters.sqlalchemy.mappings import license_table
from licensesync.domain.model import ExternalSyncStatus, License

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.orm import Session


class SqlAlchemyLicenseRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: License) -> None:
        self.session.add(entity)

    def remove(self, entity: License) -> None:
        self.session.delete(entity)

    def get(self, license_id: UUID) -> License | None:
        return self.session.get(License, license_id)

    def find_by_appid(self, appid: str) -> Sequence[License]:
        stmt = select(License).where(license_table.c.appid == appid).order_by(license_table.c.id)
        return self.session.execute(stmt).scalars().all()

    def find_by_email(self, email: str) -> Sequence[License]:
        stmt = (
            select(License)
            .where(func.lower(license_table.c.email_license) == email.strip().lower())
            .order_by(license_table.c.id)
        )
        return self.session.execute(stmt).scalars().all()

    def find_by_countid(self, countid: int) -> Sequence[License]:
        stmt = (
            select(License).where(license_table.c.countid == countid).order_by(license_table.c.id)
        )
        return self.session.execute(stmt).scalars().all()

    def list_all(self) -> Sequence[License]:
        stmt = select(License).order_by(license_table.c.created_at, license_table.c.id)
        return self.session.execute(stmt).scalars().all()

    def list_linked(self) -> Sequence[License]:
        stmt = (
            select(License)
            .where((license_table.c.appid.is_not(None)) | (license_table.c.countid.is_not(None)))
            .order_by(license_table.c.updated_at)
        )
        return self.session.execute(stmt).scalars().all()

    def list_needing_sync(self, *, limit: int) -> Sequence[License]:
        stmt = (
            select(License)
            .where(
                license_table.c.external_sync_status.in_(
                    (ExternalSyncStatus.PENDING, ExternalSyncStatus.FAILED)
                )
            )
            .where((license_table.c.appid.is_not(None)) | (license_table.c.countid.is_not(None)))
            .order_by(license_table.c.updated_at)
            .limit(limit)
        )
        return self.session.execute(stmt).scalars().all()

    def list_expiring(self) -> Sequence[License]:
        stmt = (
            select(License)
            .where(license_table.c.expires_at.is_not(None))
            .order_by(license_table.c.expires_at)
        )
        return self.session.execute(stmt).scalars().all()
