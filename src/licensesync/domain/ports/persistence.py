"""Ports for persisting internal licenses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from licensesync.domain.model import License


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...

    def remove(self, entity: TEntity) -> None: ...


@runtime_checkable
class LicenseRepository(Repository["License"], Protocol):
    """Lookups the reconciliation and lifecycle jobs need against the internal store."""

    def get(self, license_id: UUID) -> License | None: ...

    def find_by_appid(self, appid: str) -> Sequence[License]: ...

    def find_by_email(self, email: str) -> Sequence[License]: ...

    def find_by_countid(self, countid: int) -> Sequence[License]: ...

    def list_all(self) -> Sequence[License]: ...

    def list_linked(self) -> Sequence[License]: ...

    def list_needing_sync(self, *, limit: int) -> Sequence[License]: ...

    def list_expiring(self) -> Sequence[License]: ...
