"""SQLAlchemy adapter package for the license store."""

from __future__ import annotations

from .mappings import create_all_tables, license_table, mapper_registry, start_mappers
from .repositories import SqlAlchemyLicenseRepository
from .unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    StartupError,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyLicenseRepository",
    "SqlAlchemyLicenseUnitOfWork",
    "StartupError",
    "create_all_tables",
    "is_started",
    "license_table",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
