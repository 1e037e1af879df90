"""Domain port definitions for adapters."""

from __future__ import annotations

from .cache import Cache
from .external_api import (
    ApiErrorKind,
    ExternalApiError,
    ExternalLicenseRecord,
    ExternalLicenseSource,
    LicensePage,
    classify_error,
)
from .notifications import SyncEventPublisher
from .persistence import LicenseRepository, Repository
from .unit_of_work import (
    LicenseRepositories,
    LicenseUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "ApiErrorKind",
    "Cache",
    "ExternalApiError",
    "ExternalLicenseRecord",
    "ExternalLicenseSource",
    "LicensePage",
    "LicenseRepositories",
    "LicenseRepository",
    "LicenseUnitOfWork",
    "Repository",
    "RepositoryCollection",
    "SyncEventPublisher",
    "UnitOfWork",
    "classify_error",
]
