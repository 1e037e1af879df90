"""External license API adapter."""

from __future__ import annotations

from .client import LICENSES_PATH, ExternalLicenseApiClient
from .schema import ErrorResponse, LicenseListResponse, LicenseResponse, PageMeta

__all__ = [
    "LICENSES_PATH",
    "ErrorResponse",
    "ExternalLicenseApiClient",
    "LicenseListResponse",
    "LicenseResponse",
    "PageMeta",
]
