"""Port for the external license system of record."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

type ExternalLicenseRecord = Mapping[str, object]


class ApiErrorKind(StrEnum):
    """Classification of external API failures, assigned by the client that raised them."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"

    @property
    def is_fatal(self) -> bool:
        """Whether a sync run can no longer make progress after this failure."""
        return self in {ApiErrorKind.AUTHENTICATION, ApiErrorKind.NETWORK}

    @property
    def is_transient(self) -> bool:
        return self in {ApiErrorKind.TIMEOUT, ApiErrorKind.NETWORK, ApiErrorKind.RATE_LIMIT}


class ExternalApiError(RuntimeError):
    """Raised by external API clients; ``kind`` drives abort and alert decisions."""

    def __init__(
        self,
        message: str,
        *,
        kind: ApiErrorKind = ApiErrorKind.UNKNOWN,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


def classify_error(error: BaseException) -> ApiErrorKind:
    if isinstance(error, ExternalApiError):
        return error.kind
    return ApiErrorKind.UNKNOWN


@dataclass(slots=True, frozen=True)
class LicensePage:
    """One page of raw records plus whatever paging metadata the API supplied."""

    records: tuple[ExternalLicenseRecord, ...] = field(default_factory=tuple)
    page: int = 1
    total_pages: int | None = None


@runtime_checkable
class ExternalLicenseSource(Protocol):
    async def fetch_page(
        self,
        page: int,
        limit: int,
        *,
        updated_since: datetime | None = None,
    ) -> LicensePage: ...

    async def fetch_by_appid(self, appid: str) -> ExternalLicenseRecord | None: ...

    async def fetch_by_countid(self, countid: int) -> ExternalLicenseRecord | None: ...

    async def update_by_appid(self, appid: str, payload: Mapping[str, object]) -> None: ...

    async def update_by_email(self, email: str, payload: Mapping[str, object]) -> None: ...
