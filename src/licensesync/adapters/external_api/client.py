"""HTTP client for the external license system of record."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, cast
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from licensesync import __version__
from licensesync.adapters.http_resilience import ResilienceConfig, ResilientClient
from licensesync.domain.ports.external_api import (
    ApiErrorKind,
    ExternalApiError,
    ExternalLicenseRecord,
    ExternalLicenseSource,
    LicensePage,
)

from .schema import ErrorResponse, LicenseListResponse, LicenseResponse

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime
    from types import TracebackType

    from licensesync.config.external_api import ExternalApiConfig
    from licensesync.domain.monitoring import Monitor

log = getLogger(__name__)

LICENSES_PATH = "/api/v1/licenses"


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def _kind_for_status(status_code: int) -> ApiErrorKind:
    if status_code in {401, 403}:
        return ApiErrorKind.AUTHENTICATION
    if status_code == 429:
        return ApiErrorKind.RATE_LIMIT
    if status_code >= 500:
        return ApiErrorKind.SERVER_ERROR
    return ApiErrorKind.CLIENT_ERROR


def _error_from_response(response: httpx.Response) -> ExternalApiError:
    try:
        detail = ErrorResponse.model_validate(response.json()).text
    except (ValueError, ValidationError):
        detail = response.reason_phrase or "request failed"
    return ExternalApiError(
        f"HTTP {response.status_code}: {detail}",
        kind=_kind_for_status(response.status_code),
        status_code=response.status_code,
    )


@dataclass(slots=True)
class ExternalLicenseApiClient:
    """Async client for ``/api/v1/licenses``; every failure surfaces as ExternalApiError."""

    config: ExternalApiConfig
    monitor: Monitor | None = None
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _client: ResilientClient | None = field(default=None, init=False)

    async def __aenter__(self) -> ExternalLicenseApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    def _http(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "User-Agent": f"licensesync/{__version__}",
            "Accept": "application/json",
        }

    # reads -------------------------------------------------------------------

    async def fetch_page(
        self,
        page: int,
        limit: int,
        *,
        updated_since: datetime | None = None,
    ) -> LicensePage:
        params: dict[str, str | int] = {"page": page, "limit": limit}
        if updated_since is not None:
            params["updatedSince"] = updated_since.isoformat()
        payload = await self._request("GET", LICENSES_PATH, endpoint=LICENSES_PATH, params=params)
        try:
            parsed = LicenseListResponse.model_validate(payload)
        except ValidationError as exc:
            raise ExternalApiError(
                f"Unexpected license list payload on page {page}", kind=ApiErrorKind.UNKNOWN
            ) from exc
        records = tuple(cast("list[ExternalLicenseRecord]", parsed.data))
        total_pages = parsed.meta.resolved_total_pages(limit) if parsed.meta else None
        log.debug(f"Fetched page {page}: {len(records)} records (total_pages={total_pages})")
        return LicensePage(records=records, page=page, total_pages=total_pages)

    async def fetch_by_appid(self, appid: str) -> ExternalLicenseRecord | None:
        return await self._fetch_one(
            f"{LICENSES_PATH}/{quote(appid, safe='')}", endpoint=f"{LICENSES_PATH}/{{appid}}"
        )

    async def fetch_by_email(self, email: str) -> ExternalLicenseRecord | None:
        return await self._fetch_one(
            f"{LICENSES_PATH}/email/{quote(email, safe='')}",
            endpoint=f"{LICENSES_PATH}/email/{{email}}",
        )

    async def fetch_by_countid(self, countid: int) -> ExternalLicenseRecord | None:
        return await self._fetch_one(
            f"{LICENSES_PATH}/countid/{countid}", endpoint=f"{LICENSES_PATH}/countid/{{countid}}"
        )

    async def health_check(self) -> bool:
        try:
            await self._request(
                "GET", LICENSES_PATH, endpoint=LICENSES_PATH, params={"page": 1, "limit": 1}
            )
        except ExternalApiError as exc:
            log.warning(f"External license API health check failed: {exc}")
            return False
        return True

    # writes ------------------------------------------------------------------

    async def update_by_appid(self, appid: str, payload: Mapping[str, object]) -> None:
        await self._request(
            "PUT",
            f"{LICENSES_PATH}/{quote(appid, safe='')}",
            endpoint=f"{LICENSES_PATH}/{{appid}}",
            json=dict(payload),
        )

    async def update_by_email(self, email: str, payload: Mapping[str, object]) -> None:
        await self._request(
            "PUT",
            f"{LICENSES_PATH}/email/{quote(email, safe='')}",
            endpoint=f"{LICENSES_PATH}/email/{{email}}",
            json=dict(payload),
        )

    # plumbing ----------------------------------------------------------------

    async def _fetch_one(self, path: str, *, endpoint: str) -> ExternalLicenseRecord | None:
        payload = await self._request("GET", path, endpoint=endpoint, allow_not_found=True)
        if payload is None:
            return None
        try:
            return LicenseResponse.model_validate(payload).data
        except ValidationError as exc:
            raise ExternalApiError(
                f"Unexpected license payload from {endpoint}", kind=ApiErrorKind.UNKNOWN
            ) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        endpoint: str,
        params: Mapping[str, str | int] | None = None,
        json: object = None,
        allow_not_found: bool = False,
    ) -> object | None:
        started = time.monotonic()
        try:
            response = await self._http().request(
                method,
                path,
                params=dict(params) if params else None,
                json=json,
                headers=self._headers,
            )
        except httpx.TimeoutException as exc:
            raise self._failed(
                endpoint,
                method,
                started,
                ExternalApiError(f"{method} {endpoint} timed out", kind=ApiErrorKind.TIMEOUT),
            ) from exc
        except httpx.TransportError as exc:
            raise self._failed(
                endpoint,
                method,
                started,
                ExternalApiError(
                    f"{method} {endpoint} failed: {exc}", kind=ApiErrorKind.NETWORK
                ),
            ) from exc

        if self.monitor is not None:
            self.monitor.record_api_request(
                endpoint, method, time.monotonic() - started, response.status_code
            )
        if allow_not_found and response.status_code == httpx.codes.NOT_FOUND:
            return None
        if response.is_error:
            error = _error_from_response(response)
            if self.monitor is not None:
                self.monitor.record_api_error(endpoint, error)
            raise error
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            error = ExternalApiError(
                f"{method} {endpoint} returned invalid JSON", kind=ApiErrorKind.UNKNOWN
            )
            if self.monitor is not None:
                self.monitor.record_api_error(endpoint, error)
            raise error from exc

    def _failed(
        self,
        endpoint: str,
        method: str,
        started: float,
        error: ExternalApiError,
    ) -> ExternalApiError:
        if self.monitor is not None:
            self.monitor.record_api_request(endpoint, method, time.monotonic() - started, None)
            self.monitor.record_api_error(endpoint, error)
        log.warning(f"External API {error.kind.value} error: {error}")
        return error


if TYPE_CHECKING:
    _source_check: ExternalLicenseSource = cast("ExternalLicenseApiClient", None)
