from __future__ import annotations

import asyncio
import json
from collections.abc import Callable  # noqa: TC003
from datetime import UTC, datetime

import httpx
import pytest

from licensesync.adapters.external_api import (
    LICENSES_PATH,
    ExternalLicenseApiClient,
    LicenseListResponse,
    PageMeta,
)
from licensesync.domain.monitoring import AlertType, Monitor
from licensesync.domain.ports.external_api import (
    ApiErrorKind,
    ExternalApiError,
    ExternalLicenseSource,
)
from tests.helpers.licenses import external_record, mock_api_client


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    monitor: Monitor | None = None,
) -> ExternalLicenseApiClient:
    return mock_api_client(handler, monitor=monitor)


def test_client_satisfies_source_port() -> None:
    assert isinstance(_client(lambda _: httpx.Response(200)), ExternalLicenseSource)


def test_fetch_page_sends_auth_and_paging_params() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "data": [external_record(1), external_record(2)],
                "meta": {"page": 1, "limit": 2, "total": "5"},
            },
        )

    async def scenario() -> None:
        async with _client(handler) as client:
            page = await client.fetch_page(1, 2)
            assert [record["countid"] for record in page.records] == [1, 2]
            assert page.total_pages == 3

    asyncio.run(scenario())

    [request] = seen
    assert request.url.path == LICENSES_PATH
    assert request.url.params["page"] == "1"
    assert request.url.params["limit"] == "2"
    assert "updatedSince" not in request.url.params
    assert request.headers["x-api-key"] == "test-key"
    assert request.headers["User-Agent"].startswith("licensesync/")


def test_fetch_page_passes_checkpoint_and_accepts_bare_list() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[external_record(9)])

    async def scenario() -> None:
        async with _client(handler) as client:
            page = await client.fetch_page(
                2, 50, updated_since=datetime(2024, 6, 1, tzinfo=UTC)
            )
            assert len(page.records) == 1
            assert page.total_pages is None

    asyncio.run(scenario())

    assert seen[0].url.params["updatedSince"] == "2024-06-01T00:00:00+00:00"


@pytest.mark.parametrize(
    ("status_code", "kind"),
    [
        (401, ApiErrorKind.AUTHENTICATION),
        (403, ApiErrorKind.AUTHENTICATION),
        (429, ApiErrorKind.RATE_LIMIT),
        (503, ApiErrorKind.SERVER_ERROR),
        (400, ApiErrorKind.CLIENT_ERROR),
    ],
)
def test_http_errors_are_classified(status_code: int, kind: ApiErrorKind) -> None:
    monitor = Monitor(memory_probe=lambda: 0)

    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"message": "nope"})

    async def scenario() -> None:
        async with _client(handler, monitor=monitor) as client:
            await client.fetch_page(1, 50)

    with pytest.raises(ExternalApiError) as exc:
        asyncio.run(scenario())

    assert exc.value.kind is kind
    assert exc.value.status_code == status_code
    assert "nope" in str(exc.value)
    assert monitor.get_performance_summary().api_errors == 1
    assert monitor.get_alerts(alert_type=AlertType.EXTERNAL_API_ERROR)


def test_timeout_is_reported_as_timeout_kind() -> None:
    monitor = Monitor(memory_probe=lambda: 0)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    async def scenario() -> None:
        async with _client(handler, monitor=monitor) as client:
            await client.fetch_page(1, 50)

    with pytest.raises(ExternalApiError) as exc:
        asyncio.run(scenario())

    assert exc.value.kind is ApiErrorKind.TIMEOUT
    assert monitor.get_performance_summary().api_requests == 1


def test_connection_failure_is_network_kind() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def scenario() -> None:
        async with _client(handler) as client:
            await client.fetch_page(1, 50)

    with pytest.raises(ExternalApiError) as exc:
        asyncio.run(scenario())

    assert exc.value.kind is ApiErrorKind.NETWORK
    assert exc.value.kind.is_fatal


def test_unexpected_list_payload_is_rejected() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": "not a list"})

    async def scenario() -> None:
        async with _client(handler) as client:
            await client.fetch_page(1, 50)

    with pytest.raises(ExternalApiError, match="Unexpected license list payload"):
        asyncio.run(scenario())


def test_fetch_by_appid_returns_none_when_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{LICENSES_PATH}/APP-1":
            return httpx.Response(200, json={"data": external_record(1)})
        return httpx.Response(404, json={"message": "not found"})

    async def scenario() -> tuple[object, object]:
        async with _client(handler) as client:
            found = await client.fetch_by_appid("APP-1")
            missing = await client.fetch_by_appid("APP-404")
            return found, missing

    found, missing = asyncio.run(scenario())

    assert isinstance(found, dict)
    assert found["appid"] == "APP-1"
    assert missing is None


def test_fetch_by_countid_accepts_unwrapped_record() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"{LICENSES_PATH}/countid/42"
        return httpx.Response(200, json=external_record(42))

    async def scenario() -> object:
        async with _client(handler) as client:
            return await client.fetch_by_countid(42)

    record = asyncio.run(scenario())

    assert isinstance(record, dict)
    assert record["countid"] == 42


def test_fetch_by_email_escapes_address() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": external_record(3)})

    async def scenario() -> object:
        async with _client(handler) as client:
            return await client.fetch_by_email("owner3@example.com")

    record = asyncio.run(scenario())

    assert isinstance(record, dict)
    assert record["countid"] == 3
    assert seen[0].url.path == f"{LICENSES_PATH}/email/owner3@example.com"
    assert b"%40" in seen[0].url.raw_path


def test_updates_put_json_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async def scenario() -> None:
        async with _client(handler) as client:
            await client.update_by_appid("APP-1", {"dba": "New Name", "status": 1})
            await client.update_by_email("owner@example.com", {"dba": "Other"})

    asyncio.run(scenario())

    assert [request.method for request in seen] == ["PUT", "PUT"]
    assert seen[0].url.path == f"{LICENSES_PATH}/APP-1"
    assert json.loads(seen[0].content) == {"dba": "New Name", "status": 1}
    assert seen[1].url.path == f"{LICENSES_PATH}/email/owner@example.com"


def test_health_check_reports_reachability() -> None:
    async def scenario(status_code: int) -> bool:
        def handler(_: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json={"data": []})

        async with _client(handler) as client:
            return await client.health_check()

    assert asyncio.run(scenario(200)) is True
    assert asyncio.run(scenario(500)) is False


def test_page_meta_resolves_total_pages() -> None:
    assert PageMeta(totalPages=4).resolved_total_pages(10) == 4
    assert PageMeta(total=0).resolved_total_pages(10) == 1
    assert PageMeta(total=21).resolved_total_pages(10) == 3
    assert PageMeta().resolved_total_pages(10) is None


def test_list_response_ignores_unknown_envelope_fields() -> None:
    parsed = LicenseListResponse.model_validate(
        {"data": [{"countid": 1}], "meta": {"totalPages": "2"}, "success": True}
    )

    assert parsed.meta is not None
    assert parsed.meta.total_pages == 2
    assert parsed.data == [{"countid": 1}]
