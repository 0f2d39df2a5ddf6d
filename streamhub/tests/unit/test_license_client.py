from __future__ import annotations

import json

import httpx
import pytest

from streamhub.core.errors import LicenseApiError
from streamhub.services.license.client import LicenseApiClient


def _client(handler) -> LicenseApiClient:
    return LicenseApiClient(
        api_base="https://license.test/rpc/",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def _error_for(handler, method: str = "validate") -> LicenseApiError:
    client = _client(handler)
    with pytest.raises(LicenseApiError) as excinfo:
        await getattr(client, method)({"license_key": "FCHUB-PRO-AB12-CD34-EF56"})
    await client.aclose()
    return excinfo.value


@pytest.mark.asyncio
async def test_requests_and_responses_use_json_envelope() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"json": {"success": True, "license": {"plan": "pro"}}})

    client = _client(handler)
    data = await client.activate({"license_key": "FCHUB-PRO-AB12-CD34-EF56", "site_url": "https://site"})
    await client.aclose()

    assert data == {"success": True, "license": {"plan": "pro"}}
    assert seen[0].url.path == "/rpc/licenses/activate"
    assert json.loads(seen[0].content) == {
        "json": {"license_key": "FCHUB-PRO-AB12-CD34-EF56", "site_url": "https://site"}
    }


@pytest.mark.asyncio
async def test_network_failure_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    error = await _error_for(handler)
    assert error.code == "network_error"
    assert error.transient is True


@pytest.mark.asyncio
async def test_read_timeout_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    error = await _error_for(handler)
    assert error.code == "network_error"
    assert error.transient is True


@pytest.mark.asyncio
async def test_throttling_is_transient() -> None:
    error = await _error_for(
        lambda request: httpx.Response(429, json={"json": {"message": "Too many requests"}})
    )
    assert error.code == "rate_limited"
    assert str(error) == "Too many requests"
    assert error.transient is True

    error = await _error_for(lambda request: httpx.Response(408, json={"json": {}}))
    assert error.code == "server_error"
    assert error.transient is True


@pytest.mark.asyncio
async def test_missing_endpoint_is_reported() -> None:
    error = await _error_for(lambda request: httpx.Response(404, text="Not Found"))
    assert error.code == "api_endpoint_not_found"
    assert error.transient is True

    error = await _error_for(lambda request: httpx.Response(200, text="<!DOCTYPE html><html></html>"))
    assert error.code == "api_endpoint_not_found"


@pytest.mark.asyncio
async def test_unreadable_body() -> None:
    error = await _error_for(lambda request: httpx.Response(502, text="bad gateway"))
    assert error.code == "json_error"
    assert error.transient is True

    error = await _error_for(lambda request: httpx.Response(200, text="not json"))
    assert error.code == "json_error"
    assert error.transient is False


@pytest.mark.asyncio
async def test_server_errors_are_transient() -> None:
    error = await _error_for(lambda request: httpx.Response(503, json={"json": {}}))
    assert error.code == "server_error"
    assert error.transient is True


@pytest.mark.asyncio
async def test_error_object_carries_its_code() -> None:
    error = await _error_for(
        lambda request: httpx.Response(
            400, json={"json": {"error": {"code": "license_expired", "message": "License has expired."}}}
        )
    )
    assert error.code == "license_expired"
    assert str(error) == "License has expired."
    assert error.transient is False


@pytest.mark.asyncio
async def test_bad_request_is_a_validation_error() -> None:
    error = await _error_for(
        lambda request: httpx.Response(400, json={"json": {"code": "BAD_REQUEST", "message": "site_url missing"}}),
        method="activate",
    )
    assert error.code == "validation_error"


@pytest.mark.asyncio
async def test_invalid_license_is_rejected() -> None:
    error = await _error_for(lambda request: httpx.Response(200, json={"json": {"valid": False}}))
    assert error.code == "license_invalid"
    assert error.transient is False

    error = await _error_for(
        lambda request: httpx.Response(200, json={"json": {"success": False, "message": "Site limit reached."}}),
        method="deactivate",
    )
    assert str(error) == "Site limit reached."
