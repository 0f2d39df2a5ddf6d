from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from streamhub.core.config import get_settings
from streamhub.core.errors import LicenseApiError
from streamhub.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_INTEGRATION = "license.api"
# Statuses that say nothing about the license itself.
_RETRYABLE_STATUSES = {408, 429}


def _is_transient(status_code: int) -> bool:
    return status_code >= 500 or status_code in _RETRYABLE_STATUSES


class LicenseApiClient:
    """RPC client for the license server.

    Requests are wrapped as ``{"json": params}`` and responses unwrapped from
    the same key. Every failure becomes a LicenseApiError; ``transient`` marks
    the ones that say nothing about the license itself.
    """

    def __init__(self, api_base: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        settings = get_settings()
        self._api_base = (api_base or settings.license_api_base).rstrip("/")
        self._client = client
        self._timeout_s = settings.ext_call_timeout_ms / 1000.0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def activate(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("/licenses/activate", params)

    async def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("/licenses/validate", params)

    async def deactivate(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("/licenses/deactivate", params)

    async def _request(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        start = time.monotonic()
        try:
            response = await self._get_client().post(
                f"{self._api_base}{path}",
                json={"json": params},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            record_external_call(integration=_INTEGRATION, latency_ms=(time.monotonic() - start) * 1000.0, success=False)
            logger.warning("license_api_unreachable path=%s", path, exc_info=exc)
            raise LicenseApiError("License server could not be reached.", code="network_error", transient=True) from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        body = response.text
        if response.status_code == 404 or "<!DOCTYPE" in body or "<html" in body:
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise LicenseApiError(
                f"License API endpoint not found ({response.status_code}).",
                code="api_endpoint_not_found",
                transient=True,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise LicenseApiError(
                "License server returned an unreadable response.",
                code="json_error",
                transient=_is_transient(response.status_code),
            ) from exc

        data = payload.get("json", payload) if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise LicenseApiError("License server returned an unexpected body.", code="json_error", transient=True)

        if data.get("error"):
            error = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise LicenseApiError(
                str(error.get("message") or "License API error."),
                code=str(error.get("code") or "api_error"),
                transient=_is_transient(response.status_code),
            )
        if data.get("code") == "BAD_REQUEST":
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise LicenseApiError(str(data.get("message") or "Input validation failed."), code="validation_error")
        if _is_transient(response.status_code):
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise LicenseApiError(
                str(data.get("message") or f"License server error ({response.status_code})."),
                code="rate_limited" if response.status_code == 429 else "server_error",
                transient=True,
            )
        if response.status_code >= 400 or data.get("valid") is False or data.get("success") is False:
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise LicenseApiError(
                str(data.get("message") or "License was rejected."),
                code=str(data.get("code") or "license_invalid"),
            )

        record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=True)
        return data

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
