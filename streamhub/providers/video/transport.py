from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from streamhub.core.config import get_settings
from streamhub.core.errors import (
    ConfigError,
    DefinitiveProviderError,
    IntegrationUnavailableError,
    ProviderRequestError,
    TransientProviderError,
)
from streamhub.domain.video import Provider
from streamhub.services.resilience import CircuitBreaker, RetryPolicy, get_breaker, retry_async
from streamhub.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, IntegrationUnavailableError):
        return False
    return isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, TransientProviderError, TimeoutError))


class ProviderHttp:
    """Bounded, retried, breaker-guarded HTTP calls to one provider API.

    Every failure leaves as one of the provider error classes: 404 is
    definitive, 401/403 is a configuration problem, other 4xx is a rejected
    request, and anything that leaves the answer unknown is transient.
    """

    def __init__(
        self,
        *,
        provider: Provider,
        integration: str,
        base_url: str,
        headers: dict[str, str],
        client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._provider = provider
        self._integration = integration
        self._base_url = base_url.rstrip("/")
        self._headers = headers
        self._client = client
        self._owns_client = client is None
        self._breaker = breaker
        self._retry_policy = retry_policy

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        timeout_s = get_settings().ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def _get_breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            self._breaker = await get_breaker(self._integration)
        return self._breaker

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _error(self, cls: type[Exception], message: str, status_code: int | None = None) -> Exception:
        return cls(message, status_code=status_code, provider=self._provider.value)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = self._get_client()
        breaker = await self._get_breaker()
        url = f"{self._base_url}{path}"
        start = time.monotonic()

        def _record(success: bool) -> None:
            record_external_call(
                integration=self._integration,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=success,
            )

        await breaker.before_call()

        async def _call() -> httpx.Response:
            response = await client.request(method, url, params=params, headers=self._headers)
            if response.status_code >= 500 or response.status_code == 429:
                raise self._error(
                    TransientProviderError,
                    f"{self._integration} returned {response.status_code}",
                    response.status_code,
                )
            return response

        try:
            response = await retry_async(_call, policy=self._retry_policy, retryable=_retryable)
        except TransientProviderError:
            await breaker.record_failure()
            _record(False)
            raise
        except (httpx.HTTPError, TimeoutError) as exc:
            await breaker.record_failure()
            _record(False)
            increment_counter(f"provider_transient_errors_total.{self._integration}")
            raise self._error(TransientProviderError, f"{self._integration} request failed") from exc

        # The remote answered, so the breaker sees a healthy integration from here on.
        await breaker.record_success()
        status = response.status_code
        if status in {401, 403}:
            _record(False)
            raise ConfigError(f"{self._integration} rejected credentials ({status})")
        if status == 404:
            _record(True)
            raise self._error(DefinitiveProviderError, f"{self._integration} resource not found", status)
        if status >= 400:
            _record(False)
            raise self._error(ProviderRequestError, f"{self._integration} returned {status}", status)
        _record(True)
        return response

    def parse_json(self, response: httpx.Response) -> dict[str, Any]:
        # An unreadable body leaves the asset state unknown.
        try:
            payload = response.json()
        except ValueError as exc:
            raise self._error(
                TransientProviderError, f"{self._integration} returned malformed JSON", response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise self._error(
                TransientProviderError, f"{self._integration} returned an unexpected body", response.status_code
            )
        return payload
