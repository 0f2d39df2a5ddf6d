from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from streamhub.core.config import get_settings
from streamhub.domain.video import Provider
from streamhub.persistence.stores import InMemoryMetadataStore, InMemorySettingsStore
from streamhub.providers.video.fake import FakeVideoGateway
from streamhub.services.provider_config import StreamConfigService
from streamhub.services.resilience import reset_breakers
from streamhub.services.telemetry import reset_telemetry
from streamhub.services.vault import CredentialVault


FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class ScriptedLicenseClient:
    """Returns (or raises) a preset outcome per RPC and logs calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.outcomes: dict[str, Any] = {
            "activate": {"success": True, "license": {"plan": "pro", "features": {"comment_video": True}}},
            "validate": {"valid": True, "license": {"plan": "pro", "features": {"comment_video": True}}},
            "deactivate": {"success": True},
        }

    async def _call(self, name: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, params))
        outcome = self.outcomes[name]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def activate(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._call("activate", params)

    async def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._call("validate", params)

    async def deactivate(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._call("deactivate", params)

    async def aclose(self) -> None:
        return None


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    # Fresh settings, breakers and counters per test; no real Redis or retry delays.
    monkeypatch.setenv("VAULT_SECRET", "test-vault-secret")
    monkeypatch.setenv("ADMIN_API_TOKEN", "admin-token")
    monkeypatch.setenv("EXT_RETRY_BACKOFF_MS", "1")
    monkeypatch.setenv("EXT_CALL_TIMEOUT_MS", "2000")
    monkeypatch.delenv("REDIS_URL", raising=False)
    get_settings.cache_clear()
    reset_breakers()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_breakers()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault("test-vault-secret")


@pytest.fixture
def settings_store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def gateways() -> dict[Provider, FakeVideoGateway]:
    return {
        Provider.CLOUDFLARE: FakeVideoGateway(Provider.CLOUDFLARE),
        Provider.BUNNY: FakeVideoGateway(Provider.BUNNY),
    }


@pytest.fixture
def config_service(settings_store, vault, gateways) -> StreamConfigService:
    return StreamConfigService(
        settings_store,
        vault,
        gateway_builder=lambda provider, _credentials: gateways[provider],
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
async def configured_service(config_service) -> StreamConfigService:
    await config_service.save_provider(
        "cloudflare",
        {
            "account_id": "acct-123",
            "api_token": "cf-token-abcdef123456",
            "customer_subdomain": "customer-abc123",
            "webhook_secret": "whsec-cloudflare",
        },
        make_active=True,
    )
    await config_service.save_provider(
        "bunny",
        {"library_id": "4242", "api_key": "bunny-key-987654", "webhook_secret": "whsec-bunny"},
    )
    return config_service


@pytest.fixture
def license_client() -> ScriptedLicenseClient:
    return ScriptedLicenseClient()
