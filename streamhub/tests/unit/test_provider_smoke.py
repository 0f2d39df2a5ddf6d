from __future__ import annotations

import types

import pytest

from streamhub.core.errors import ConfigError, DefinitiveProviderError, TransientProviderError
from streamhub.domain.video import Provider, ProviderVideo
import scripts.provider_smoke as provider_smoke


def _args(**overrides) -> types.SimpleNamespace:
    values = {"provider": None, "video_id": None, "list": False}
    values.update(overrides)
    return types.SimpleNamespace(**values)


@pytest.mark.asyncio
async def test_provider_smoke_checks_active_provider(monkeypatch, configured_service, gateways, capsys) -> None:
    gateways[Provider.CLOUDFLARE].put(ProviderVideo("v1", ready_to_stream=True, pct_complete=100, state="ready"))
    monkeypatch.setattr(provider_smoke, "build_config_service", lambda: configured_service)

    code = await provider_smoke._run(_args(video_id="v1", list=True))
    output = capsys.readouterr().out
    assert code == 0
    assert "connection provider=cloudflare status=success" in output
    assert "video id=v1 ready_to_stream=True pct_complete=100" in output
    assert "- id=v1" in output


@pytest.mark.asyncio
async def test_provider_smoke_reports_failed_connection(monkeypatch, config_service) -> None:
    # Nothing saved: the connection test fails before any provider call.
    monkeypatch.setattr(provider_smoke, "build_config_service", lambda: config_service)
    assert await provider_smoke._run(_args(provider="bunny")) == 3


@pytest.mark.asyncio
async def test_provider_smoke_surfaces_missing_video(monkeypatch, configured_service) -> None:
    monkeypatch.setattr(provider_smoke, "build_config_service", lambda: configured_service)
    with pytest.raises(DefinitiveProviderError):
        await provider_smoke._run(_args(provider="cloudflare", video_id="missing"))


def test_provider_smoke_error_codes() -> None:
    code, message = provider_smoke._format_error(ConfigError("no token"))
    assert code == 2
    assert "PROVIDER_CONFIG_INVALID" in message

    code, message = provider_smoke._format_error(TransientProviderError("timeout"))
    assert code == 5
    assert "PROVIDER_UNAVAILABLE" in message

    code, _message = provider_smoke._format_error(DefinitiveProviderError("gone"))
    assert code == 4
    assert provider_smoke._format_error(RuntimeError("boom"))[0] == 1


def test_provider_smoke_main_maps_errors(monkeypatch, capsys) -> None:
    def _broken():
        raise ConfigError("VAULT_SECRET is not set")

    monkeypatch.setattr(provider_smoke, "build_config_service", _broken)
    assert provider_smoke.main(["--provider", "cloudflare"]) == 2
    assert "PROVIDER_CONFIG_INVALID" in capsys.readouterr().err
