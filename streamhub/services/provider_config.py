from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from streamhub.core.errors import ConcurrentUpdateError, ConfigError, VaultError
from streamhub.domain.stream_config import ProviderSection, StreamConfig, migrate_config
from streamhub.domain.video import Provider
from streamhub.persistence.stores import SettingsStore
from streamhub.providers.video.base import ConnectionTestResult, VideoGateway
from streamhub.providers.video.cloudflare import normalize_customer_subdomain
from streamhub.providers.video.factory import build_gateway
from streamhub.services.vault import CredentialVault


logger = logging.getLogger(__name__)

CONFIG_NAMESPACE = "stream"
CONFIG_KEY = "config"
_MAX_WRITE_ATTEMPTS = 3
# Bookkeeping fields a caller can never set directly.
_STATE_FIELDS = {"configured_at", "last_tested_at", "test_status", "test_error"}


@dataclass(frozen=True)
class MaskRule:
    visible: int
    has_flag: str
    masked_key: str


@dataclass(frozen=True)
class RequiredField:
    label: str
    # Satisfied by an already-stored value when the update leaves it blank.
    allow_existing: bool = False


@dataclass(frozen=True)
class ProviderConfigSpec:
    provider: Provider
    encrypted_fields: frozenset[str]
    masked_fields: dict[str, MaskRule]
    required_fields: dict[str, RequiredField]
    normalizers: dict[str, Callable[[str], str]] = field(default_factory=dict)

    @property
    def section(self) -> str:
        return self.provider.config_section


CLOUDFLARE_SPEC = ProviderConfigSpec(
    provider=Provider.CLOUDFLARE,
    encrypted_fields=frozenset({"api_token", "webhook_secret"}),
    masked_fields={
        "api_token": MaskRule(6, "has_api_token", "api_token_masked"),
        "webhook_secret": MaskRule(4, "has_webhook_secret", "webhook_secret_masked"),
    },
    required_fields={
        "account_id": RequiredField("Account ID"),
        "api_token": RequiredField("API Token", allow_existing=True),
        "customer_subdomain": RequiredField("Customer Subdomain"),
    },
    normalizers={"customer_subdomain": normalize_customer_subdomain},
)

BUNNY_SPEC = ProviderConfigSpec(
    provider=Provider.BUNNY,
    encrypted_fields=frozenset({"api_key", "webhook_secret"}),
    masked_fields={
        "api_key": MaskRule(6, "has_api_key", "api_key_masked"),
        "webhook_secret": MaskRule(4, "has_webhook_secret", "webhook_secret_masked"),
    },
    required_fields={
        "library_id": RequiredField("Library ID"),
        "api_key": RequiredField("API Key", allow_existing=True),
    },
)

PROVIDER_SPECS: dict[Provider, ProviderConfigSpec] = {
    Provider.CLOUDFLARE: CLOUDFLARE_SPEC,
    Provider.BUNNY: BUNNY_SPEC,
}


def get_provider_spec(provider: Provider | str) -> ProviderConfigSpec:
    parsed = Provider.parse(provider)
    if parsed is None:
        raise ConfigError(f"Unknown video provider: {provider}")
    return PROVIDER_SPECS[parsed]


def validate_provider_data(
    spec: ProviderConfigSpec,
    data: dict[str, Any],
    existing: dict[str, Any] | None = None,
) -> dict[str, str]:
    errors: dict[str, str] = {}
    existing = existing or {}
    for name, rule in spec.required_fields.items():
        value = str(data.get(name) or "").strip()
        if value:
            continue
        if rule.allow_existing and existing.get(name):
            continue
        errors[name] = f"{rule.label} is required."
    return errors


def apply_provider_update(
    spec: ProviderConfigSpec,
    existing: dict[str, Any],
    data: dict[str, Any],
    vault: CredentialVault,
    *,
    now: datetime,
) -> dict[str, Any]:
    """Merge ``data`` into a stored section, encrypting secret fields.

    A blank secret in ``data`` keeps the stored ciphertext, so admin forms can
    resubmit without re-entering credentials.
    """
    updated = dict(existing)
    for name, raw_value in data.items():
        if name in _STATE_FIELDS or name not in existing:
            continue
        if name == "enabled":
            updated["enabled"] = bool(raw_value)
            continue
        value = str(raw_value or "").strip()
        if name in spec.encrypted_fields:
            if value:
                updated[name] = vault.encrypt(value)
            continue
        normalizer = spec.normalizers.get(name)
        updated[name] = normalizer(value) if normalizer else value
    if "enabled" not in data:
        updated["enabled"] = True
    updated["configured_at"] = now
    return updated


def decrypt_provider_section(spec: ProviderConfigSpec, section: dict[str, Any], vault: CredentialVault) -> dict[str, Any]:
    plain = dict(section)
    for name in spec.encrypted_fields:
        plain[name] = vault.decrypt(str(section.get(name) or ""))
    return plain


def mask_provider_section(spec: ProviderConfigSpec, section: dict[str, Any], vault: CredentialVault) -> dict[str, Any]:
    masked = dict(section)
    for name, rule in spec.masked_fields.items():
        ciphertext = str(section.get(name) or "")
        masked[rule.has_flag] = bool(ciphertext)
        masked[name] = ""
        if not ciphertext:
            masked[rule.masked_key] = ""
            continue
        try:
            masked[rule.masked_key] = vault.mask(vault.decrypt(ciphertext), rule.visible)
        except VaultError:
            # Stored under another key; the value exists but cannot be previewed.
            masked[rule.masked_key] = "*" * 8
    return masked


@dataclass(frozen=True)
class ProviderSaveResult:
    saved: bool
    errors: dict[str, str] = field(default_factory=dict)
    test: ConnectionTestResult | None = None


GatewayBuilder = Callable[[Provider, dict[str, Any]], VideoGateway]


class StreamConfigService:
    def __init__(
        self,
        store: SettingsStore,
        vault: CredentialVault,
        *,
        gateway_builder: GatewayBuilder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._vault = vault
        self._gateway_builder = gateway_builder or build_gateway
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _load(self) -> tuple[StreamConfig, int]:
        stored = await self._store.get(CONFIG_NAMESPACE, CONFIG_KEY)
        if stored is None:
            return StreamConfig(), 0
        return migrate_config(stored.value), stored.version

    async def _mutate(self, change: Callable[[StreamConfig], StreamConfig]) -> StreamConfig:
        # Re-read, apply and compare-and-set; a lost race re-applies the change on fresh data.
        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            config, version = await self._load()
            updated = change(config.model_copy(deep=True))
            try:
                await self._store.put(
                    CONFIG_NAMESPACE,
                    CONFIG_KEY,
                    updated.model_dump(mode="json"),
                    expected_version=version,
                )
                return updated
            except ConcurrentUpdateError:
                logger.info("stream_config_write_conflict attempt=%s", attempt)
        raise ConcurrentUpdateError("stream config changed concurrently; retry the update")

    async def get_config(self) -> StreamConfig:
        config, _version = await self._load()
        return config

    async def get_public(self) -> dict[str, Any]:
        config = await self.get_config()
        payload = config.model_dump(mode="json")
        for spec in PROVIDER_SPECS.values():
            payload[spec.section] = mask_provider_section(spec, payload[spec.section], self._vault)
        return payload

    async def get_credentials(self, provider: Provider | str) -> dict[str, Any]:
        """Decrypted section for ``provider``; raises ConfigError when unusable."""
        spec = get_provider_spec(provider)
        config = await self.get_config()
        section = config.section(spec.section).model_dump(mode="json")
        try:
            plain = decrypt_provider_section(spec, section, self._vault)
        except VaultError as exc:
            raise ConfigError(f"{spec.section} credentials could not be decrypted") from exc
        missing = validate_provider_data(spec, plain)
        if missing:
            raise ConfigError(f"{spec.section} is not configured: {', '.join(sorted(missing))}")
        return plain

    async def get_webhook_secret(self, provider: Provider | str) -> str:
        spec = get_provider_spec(provider)
        config = await self.get_config()
        ciphertext = config.section(spec.section).webhook_secret
        try:
            secret = self._vault.decrypt(ciphertext)
        except VaultError as exc:
            raise ConfigError(f"{spec.section} webhook secret could not be decrypted") from exc
        if not secret:
            raise ConfigError(f"{spec.section} webhook secret is not configured")
        return secret

    async def active_provider(self) -> Provider:
        config = await self.get_config()
        provider = Provider.parse(config.provider)
        if provider is None:
            raise ConfigError(f"Unknown active provider: {config.provider}")
        return provider

    async def build_gateway(self, provider: Provider | str) -> VideoGateway:
        spec = get_provider_spec(provider)
        credentials = await self.get_credentials(spec.provider)
        return self._gateway_builder(spec.provider, credentials)

    async def save_provider(
        self,
        provider: Provider | str,
        data: dict[str, Any],
        *,
        test_connection: bool = False,
        make_active: bool = False,
    ) -> ProviderSaveResult:
        spec = get_provider_spec(provider)
        existing = (await self.get_config()).section(spec.section).model_dump(mode="json")
        errors = validate_provider_data(spec, data, existing)
        if errors:
            return ProviderSaveResult(saved=False, errors=errors)

        now = self._clock()

        def _change(config: StreamConfig) -> StreamConfig:
            section = config.section(spec.section).model_dump()
            updated = apply_provider_update(spec, section, data, self._vault, now=now)
            model = type(config.section(spec.section)).model_validate(updated)
            changes: dict[str, Any] = {spec.section: model}
            if make_active:
                changes["provider"] = spec.section
            return config.model_copy(update=changes)

        try:
            await self._mutate(_change)
        except VaultError:
            logger.error("stream_config_encrypt_failed provider=%s", spec.section)
            return ProviderSaveResult(saved=False, errors={"_": "Credentials could not be encrypted."})
        logger.info("stream_config_saved provider=%s", spec.section)
        test = await self.test_connection(spec.provider) if test_connection else None
        return ProviderSaveResult(saved=True, test=test)

    async def update_settings(self, data: dict[str, Any]) -> StreamConfig:
        # Non-credential settings: active provider, upload limits, comment video toggle.
        def _change(config: StreamConfig) -> StreamConfig:
            merged = config.model_dump()
            for key in ("provider", "upload", "comment_video"):
                if key not in data:
                    continue
                if isinstance(data[key], dict):
                    merged[key] = {**merged[key], **data[key]}
                else:
                    merged[key] = data[key]
            if "provider" in data:
                parsed = Provider.parse(data["provider"])
                if parsed is None:
                    raise ConfigError(f"Unknown video provider: {data['provider']}")
                merged["provider"] = parsed.config_section
            return StreamConfig.model_validate(merged)

        return await self._mutate(_change)

    async def test_connection(
        self,
        provider: Provider | str,
        credentials: dict[str, Any] | None = None,
    ) -> ConnectionTestResult:
        """Call the provider with saved (or caller-supplied) credentials.

        Results are recorded on the section only when testing the saved
        credentials.
        """
        spec = get_provider_spec(provider)
        try:
            if credentials:
                existing = await self._safe_credentials(spec)
                merged = {**existing, **{k: v for k, v in credentials.items() if v not in (None, "")}}
                if spec.normalizers:
                    for name, normalizer in spec.normalizers.items():
                        if merged.get(name):
                            merged[name] = normalizer(str(merged[name]))
                errors = validate_provider_data(spec, merged)
                if errors:
                    return ConnectionTestResult(False, " ".join(errors.values()))
                gateway = self._gateway_builder(spec.provider, merged)
            else:
                gateway = await self.build_gateway(spec.provider)
        except ConfigError as exc:
            result = ConnectionTestResult(False, str(exc))
        else:
            try:
                result = await gateway.test_connection()
            finally:
                await gateway.aclose()

        if not credentials:
            await self._record_test(spec, result)
        logger.info("stream_config_tested provider=%s status=%s", spec.section, result.status)
        return result

    async def _safe_credentials(self, spec: ProviderConfigSpec) -> dict[str, Any]:
        config = await self.get_config()
        section = config.section(spec.section).model_dump(mode="json")
        try:
            return decrypt_provider_section(spec, section, self._vault)
        except VaultError:
            return {name: value for name, value in section.items() if name not in spec.encrypted_fields}

    async def _record_test(self, spec: ProviderConfigSpec, result: ConnectionTestResult) -> None:
        now = self._clock()

        def _change(config: StreamConfig) -> StreamConfig:
            section: ProviderSection = config.section(spec.section)
            updated = section.model_copy(
                update={
                    "last_tested_at": now,
                    "test_status": result.status,
                    "test_error": None if result.ok else result.message,
                }
            )
            return config.model_copy(update={spec.section: updated})

        await self._mutate(_change)
