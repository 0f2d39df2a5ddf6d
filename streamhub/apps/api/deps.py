from __future__ import annotations

from functools import lru_cache, partial
import hmac

from fastapi import Depends, Header, HTTPException, status

from streamhub.core.config import get_settings
from streamhub.persistence.db import SessionLocal
from streamhub.persistence.repos.entity_meta import SqlMetadataStore
from streamhub.persistence.repos.settings import SqlSettingsStore
from streamhub.persistence.stores import MetadataStore, SettingsStore
from streamhub.services.audit import AuditRecorder, record_event
from streamhub.services.cleanup import VideoCleanupService
from streamhub.services.license.client import LicenseApiClient
from streamhub.services.license.gate import LicenseGate
from streamhub.services.license.storage import LicenseStorage
from streamhub.services.provider_config import StreamConfigService
from streamhub.services.status import StatusReconciler
from streamhub.services.vault import CredentialVault


@lru_cache
def get_settings_store() -> SettingsStore:
    # One store per process; tests swap it through dependency_overrides.
    return SqlSettingsStore(SessionLocal)


@lru_cache
def get_metadata_store() -> MetadataStore:
    return SqlMetadataStore(SessionLocal)


@lru_cache
def get_vault() -> CredentialVault:
    # Key material is derived once from VAULT_SECRET.
    return CredentialVault()


@lru_cache
def get_license_client() -> LicenseApiClient:
    # Reuse one httpx client for all license RPCs.
    return LicenseApiClient()


def get_audit_recorder() -> AuditRecorder:
    # Audit writes open their own session so a failed request still records.
    return partial(record_event, session_factory=SessionLocal)


def get_config_service(
    store: SettingsStore = Depends(get_settings_store),
    vault: CredentialVault = Depends(get_vault),
) -> StreamConfigService:
    return StreamConfigService(store, vault)


def get_license_gate(
    store: SettingsStore = Depends(get_settings_store),
    vault: CredentialVault = Depends(get_vault),
    client: LicenseApiClient = Depends(get_license_client),
) -> LicenseGate:
    # Gate timers and enforcement come from settings.
    return LicenseGate(LicenseStorage(store, vault), client)


def get_status_reconciler(
    metadata: MetadataStore = Depends(get_metadata_store),
    config: StreamConfigService = Depends(get_config_service),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> StatusReconciler:
    return StatusReconciler(metadata, config, audit=audit)


def get_cleanup_service(
    metadata: MetadataStore = Depends(get_metadata_store),
    config: StreamConfigService = Depends(get_config_service),
) -> VideoCleanupService:
    return VideoCleanupService(metadata, config)


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(value: str | None) -> str | None:
    # Accept only "Bearer <token>"; anything else counts as missing.
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_admin(authorization: str | None = Header(default=None)) -> None:
    # No configured token disables the admin surface entirely.
    expected = get_settings().admin_api_token
    if not expected:
        raise _auth_error("Admin API is disabled; set ADMIN_API_TOKEN")
    token = _parse_bearer_token(authorization)
    if token is None:
        raise _auth_error("Missing bearer token")
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise _auth_error("Invalid bearer token")


async def require_active_license(gate: LicenseGate = Depends(get_license_gate)) -> LicenseGate:
    # Reads the cached license only; never contacts the license server.
    if not await gate.is_active():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "LICENSE_INACTIVE", "message": "An active license is required"},
        )
    return gate
