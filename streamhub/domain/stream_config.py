from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# Bump when the stored layout changes; migrate_config() upgrades older records.
CONFIG_VERSION = 2

ConnectionTestStatus = Literal["success", "error"]


class ProviderSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    webhook_secret: str = ""
    configured_at: datetime | None = None
    last_tested_at: datetime | None = None
    test_status: ConnectionTestStatus | None = None
    test_error: str | None = None


class CloudflareSection(ProviderSection):
    account_id: str = ""
    # Encrypted at rest.
    api_token: str = ""
    customer_subdomain: str = ""


class BunnySection(ProviderSection):
    library_id: str = ""
    # Encrypted at rest.
    api_key: str = ""
    collection_id: str = ""
    cdn_hostname: str = ""


class UploadSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_duration_s: int = 3600
    max_file_size_mb: int = 500
    allowed_formats: list[str] = Field(default_factory=lambda: ["mp4", "mov", "webm"])


class CommentVideoSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    max_duration_s: int = 60


class StreamConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int = CONFIG_VERSION
    # Active provider section: "cloudflare" or "bunny".
    provider: Literal["cloudflare", "bunny"] = "cloudflare"
    cloudflare: CloudflareSection = Field(default_factory=CloudflareSection)
    bunny: BunnySection = Field(default_factory=BunnySection)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    comment_video: CommentVideoSettings = Field(default_factory=CommentVideoSettings)

    def section(self, name: str) -> ProviderSection:
        if name == "cloudflare":
            return self.cloudflare
        if name == "bunny":
            return self.bunny
        raise KeyError(name)


def _migrate_v1(raw: dict[str, Any]) -> dict[str, Any]:
    # v1 stored Bunny's library under "stream_library_id" and upload limits at the top level.
    data = dict(raw)
    bunny = dict(data.get("bunny") or {})
    if not bunny.get("library_id") and bunny.get("stream_library_id"):
        bunny["library_id"] = str(bunny.pop("stream_library_id"))
    data["bunny"] = bunny
    upload = dict(data.get("upload") or {})
    for legacy_key, key in (
        ("max_duration", "max_duration_s"),
        ("max_file_size", "max_file_size_mb"),
        ("allowed_formats", "allowed_formats"),
    ):
        if legacy_key in data and key not in upload:
            upload[key] = data.pop(legacy_key)
        if legacy_key in upload and key not in upload:
            upload[key] = upload.pop(legacy_key)
    data["upload"] = upload
    if data.get("provider") in {"cloudflare_stream", "bunny_stream"}:
        data["provider"] = "cloudflare" if data["provider"] == "cloudflare_stream" else "bunny"
    data["version"] = 2
    return data


_MIGRATIONS = {1: _migrate_v1}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def migrate_config(raw: dict[str, Any] | None) -> StreamConfig:
    """Upgrade a stored config dict and merge it over the current defaults.

    Records without a ``version`` key predate versioning and are treated as v1.
    Unknown keys are dropped; missing keys take their defaults.
    """
    data = dict(raw or {})
    if not data:
        return StreamConfig()
    version = int(data.get("version") or 1)
    while version < CONFIG_VERSION:
        data = _MIGRATIONS[version](data)
        version = int(data["version"])
    defaults = StreamConfig().model_dump(mode="json")
    return StreamConfig.model_validate(_deep_merge(defaults, data))
