from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


# Metadata key under which a video attachment lives on a post or comment.
MEDIA_PREVIEW_KEY = "media_preview"
# Host entity types.
ENTITY_FEED = "feed"
ENTITY_COMMENT = "comment"


class Provider(str, Enum):
    CLOUDFLARE = "cloudflare_stream"
    BUNNY = "bunny_stream"

    @property
    def config_section(self) -> str:
        return "cloudflare" if self is Provider.CLOUDFLARE else "bunny"

    @classmethod
    def parse(cls, value: str | "Provider" | None) -> "Provider | None":
        # Accept both the stored provider id and the short config section name.
        if value is None:
            return None
        if isinstance(value, Provider):
            return value
        lowered = str(value).strip().lower()
        for member in cls:
            if lowered in {member.value, member.config_section}:
                return member
        return None


class VideoStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ProviderVideo:
    """Provider-side view of a video, as reported by a GET or a webhook."""

    video_id: str
    exists: bool = True
    ready_to_stream: bool = False
    pct_complete: float = 0.0
    state: str | None = None
    thumbnail_url: str | None = None
    customer_subdomain: str | None = None
    library_id: str | None = None
    duration_s: float | None = None
    error_code: str | None = None
    error_text: str | None = None

    @property
    def failed(self) -> bool:
        return self.state == "error"


@dataclass(frozen=True)
class VideoAsset:
    """A video attachment embedded in entity metadata."""

    provider: Provider
    video_id: str
    status: VideoStatus = VideoStatus.PENDING
    thumbnail_url: str | None = None
    customer_subdomain: str | None = None
    library_id: str | None = None
    error_code: str | None = None
    error_text: str | None = None
    replaces_video_id: str | None = None
    replaces_provider: Provider | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_meta(cls, meta: dict[str, Any] | None) -> "VideoAsset | None":
        # Unknown providers or a missing id mean "no video" rather than an error.
        if not meta:
            return None
        preview = meta.get(MEDIA_PREVIEW_KEY)
        if not isinstance(preview, dict):
            return None
        video_id = str(preview.get("video_id") or "").strip()
        provider = Provider.parse(preview.get("provider"))
        if not video_id or provider is None:
            return None
        try:
            status = VideoStatus(str(preview.get("status") or VideoStatus.PENDING.value))
        except ValueError:
            status = VideoStatus.PENDING
        known = {
            "provider",
            "video_id",
            "status",
            "thumbnail_url",
            "customer_subdomain",
            "library_id",
            "error_code",
            "error_text",
            "replaces_video_id",
            "replaces_provider",
        }
        return cls(
            provider=provider,
            video_id=video_id,
            status=status,
            thumbnail_url=preview.get("thumbnail_url") or None,
            customer_subdomain=preview.get("customer_subdomain") or None,
            library_id=_optional_str(preview.get("library_id")),
            error_code=preview.get("error_code") or None,
            error_text=preview.get("error_text") or None,
            replaces_video_id=_optional_str(preview.get("replaces_video_id")),
            replaces_provider=Provider.parse(preview.get("replaces_provider")),
            extra={k: v for k, v in preview.items() if k not in known},
        )

    def to_preview(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "provider": self.provider.value,
                "video_id": self.video_id,
                "status": self.status.value,
                "thumbnail_url": self.thumbnail_url,
                "customer_subdomain": self.customer_subdomain,
                "library_id": self.library_id,
            }
        )
        optional = {
            "error_code": self.error_code,
            "error_text": self.error_text,
            "replaces_video_id": self.replaces_video_id,
            "replaces_provider": self.replaces_provider.value if self.replaces_provider else None,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    def with_meta(self, meta: dict[str, Any] | None) -> dict[str, Any]:
        # Return a copy of the entity meta carrying this asset.
        updated = dict(meta or {})
        updated[MEDIA_PREVIEW_KEY] = self.to_preview()
        return updated

    def evolve(self, **changes: Any) -> "VideoAsset":
        return replace(self, **changes)

    @property
    def ref(self) -> "AssetRef":
        return AssetRef(provider=self.provider, video_id=self.video_id)


@dataclass(frozen=True)
class AssetRef:
    # Identity of a remote asset: the unit deletions are deduplicated on.
    provider: Provider
    video_id: str


@dataclass
class ContentEntity:
    entity_type: str
    entity_id: str
    meta: dict[str, Any] = field(default_factory=dict)
    parent_id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_type, self.entity_id)

    @property
    def asset(self) -> VideoAsset | None:
        return VideoAsset.from_meta(self.meta)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
