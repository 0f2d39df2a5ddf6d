from __future__ import annotations

from typing import Any

from streamhub.domain.video import Provider, VideoAsset, VideoStatus
from streamhub.providers.video import bunny, cloudflare


def embed_url(asset: VideoAsset) -> str | None:
    if asset.provider is Provider.CLOUDFLARE:
        if asset.customer_subdomain:
            return cloudflare.player_url(asset.customer_subdomain, asset.video_id)
        return f"https://iframe.videodelivery.net/{asset.video_id}"
    if asset.provider is Provider.BUNNY and asset.library_id:
        return bunny.player_url(asset.library_id, asset.video_id)
    return None


def render_hints(asset: VideoAsset | None) -> dict[str, Any]:
    """Pure view of a stored asset.

    Only the engine-confirmed ``asset.status`` is consulted, so a caller that
    claims readiness cannot get a player rendered for a pending video.
    """
    if asset is None:
        return {"mode": "none"}
    if asset.status is VideoStatus.READY:
        url = embed_url(asset)
        if url is not None:
            return {
                "mode": "player",
                "embed_url": url,
                "thumbnail_url": asset.thumbnail_url,
                "aspect_ratio": "16:9",
            }
    if asset.status is VideoStatus.FAILED:
        return {
            "mode": "error",
            "message": asset.error_text or "Video processing failed.",
            "error_code": asset.error_code,
        }
    return {
        "mode": "placeholder",
        "thumbnail_url": asset.thumbnail_url,
        "overlay": "processing",
        "poll": True,
    }
