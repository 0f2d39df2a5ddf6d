from __future__ import annotations

from streamhub.domain.video import (
    MEDIA_PREVIEW_KEY,
    AssetRef,
    ContentEntity,
    Provider,
    VideoAsset,
    VideoStatus,
)


def test_provider_parse_accepts_ids_and_section_names() -> None:
    assert Provider.parse("cloudflare_stream") is Provider.CLOUDFLARE
    assert Provider.parse("cloudflare") is Provider.CLOUDFLARE
    assert Provider.parse(" Bunny ") is Provider.BUNNY
    assert Provider.parse(Provider.BUNNY) is Provider.BUNNY
    assert Provider.parse("vimeo") is None
    assert Provider.parse(None) is None


def test_asset_from_meta_requires_provider_and_id() -> None:
    assert VideoAsset.from_meta(None) is None
    assert VideoAsset.from_meta({}) is None
    assert VideoAsset.from_meta({MEDIA_PREVIEW_KEY: {"provider": "cloudflare_stream"}}) is None
    assert VideoAsset.from_meta({MEDIA_PREVIEW_KEY: {"provider": "youtube", "video_id": "v1"}}) is None


def test_asset_round_trips_through_entity_meta() -> None:
    meta = {
        "title": "hello",
        MEDIA_PREVIEW_KEY: {
            "provider": "bunny_stream",
            "video_id": "guid-1",
            "status": "ready",
            "library_id": 4242,
            "width": 1920,
        },
    }
    asset = VideoAsset.from_meta(meta)
    assert asset is not None
    assert asset.provider is Provider.BUNNY
    assert asset.status is VideoStatus.READY
    assert asset.library_id == "4242"
    assert asset.extra == {"width": 1920}

    updated = asset.evolve(thumbnail_url="https://cdn/t.jpg").with_meta(meta)
    assert updated["title"] == "hello"
    assert updated[MEDIA_PREVIEW_KEY]["thumbnail_url"] == "https://cdn/t.jpg"
    assert updated[MEDIA_PREVIEW_KEY]["width"] == 1920
    assert "error_code" not in updated[MEDIA_PREVIEW_KEY]
    assert meta[MEDIA_PREVIEW_KEY].get("thumbnail_url") is None


def test_unknown_status_defaults_to_pending() -> None:
    asset = VideoAsset.from_meta({MEDIA_PREVIEW_KEY: {"provider": "cloudflare", "video_id": "v", "status": "weird"}})
    assert asset is not None
    assert asset.status is VideoStatus.PENDING


def test_entity_asset_and_ref() -> None:
    entity = ContentEntity(
        "comment",
        "c1",
        {MEDIA_PREVIEW_KEY: {"provider": "cloudflare_stream", "video_id": "v9"}},
        parent_id="p1",
    )
    assert entity.key == ("comment", "c1")
    assert entity.asset.ref == AssetRef(Provider.CLOUDFLARE, "v9")
