from __future__ import annotations

import pytest

from streamhub.core.errors import TransientProviderError
from streamhub.domain.video import MEDIA_PREVIEW_KEY, AssetRef, ContentEntity, Provider, VideoAsset
from streamhub.services.cleanup import ChangeKind, SnapshotBuffer, VideoCleanupService, classify_change
from streamhub.services.telemetry import counters_snapshot


def _meta(video_id: str | None, provider: str = "cloudflare_stream", **extra) -> dict:
    if video_id is None:
        return {"title": "post"}
    return {"title": "post", MEDIA_PREVIEW_KEY: {"provider": provider, "video_id": video_id, **extra}}


def test_classify_change_cases() -> None:
    old = VideoAsset(Provider.CLOUDFLARE, "v1")
    assert classify_change(None, None).kind is ChangeKind.NO_CHANGE
    assert classify_change(None, old).kind is ChangeKind.ADDED
    assert classify_change(None, old).delete is None
    assert classify_change(old, old.evolve(thumbnail_url="t")).kind is ChangeKind.NO_CHANGE

    removed = classify_change(old, None)
    assert removed.kind is ChangeKind.REMOVED
    assert removed.delete == AssetRef(Provider.CLOUDFLARE, "v1")


def test_replacement_deletes_only_the_marked_asset() -> None:
    old = VideoAsset(Provider.CLOUDFLARE, "v1")

    unmarked = classify_change(old, VideoAsset(Provider.CLOUDFLARE, "v2"))
    assert unmarked.kind is ChangeKind.REPLACED
    assert unmarked.delete is None

    marked = classify_change(old, VideoAsset(Provider.CLOUDFLARE, "v2", replaces_video_id="v1"))
    assert marked.delete == AssetRef(Provider.CLOUDFLARE, "v1")

    cross_provider = classify_change(
        old,
        VideoAsset(Provider.BUNNY, "g2", replaces_video_id="v1", replaces_provider=Provider.CLOUDFLARE),
    )
    assert cross_provider.delete == AssetRef(Provider.CLOUDFLARE, "v1")


@pytest.mark.asyncio
async def test_update_with_marker_deletes_previous_video(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    diff = await service.handle_update("feed", "p1", _meta("v1"), _meta("v2", replaces_video_id="v1"))
    assert diff.kind is ChangeKind.REPLACED
    assert gateways[Provider.CLOUDFLARE].delete_calls == ["v1"]


@pytest.mark.asyncio
async def test_update_without_marker_keeps_previous_video(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    diff = await service.handle_update("comment", "c1", _meta("v1"), _meta("v2"))
    assert diff.kind is ChangeKind.REPLACED
    assert diff.delete is None
    assert gateways[Provider.CLOUDFLARE].delete_calls == []


@pytest.mark.asyncio
async def test_removing_the_video_deletes_it(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    diff = await service.handle_update("feed", "p1", _meta("g1", "bunny_stream"), _meta(None))
    assert diff.kind is ChangeKind.REMOVED
    assert gateways[Provider.BUNNY].delete_calls == ["g1"]
    assert gateways[Provider.CLOUDFLARE].delete_calls == []


@pytest.mark.asyncio
async def test_unrelated_edit_touches_nothing(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    before = _meta("v1")
    after = {**_meta("v1"), "title": "edited"}
    diff = await service.handle_update("feed", "p1", before, after)
    assert diff.kind is ChangeKind.NO_CHANGE
    assert gateways[Provider.CLOUDFLARE].delete_calls == []


@pytest.mark.asyncio
async def test_snapshot_pairs_before_and_after(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    buffer = SnapshotBuffer()
    entity = ContentEntity("feed", "p1", _meta("v1"))

    service.before_update(entity, buffer)
    assert len(buffer) == 1
    entity.meta = _meta(None)
    diff = await service.after_update(entity, buffer)
    assert diff.kind is ChangeKind.REMOVED
    assert gateways[Provider.CLOUDFLARE].delete_calls == ["v1"]

    # The snapshot was consumed; a second pass has nothing to compare against.
    assert len(buffer) == 0
    again = await service.after_update(entity, buffer)
    assert again.kind is ChangeKind.NO_CHANGE
    assert gateways[Provider.CLOUDFLARE].delete_calls == ["v1"]


@pytest.mark.asyncio
async def test_missing_snapshot_never_deletes(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    diff = await service.after_update(ContentEntity("feed", "p9", _meta(None)), SnapshotBuffer())
    assert diff.kind is ChangeKind.NO_CHANGE
    assert gateways[Provider.CLOUDFLARE].delete_calls == []


@pytest.mark.asyncio
async def test_remote_failure_does_not_fail_the_edit(configured_service, metadata_store, gateways) -> None:
    gateways[Provider.CLOUDFLARE].failures["v1"] = TransientProviderError("timeout")
    service = VideoCleanupService(metadata_store, configured_service)
    diff = await service.handle_update("feed", "p1", _meta("v1"), _meta(None))
    assert diff.kind is ChangeKind.REMOVED
    assert counters_snapshot()["video_cleanup_total.failed"] == 1


@pytest.mark.asyncio
async def test_unconfigured_provider_skips_deletion(config_service, metadata_store) -> None:
    service = VideoCleanupService(metadata_store, config_service)
    assert await service.delete_asset(AssetRef(Provider.BUNNY, "g1")) is False
