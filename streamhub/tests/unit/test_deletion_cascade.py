from __future__ import annotations

import pytest

from streamhub.core.errors import TransientProviderError
from streamhub.domain.video import MEDIA_PREVIEW_KEY, AssetRef, ContentEntity, Provider
from streamhub.services.cleanup import DeletionRun, VideoCleanupService


def _with_video(provider: str, video_id: str) -> dict:
    return {MEDIA_PREVIEW_KEY: {"provider": provider, "video_id": video_id}}


@pytest.fixture
async def thread(metadata_store):
    await metadata_store.save(ContentEntity("feed", "p1", _with_video("cloudflare_stream", "v-post")))
    await metadata_store.save(ContentEntity("comment", "c1", _with_video("cloudflare_stream", "v-c1"), "p1"))
    await metadata_store.save(ContentEntity("comment", "c2", _with_video("bunny_stream", "g-c2"), "p1"))
    await metadata_store.save(ContentEntity("comment", "c3", {"text": "no video"}, "p1"))
    # Another post's comment must not be touched.
    await metadata_store.save(ContentEntity("comment", "c9", _with_video("cloudflare_stream", "v-c9"), "p2"))
    return metadata_store


@pytest.mark.asyncio
async def test_post_delete_cascades_to_comment_videos(configured_service, thread, gateways) -> None:
    service = VideoCleanupService(thread, configured_service)
    run = await service.handle_delete("feed", "p1")

    assert gateways[Provider.CLOUDFLARE].delete_calls == ["v-c1", "v-post"]
    assert gateways[Provider.BUNNY].delete_calls == ["g-c2"]
    assert len(run.deleted) == 3
    assert run.failed == []
    assert run.as_dict()["attempted"] == 3


@pytest.mark.asyncio
async def test_shared_video_is_deleted_once(configured_service, thread, gateways) -> None:
    await thread.save(ContentEntity("comment", "c4", _with_video("cloudflare_stream", "v-post"), "p1"))
    await thread.save(ContentEntity("comment", "c5", _with_video("cloudflare_stream", "v-c1"), "p1"))
    service = VideoCleanupService(thread, configured_service)

    run = await service.handle_delete("feed", "p1")
    calls = gateways[Provider.CLOUDFLARE].delete_calls
    assert sorted(calls) == ["v-c1", "v-post"]
    assert len(run.attempted) == 3


@pytest.mark.asyncio
async def test_comment_delete_only_removes_its_own_video(configured_service, thread, gateways) -> None:
    service = VideoCleanupService(thread, configured_service)
    run = await service.handle_delete("comment", "c1")
    assert gateways[Provider.CLOUDFLARE].delete_calls == ["v-c1"]
    assert gateways[Provider.BUNNY].delete_calls == []
    assert run.deleted == [AssetRef(Provider.CLOUDFLARE, "v-c1")]


@pytest.mark.asyncio
async def test_run_is_shared_across_calls(configured_service, thread, gateways) -> None:
    service = VideoCleanupService(thread, configured_service)
    run = DeletionRun()
    post = await thread.get("feed", "p1")
    await service.before_delete(post, run)
    await service.before_delete(post, run)
    assert len(gateways[Provider.CLOUDFLARE].delete_calls) == 2
    assert len(gateways[Provider.BUNNY].delete_calls) == 1


@pytest.mark.asyncio
async def test_failed_remote_delete_is_reported_not_raised(configured_service, thread, gateways) -> None:
    gateways[Provider.BUNNY].failures["g-c2"] = TransientProviderError("down")
    service = VideoCleanupService(thread, configured_service)
    run = await service.handle_delete("feed", "p1")
    assert run.failed == [AssetRef(Provider.BUNNY, "g-c2")]
    assert len(run.deleted) == 2


@pytest.mark.asyncio
async def test_unknown_entity_is_a_no_op(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    run = await service.handle_delete("feed", "nope")
    assert run.attempted == set()
    assert gateways[Provider.CLOUDFLARE].delete_calls == []


@pytest.mark.asyncio
async def test_post_without_stored_row_still_cascades_to_comments(configured_service, metadata_store, gateways) -> None:
    await metadata_store.save(ContentEntity("comment", "c1", _with_video("cloudflare_stream", "v1"), "p1"))
    await metadata_store.save(ContentEntity("comment", "c2", _with_video("cloudflare_stream", "v2"), "p1"))
    await metadata_store.save(ContentEntity("comment", "c3", {"text": "no video"}, "p1"))
    service = VideoCleanupService(metadata_store, configured_service)

    run = await service.handle_delete("feed", "p1")
    assert gateways[Provider.CLOUDFLARE].delete_calls == ["v1", "v2"]
    assert len(run.deleted) == 2


@pytest.mark.asyncio
async def test_unknown_comment_is_a_no_op(configured_service, metadata_store, gateways) -> None:
    service = VideoCleanupService(metadata_store, configured_service)
    run = await service.handle_delete("comment", "missing")
    assert run.attempted == set()
    assert gateways[Provider.CLOUDFLARE].delete_calls == []
