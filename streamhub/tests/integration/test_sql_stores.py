from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from streamhub.core.errors import ConcurrentUpdateError
from streamhub.domain.models import AuditEvent, Base
from streamhub.domain.video import MEDIA_PREVIEW_KEY, ContentEntity, Provider, VideoStatus
from streamhub.persistence.repos.entity_meta import SqlMetadataStore
from streamhub.persistence.repos.settings import SqlSettingsStore
from streamhub.services.audit import record_event
from streamhub.services.license.storage import LicenseStorage
from streamhub.services.provider_config import StreamConfigService


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'streamhub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


def _entity(entity_type: str, entity_id: str, video_id: str | None, parent_id: str | None = None) -> ContentEntity:
    meta = {"title": entity_id}
    if video_id:
        meta[MEDIA_PREVIEW_KEY] = {"provider": "cloudflare_stream", "video_id": video_id}
    return ContentEntity(entity_type, entity_id, meta, parent_id)


@pytest.mark.asyncio
async def test_settings_store_versions_writes(session_factory) -> None:
    store = SqlSettingsStore(session_factory)
    assert await store.get("stream", "config") is None

    assert await store.put("stream", "config", {"a": 1}, expected_version=0) == 1
    with pytest.raises(ConcurrentUpdateError):
        await store.put("stream", "config", {"a": 2}, expected_version=0)

    assert await store.put("stream", "config", {"a": 2}, expected_version=1) == 2
    with pytest.raises(ConcurrentUpdateError):
        await store.put("stream", "config", {"a": 3}, expected_version=1)

    assert await store.put("stream", "config", {"a": 4}) == 3
    stored = await store.get("stream", "config")
    assert stored.value == {"a": 4}
    assert stored.version == 3

    await store.delete("stream", "config")
    assert await store.get("stream", "config") is None
    with pytest.raises(ConcurrentUpdateError):
        await store.put("stream", "config", {"a": 5}, expected_version=3)


@pytest.mark.asyncio
async def test_metadata_store_indexes_video_ids(session_factory) -> None:
    store = SqlMetadataStore(session_factory)
    await store.save(_entity("feed", "p1", "v-post"))
    await store.save(_entity("comment", "c1", "v-c1", parent_id="p1"))
    await store.save(_entity("comment", "c2", None, parent_id="p1"))
    await store.save(_entity("comment", "c9", "v-c9", parent_id="p2"))

    found = await store.find_by_video_id("v-post")
    assert [entity.key for entity in found] == [("feed", "p1")]
    assert [entity.entity_id for entity in await store.list_children("p1")] == ["c1", "c2"]

    # Swapping the video moves the index entry.
    await store.save(_entity("feed", "p1", "v-new"))
    assert await store.find_by_video_id("v-post") == []
    updated = await store.get("feed", "p1")
    assert updated.asset.video_id == "v-new"

    await store.delete("comment", "c1")
    assert await store.get("comment", "c1") is None


@pytest.mark.asyncio
async def test_metadata_asset_update_checks_current_video(session_factory) -> None:
    store = SqlMetadataStore(session_factory)
    await store.save(_entity("feed", "p1", "v-old"))
    await store.save(_entity("feed", "p1", "v-new"))

    def mark_ready(asset):
        return asset.evolve(status=VideoStatus.READY)

    assert await store.update_asset("feed", "p1", "v-old", mark_ready) is None
    assert (await store.get("feed", "p1")).asset.status is VideoStatus.PENDING

    before, entity = await store.update_asset("feed", "p1", "v-new", mark_ready)
    assert before.status is VideoStatus.PENDING
    assert entity.asset.status is VideoStatus.READY
    stored = await store.get("feed", "p1")
    assert stored.meta["title"] == "p1"
    assert stored.asset.status is VideoStatus.READY
    assert await store.update_asset("feed", "missing", "v-new", mark_ready) is None


@pytest.mark.asyncio
async def test_config_service_over_sql_store(session_factory, vault) -> None:
    service = StreamConfigService(SqlSettingsStore(session_factory), vault)
    result = await service.save_provider(
        "bunny", {"library_id": "4242", "api_key": "bunny-key-987654"}, make_active=True
    )
    assert result.saved is True
    assert await service.active_provider() is Provider.BUNNY
    assert (await service.get_credentials("bunny"))["api_key"] == "bunny-key-987654"

    await service.update_settings({"upload": {"max_duration_s": 120}})
    config = await service.get_config()
    assert config.upload.max_duration_s == 120
    assert config.bunny.configured_at is not None


@pytest.mark.asyncio
async def test_license_usage_counter_over_sql_store(session_factory, vault) -> None:
    storage = LicenseStorage(SqlSettingsStore(session_factory), vault)
    for _ in range(3):
        await storage.increment_usage()
    assert (await storage.get_usage()).count == 3


@pytest.mark.asyncio
async def test_record_event_persists_sanitized_row(session_factory) -> None:
    await record_event(
        session_factory=session_factory,
        event_type="webhook.signature_rejected",
        outcome="failure",
        actor_type="provider",
        actor_id="cloudflare_stream",
        request_id="req-42",
        metadata={"reason": "stale", "signature": "sig1=abc"},
        error_code="SECURITY_REJECTED",
    )
    async with session_factory() as session:
        rows = (await session.execute(select(AuditEvent))).scalars().all()
    assert len(rows) == 1
    assert rows[0].request_id == "req-42"
    assert rows[0].metadata_json == {"reason": "stale", "signature": "[REDACTED]"}
