from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from streamhub.core.errors import StreamHubError
from streamhub.domain.video import (
    ENTITY_FEED,
    AssetRef,
    ContentEntity,
    Provider,
    VideoAsset,
)
from streamhub.persistence.stores import MetadataStore
from streamhub.services.provider_config import StreamConfigService
from streamhub.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    NO_CHANGE = "no_change"
    ADDED = "added"
    REMOVED = "removed"
    REPLACED = "replaced"


@dataclass(frozen=True)
class MetaDiff:
    kind: ChangeKind
    # Remote asset to delete, if any.
    delete: AssetRef | None = None


def classify_change(old: VideoAsset | None, new: VideoAsset | None) -> MetaDiff:
    """Decide what an entity update means for its remote video.

    A replacement deletes only the asset the new metadata explicitly names in
    ``replaces_video_id``; an unmarked swap leaves the old asset alone.
    """
    if old is None:
        return MetaDiff(ChangeKind.ADDED if new is not None else ChangeKind.NO_CHANGE)
    if new is None:
        return MetaDiff(ChangeKind.REMOVED, delete=old.ref)
    if new.video_id == old.video_id and new.provider is old.provider:
        return MetaDiff(ChangeKind.NO_CHANGE)
    if not new.replaces_video_id:
        return MetaDiff(ChangeKind.REPLACED)
    provider = new.replaces_provider or old.provider
    return MetaDiff(ChangeKind.REPLACED, delete=AssetRef(provider=provider, video_id=new.replaces_video_id))


@dataclass(frozen=True)
class MetaSnapshot:
    video_id: str | None
    provider: Provider | None
    asset: VideoAsset | None


class SnapshotBuffer:
    """Pre-update snapshots for one request; each is consumed by a single read."""

    def __init__(self) -> None:
        self._snapshots: dict[tuple[str, str], MetaSnapshot] = {}

    def capture(self, entity: ContentEntity) -> MetaSnapshot:
        asset = entity.asset
        snapshot = MetaSnapshot(
            video_id=asset.video_id if asset else None,
            provider=asset.provider if asset else None,
            asset=asset,
        )
        self._snapshots[entity.key] = snapshot
        return snapshot

    def take(self, entity_type: str, entity_id: str) -> MetaSnapshot | None:
        return self._snapshots.pop((entity_type, entity_id), None)

    def __len__(self) -> int:
        return len(self._snapshots)


@dataclass
class DeletionRun:
    """One logical delete operation; each remote asset is attempted at most once."""

    attempted: set[AssetRef] = field(default_factory=set)
    deleted: list[AssetRef] = field(default_factory=list)
    failed: list[AssetRef] = field(default_factory=list)

    def claim(self, ref: AssetRef) -> bool:
        if ref in self.attempted:
            return False
        self.attempted.add(ref)
        return True

    def as_dict(self) -> dict[str, Any]:
        return {
            "attempted": len(self.attempted),
            "deleted": [{"provider": ref.provider.value, "video_id": ref.video_id} for ref in self.deleted],
            "failed": [{"provider": ref.provider.value, "video_id": ref.video_id} for ref in self.failed],
        }


class VideoCleanupService:
    """Deletes remote videos that local edits and deletions orphan.

    Remote failures never propagate: a post delete or edit must succeed
    locally whatever the provider says, so every outcome is a boolean.
    """

    def __init__(self, metadata: MetadataStore, config: StreamConfigService) -> None:
        self._metadata = metadata
        self._config = config

    async def delete_asset(self, ref: AssetRef) -> bool:
        try:
            gateway = await self._config.build_gateway(ref.provider)
        except StreamHubError as exc:
            logger.warning(
                "video_cleanup_skipped provider=%s video_id=%s error=%s",
                ref.provider.value,
                ref.video_id,
                exc,
            )
            return False
        try:
            deleted = await gateway.delete_video(ref.video_id)
        except Exception as exc:  # noqa: BLE001 - deletion path reports failures as False
            logger.warning(
                "video_cleanup_failed provider=%s video_id=%s",
                ref.provider.value,
                ref.video_id,
                exc_info=exc,
            )
            deleted = False
        finally:
            await gateway.aclose()
        increment_counter(f"video_cleanup_total.{'deleted' if deleted else 'failed'}")
        return deleted

    async def _run_delete(self, ref: AssetRef, run: DeletionRun) -> None:
        if not run.claim(ref):
            logger.info("video_cleanup_deduplicated provider=%s video_id=%s", ref.provider.value, ref.video_id)
            return
        if await self.delete_asset(ref):
            run.deleted.append(ref)
        else:
            run.failed.append(ref)

    def before_update(self, entity: ContentEntity, buffer: SnapshotBuffer) -> MetaSnapshot:
        return buffer.capture(entity)

    async def after_update(self, entity: ContentEntity, buffer: SnapshotBuffer) -> MetaDiff:
        snapshot = buffer.take(entity.entity_type, entity.entity_id)
        if snapshot is None:
            # No pairing means no trustworthy "before"; never guess a deletion.
            logger.info("video_cleanup_no_snapshot entity=%s:%s", entity.entity_type, entity.entity_id)
            return MetaDiff(ChangeKind.NO_CHANGE)
        return await self._apply_diff(entity, snapshot.asset, entity.asset)

    async def handle_update(
        self,
        entity_type: str,
        entity_id: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> MetaDiff:
        entity = ContentEntity(entity_type=entity_type, entity_id=entity_id, meta=dict(after or {}))
        return await self._apply_diff(entity, VideoAsset.from_meta(before), VideoAsset.from_meta(after))

    async def _apply_diff(
        self,
        entity: ContentEntity,
        old: VideoAsset | None,
        new: VideoAsset | None,
    ) -> MetaDiff:
        diff = classify_change(old, new)
        logger.info(
            "video_meta_diff entity=%s:%s kind=%s delete=%s",
            entity.entity_type,
            entity.entity_id,
            diff.kind.value,
            diff.delete.video_id if diff.delete else None,
        )
        if diff.delete is not None:
            await self._run_delete(diff.delete, DeletionRun())
        return diff

    async def before_delete(self, entity: ContentEntity, run: DeletionRun | None = None) -> DeletionRun:
        """Delete the remote videos of an entity about to be removed.

        Deleting a post walks its comments first, then the post's own video.
        """
        run = run or DeletionRun()
        if entity.entity_type == ENTITY_FEED:
            for comment in await self._metadata.list_children(entity.entity_id):
                asset = comment.asset
                if asset is not None:
                    await self._run_delete(asset.ref, run)
        asset = entity.asset
        if asset is not None:
            await self._run_delete(asset.ref, run)
        logger.info(
            "video_cleanup_completed entity=%s:%s deleted=%s failed=%s",
            entity.entity_type,
            entity.entity_id,
            len(run.deleted),
            len(run.failed),
        )
        return run

    async def handle_delete(self, entity_type: str, entity_id: str) -> DeletionRun:
        entity = await self._metadata.get(entity_type, entity_id)
        if entity is None:
            if entity_type != ENTITY_FEED:
                return DeletionRun()
            # Comments can outlive a post row that was never saved.
            entity = ContentEntity(entity_type, entity_id)
        return await self.before_delete(entity)
