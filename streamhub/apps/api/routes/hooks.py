from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from streamhub.apps.api.deps import get_cleanup_service, get_metadata_store, require_admin
from streamhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from streamhub.apps.api.response import success_response
from streamhub.domain.video import ContentEntity, VideoAsset
from streamhub.persistence.stores import MetadataStore
from streamhub.services.cleanup import VideoCleanupService
from streamhub.services.status import accept_incoming_asset


router = APIRouter(
    prefix="/hooks",
    tags=["hooks"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)

EntityType = Literal["feed", "comment"]


class EntityUpdatedRequest(BaseModel):
    entity_type: EntityType
    entity_id: str
    # Post id for comments.
    parent_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class EntityDeletedRequest(BaseModel):
    entity_type: EntityType
    entity_id: str


async def _known_asset(metadata: MetadataStore, entity_type: str, entity_id: str, incoming: VideoAsset | None) -> VideoAsset | None:
    current = await metadata.get(entity_type, entity_id)
    if current is not None and current.asset is not None:
        if incoming is None or current.asset.ref == incoming.ref:
            return current.asset
    if incoming is None:
        return None
    for entity in await metadata.find_by_video_id(incoming.video_id):
        if entity.asset is not None and entity.asset.ref == incoming.ref:
            return entity.asset
    return None


@router.post("/entity-updated")
async def entity_updated(
    payload: EntityUpdatedRequest,
    request: Request,
    metadata: MetadataStore = Depends(get_metadata_store),
    cleanup: VideoCleanupService = Depends(get_cleanup_service),
) -> dict:
    """Host notification carrying both sides of an edit (or a create, with no ``before``)."""
    diff = await cleanup.handle_update(payload.entity_type, payload.entity_id, payload.before, payload.after)

    after_meta = dict(payload.after or {})
    incoming = VideoAsset.from_meta(after_meta)
    stored = await _known_asset(metadata, payload.entity_type, payload.entity_id, incoming)
    accepted = accept_incoming_asset(stored, incoming)
    if accepted is not None:
        after_meta = accepted.with_meta(after_meta)
    await metadata.save(
        ContentEntity(
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            meta=after_meta,
            parent_id=payload.parent_id,
        )
    )
    return success_response(
        request=request,
        data={
            "change": diff.kind.value,
            "deleted_video_id": diff.delete.video_id if diff.delete else None,
            "status": accepted.status.value if accepted else None,
        },
    )


@router.post("/entity-deleted")
async def entity_deleted(
    payload: EntityDeletedRequest,
    request: Request,
    metadata: MetadataStore = Depends(get_metadata_store),
    cleanup: VideoCleanupService = Depends(get_cleanup_service),
) -> dict:
    run = await cleanup.handle_delete(payload.entity_type, payload.entity_id)
    if payload.entity_type == "feed":
        for comment in await metadata.list_children(payload.entity_id):
            await metadata.delete(comment.entity_type, comment.entity_id)
    await metadata.delete(payload.entity_type, payload.entity_id)
    return success_response(request=request, data=run.as_dict())
