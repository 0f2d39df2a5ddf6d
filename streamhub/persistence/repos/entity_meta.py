from __future__ import annotations

from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streamhub.domain.models import EntityMeta
from streamhub.domain.video import ENTITY_COMMENT, ContentEntity, VideoAsset


def _to_entity(row: EntityMeta) -> ContentEntity:
    return ContentEntity(
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        meta=dict(row.meta_json or {}),
        parent_id=row.parent_id,
    )


async def get_meta(session: AsyncSession, entity_type: str, entity_id: str) -> EntityMeta | None:
    result = await session.execute(
        select(EntityMeta).where(EntityMeta.entity_type == entity_type, EntityMeta.entity_id == entity_id)
    )
    return result.scalar_one_or_none()


async def upsert_meta(session: AsyncSession, entity: ContentEntity) -> EntityMeta:
    asset = VideoAsset.from_meta(entity.meta)
    row = await get_meta(session, entity.entity_type, entity.entity_id)
    if row is None:
        row = EntityMeta(entity_type=entity.entity_type, entity_id=entity.entity_id)
        session.add(row)
    row.parent_id = entity.parent_id
    row.meta_json = dict(entity.meta)
    row.video_id = asset.video_id if asset else None
    await session.flush()
    return row


async def update_meta_asset(
    session: AsyncSession,
    entity_type: str,
    entity_id: str,
    video_id: str,
    mutate: Callable[[VideoAsset], VideoAsset],
) -> tuple[VideoAsset, EntityMeta] | None:
    # Row stays locked until the caller commits.
    result = await session.execute(
        select(EntityMeta)
        .where(EntityMeta.entity_type == entity_type, EntityMeta.entity_id == entity_id)
        .with_for_update()
    )
    row = result.scalar_one_or_none()
    asset = VideoAsset.from_meta(row.meta_json) if row else None
    if row is None or asset is None or asset.video_id != video_id:
        return None
    updated = mutate(asset)
    if updated != asset:
        row.meta_json = updated.with_meta(row.meta_json)
        await session.flush()
    return asset, row


async def list_by_video_id(session: AsyncSession, video_id: str) -> list[EntityMeta]:
    result = await session.execute(
        select(EntityMeta)
        .where(EntityMeta.video_id == video_id)
        .order_by(EntityMeta.entity_type, EntityMeta.entity_id)
    )
    return list(result.scalars().all())


async def list_comments(session: AsyncSession, post_id: str) -> list[EntityMeta]:
    result = await session.execute(
        select(EntityMeta)
        .where(EntityMeta.entity_type == ENTITY_COMMENT, EntityMeta.parent_id == post_id)
        .order_by(EntityMeta.entity_id)
    )
    return list(result.scalars().all())


class SqlMetadataStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, entity_type: str, entity_id: str) -> ContentEntity | None:
        async with self._session_factory() as session:
            row = await get_meta(session, entity_type, entity_id)
            return _to_entity(row) if row else None

    async def save(self, entity: ContentEntity) -> None:
        async with self._session_factory() as session:
            await upsert_meta(session, entity)
            await session.commit()

    async def update_asset(
        self,
        entity_type: str,
        entity_id: str,
        video_id: str,
        mutate: Callable[[VideoAsset], VideoAsset],
    ) -> tuple[VideoAsset, ContentEntity] | None:
        async with self._session_factory() as session:
            applied = await update_meta_asset(session, entity_type, entity_id, video_id, mutate)
            outcome = (applied[0], _to_entity(applied[1])) if applied else None
            await session.commit()
            return outcome

    async def delete(self, entity_type: str, entity_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(EntityMeta).where(EntityMeta.entity_type == entity_type, EntityMeta.entity_id == entity_id)
            )
            await session.commit()

    async def find_by_video_id(self, video_id: str) -> list[ContentEntity]:
        async with self._session_factory() as session:
            return [_to_entity(row) for row in await list_by_video_id(session, video_id)]

    async def list_children(self, post_id: str) -> list[ContentEntity]:
        async with self._session_factory() as session:
            return [_to_entity(row) for row in await list_comments(session, post_id)]
