from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from streamhub.core.errors import ConcurrentUpdateError
from streamhub.domain.video import ENTITY_COMMENT, ContentEntity, VideoAsset


@dataclass(frozen=True)
class StoredValue:
    value: Any
    version: int


class SettingsStore(Protocol):
    """Namespaced key/value settings with optimistic versioning."""

    async def get(self, namespace: str, key: str) -> StoredValue | None:
        ...

    async def put(
        self,
        namespace: str,
        key: str,
        value: Any,
        *,
        expected_version: int | None = None,
    ) -> int:
        """Write ``value`` and return the new version.

        ``expected_version`` of 0 requires the key to be absent; any other int
        must equal the stored version. ``None`` writes unconditionally.
        Raises ConcurrentUpdateError on mismatch.
        """
        ...

    async def delete(self, namespace: str, key: str) -> None:
        ...


class MetadataStore(Protocol):
    """Per-entity metadata owned by the host platform."""

    async def get(self, entity_type: str, entity_id: str) -> ContentEntity | None:
        ...

    async def save(self, entity: ContentEntity) -> None:
        ...

    async def update_asset(
        self,
        entity_type: str,
        entity_id: str,
        video_id: str,
        mutate: Callable[[VideoAsset], VideoAsset],
    ) -> tuple[VideoAsset, ContentEntity] | None:
        """Re-read an entity and apply ``mutate`` to its asset in one step.

        Only the media preview is rewritten, and only while the entity still
        carries ``video_id``. Returns the prior asset and the stored entity, or
        None when the entity is gone or now carries another video.
        """
        ...

    async def delete(self, entity_type: str, entity_id: str) -> None:
        ...

    async def find_by_video_id(self, video_id: str) -> list[ContentEntity]:
        ...

    async def list_children(self, post_id: str) -> list[ContentEntity]:
        ...


def _check_version(current: StoredValue | None, expected_version: int | None, where: str) -> None:
    if expected_version is None:
        return
    current_version = current.version if current is not None else 0
    if current_version != expected_version:
        raise ConcurrentUpdateError(
            f"{where} changed concurrently (expected v{expected_version}, found v{current_version})"
        )


class InMemorySettingsStore:
    def __init__(self) -> None:
        self._items: dict[tuple[str, str], StoredValue] = {}
        self._lock = asyncio.Lock()

    async def get(self, namespace: str, key: str) -> StoredValue | None:
        item = self._items.get((namespace, key))
        if item is None:
            return None
        return StoredValue(value=copy.deepcopy(item.value), version=item.version)

    async def put(
        self,
        namespace: str,
        key: str,
        value: Any,
        *,
        expected_version: int | None = None,
    ) -> int:
        async with self._lock:
            current = self._items.get((namespace, key))
            _check_version(current, expected_version, f"{namespace}.{key}")
            version = (current.version if current else 0) + 1
            self._items[(namespace, key)] = StoredValue(value=copy.deepcopy(value), version=version)
            return version

    async def delete(self, namespace: str, key: str) -> None:
        async with self._lock:
            self._items.pop((namespace, key), None)


class InMemoryMetadataStore:
    def __init__(self, entities: list[ContentEntity] | None = None) -> None:
        self._items: dict[tuple[str, str], ContentEntity] = {}
        for entity in entities or []:
            self._items[entity.key] = _clone(entity)

    async def get(self, entity_type: str, entity_id: str) -> ContentEntity | None:
        entity = self._items.get((entity_type, entity_id))
        return _clone(entity) if entity else None

    async def save(self, entity: ContentEntity) -> None:
        self._items[entity.key] = _clone(entity)

    async def update_asset(
        self,
        entity_type: str,
        entity_id: str,
        video_id: str,
        mutate: Callable[[VideoAsset], VideoAsset],
    ) -> tuple[VideoAsset, ContentEntity] | None:
        entity = self._items.get((entity_type, entity_id))
        asset = entity.asset if entity else None
        if asset is None or asset.video_id != video_id:
            return None
        updated = mutate(asset)
        if updated != asset:
            entity.meta = updated.with_meta(entity.meta)
        return asset, _clone(entity)

    async def delete(self, entity_type: str, entity_id: str) -> None:
        self._items.pop((entity_type, entity_id), None)

    async def find_by_video_id(self, video_id: str) -> list[ContentEntity]:
        matches = []
        for entity in self._items.values():
            asset = VideoAsset.from_meta(entity.meta)
            if asset is not None and asset.video_id == video_id:
                matches.append(_clone(entity))
        return matches

    async def list_children(self, post_id: str) -> list[ContentEntity]:
        return [
            _clone(entity)
            for entity in self._items.values()
            if entity.entity_type == ENTITY_COMMENT and entity.parent_id == post_id
        ]


def _clone(entity: ContentEntity) -> ContentEntity:
    return ContentEntity(
        entity_type=entity.entity_type,
        entity_id=entity.entity_id,
        meta=copy.deepcopy(entity.meta),
        parent_id=entity.parent_id,
    )
