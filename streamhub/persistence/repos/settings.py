from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streamhub.core.errors import ConcurrentUpdateError
from streamhub.domain.models import SettingsEntry
from streamhub.persistence.stores import StoredValue


async def get_entry(session: AsyncSession, namespace: str, key: str) -> SettingsEntry | None:
    result = await session.execute(
        select(SettingsEntry).where(SettingsEntry.namespace == namespace, SettingsEntry.key == key)
    )
    return result.scalar_one_or_none()


async def put_entry(
    session: AsyncSession,
    namespace: str,
    key: str,
    value: Any,
    *,
    expected_version: int | None = None,
) -> int:
    # Conditional UPDATE keeps the version check and the write in one statement.
    if expected_version == 0:
        session.add(SettingsEntry(namespace=namespace, key=key, value_json=value, version=1))
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConcurrentUpdateError(f"{namespace}.{key} was created concurrently") from exc
        return 1

    current = await get_entry(session, namespace, key)
    if current is None:
        if expected_version is not None:
            raise ConcurrentUpdateError(f"{namespace}.{key} was deleted concurrently")
        session.add(SettingsEntry(namespace=namespace, key=key, value_json=value, version=1))
        await session.flush()
        return 1

    guard_version = expected_version if expected_version is not None else current.version
    result = await session.execute(
        update(SettingsEntry)
        .where(
            SettingsEntry.namespace == namespace,
            SettingsEntry.key == key,
            SettingsEntry.version == guard_version,
        )
        .values(value_json=value, version=guard_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentUpdateError(f"{namespace}.{key} changed concurrently")
    return guard_version + 1


class SqlSettingsStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, namespace: str, key: str) -> StoredValue | None:
        async with self._session_factory() as session:
            entry = await get_entry(session, namespace, key)
            if entry is None:
                return None
            return StoredValue(value=entry.value_json, version=entry.version)

    async def put(
        self,
        namespace: str,
        key: str,
        value: Any,
        *,
        expected_version: int | None = None,
    ) -> int:
        async with self._session_factory() as session:
            try:
                version = await put_entry(
                    session, namespace, key, value, expected_version=expected_version
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            return version

    async def delete(self, namespace: str, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(SettingsEntry).where(SettingsEntry.namespace == namespace, SettingsEntry.key == key)
            )
            await session.commit()
