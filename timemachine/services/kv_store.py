"""Persisted key/value substrate backing credentials, cache entries and settings."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timemachine.db.models import KeyValueEntry

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal get/set/delete/list contract over JSON-serialisable values."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class SqlKeyValueStore:
    """Key/value store persisted in the ``kv_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._session_factory() as session:
            raw = await session.scalar(select(KeyValueEntry.value).where(KeyValueEntry.key == key))
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable value", extra={"key": key})
            return default

    async def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        async with self._session_factory() as session:
            entry = await session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=encoded))
            else:
                entry.value = encoded
            await session.commit()

    async def delete(self, key: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            await session.commit()
        return bool(result.rowcount)

    async def keys(self, prefix: str = "") -> list[str]:
        stmt = select(KeyValueEntry.key).order_by(KeyValueEntry.key)
        if prefix:
            stmt = stmt.where(KeyValueEntry.key.startswith(prefix, autoescape=True))
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return list(result)
