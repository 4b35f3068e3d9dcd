from __future__ import annotations

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from timemachine.db.models import Base
from timemachine.tests.factories import FakeClock, MemoryKeyValueStore, RecordingSleep


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


def _memory_db_url() -> str:
    return f"sqlite+aiosqlite:///file:timemachine_{uuid.uuid4().hex}?mode=memory&cache=shared"


@pytest_asyncio.fixture
async def session_factory() -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(_memory_db_url(), future=True, connect_args={"uri": True})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()
