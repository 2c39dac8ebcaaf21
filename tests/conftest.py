from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from file_registry.db_utils import create_all
from file_registry.service import FileService
from file_registry.store import FileStore


def file_payload(object_id: str = "obj-1", **overrides: Any) -> Dict[str, Any]:
    """A valid create payload in the camelCase shape API clients send."""
    payload = {
        "objectId": object_id,
        "repoId": "collab",
        "programId": "PGM1",
        "donorId": "DO1",
        "analysisId": "AN1",
        "status": "PUBLISHED",
        "labels": [],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_file():
    return file_payload


@pytest_asyncio.fixture
async def session_maker() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_maker) -> FileStore:
    return FileStore(session_maker)


@pytest_asyncio.fixture
async def service(store) -> FileService:
    return FileService(store)
