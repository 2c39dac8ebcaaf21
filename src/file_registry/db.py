"""
Database configuration and engine construction.

Connection settings come from the environment (optionally a ``.env`` file):

- ``POSTGRES_URI``: database connection string
- ``FILE_REGISTRY_ECHO_SQL``: log every SQL statement when set to ``true``
"""
import os
from typing import Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("POSTGRES_URI", "postgresql://postgres@localhost:5432/file_registry")
ECHO_SQL = os.getenv("FILE_REGISTRY_ECHO_SQL", "false").lower() == "true"


def _convert_to_async_url(database_url: str) -> str:
    """Convert a sync database URL to its async driver form (asyncpg or aiosqlite)."""
    if database_url.startswith("postgresql+asyncpg://") or database_url.startswith("sqlite+aiosqlite://"):
        return database_url
    elif database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    else:
        raise ValueError(f"Unsupported database URL scheme: {database_url}")


def create_session_maker(
    database_url: Optional[str] = None,
    echo: Optional[bool] = None,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create an async engine and a session factory bound to it.

    The caller owns the engine and must ``await engine.dispose()`` when done.
    """
    async_url = _convert_to_async_url(database_url or DATABASE_URL)
    engine = create_async_engine(async_url, echo=ECHO_SQL if echo is None else echo)
    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
