"""
Database utilities for schema creation, seeding, and verification.

Uses async/await with asyncpg (PostgreSQL) or aiosqlite (SQLite).
"""

from typing import Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine
from loguru import logger

from .db import create_session_maker
from .models import Base, Counter, File, FILE_ID_COUNTER, EmbargoStage, ReleaseState


async def create_schema(database_url: str, drop_existing: bool = False, echo: bool = False) -> None:
    """
    Create all database tables from SQLAlchemy models.

    Args:
        database_url: Database connection string (converted to its async driver)
        drop_existing: If True, drop all existing tables first
        echo: If True, log all SQL statements
    """
    engine, _ = create_session_maker(database_url, echo=echo)
    try:
        await create_all(engine, drop_existing=drop_existing)
    finally:
        await engine.dispose()


async def create_all(engine: AsyncEngine, drop_existing: bool = False) -> None:
    """Create tables on an existing engine."""
    async with engine.begin() as conn:
        if drop_existing:
            logger.warning("Dropping all file registry tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def seed_initial_data(database_url: str) -> None:
    """
    Seed the file id sequence row.

    The sequence starts after the highest existing file id, so ids are never
    reissued when a database is seeded after files were imported.
    """
    engine, session_maker = create_session_maker(database_url)
    try:
        async with session_maker() as session:
            counter = await session.get(Counter, FILE_ID_COUNTER)
            if counter is None:
                highest = await session.scalar(select(func.max(File.file_id)))
                session.add(Counter(name=FILE_ID_COUNTER, seq=highest or 0))
                await session.commit()
                logger.info(f"Seeded {FILE_ID_COUNTER} sequence at {highest or 0}")
    finally:
        await engine.dispose()


async def get_database_stats(database_url: str) -> dict:
    """
    Get statistics about the database contents.

    Returns:
        Dictionary with the total file count, counts per embargo stage and
        release state, and the current file id sequence value
    """
    engine, session_maker = create_session_maker(database_url)
    try:
        async with session_maker() as session:
            stats = {"files": await session.scalar(select(func.count()).select_from(File)) or 0}

            stage_rows = await session.execute(
                select(File.embargo_stage, func.count()).group_by(File.embargo_stage)
            )
            by_stage = {stage.value: count for stage, count in stage_rows.all()}
            for stage in EmbargoStage:
                stats[f"embargo_stage.{stage.value}"] = by_stage.get(stage.value, 0)

            state_rows = await session.execute(
                select(File.release_state, func.count()).group_by(File.release_state)
            )
            by_state = {state.value: count for state, count in state_rows.all()}
            for state in ReleaseState:
                stats[f"release_state.{state.value}"] = by_state.get(state.value, 0)

            counter: Optional[Counter] = await session.get(Counter, FILE_ID_COUNTER)
            stats["file_id_sequence"] = counter.seq if counter else 0
    finally:
        await engine.dispose()
    return stats


async def verify_schema(database_url: str) -> bool:
    """
    Verify that the database schema matches the models.

    Returns:
        True if schema is valid, False otherwise
    """
    engine, session_maker = create_session_maker(database_url)
    try:
        async with session_maker() as session:
            # Try a simple query on each table
            await session.execute(select(File).limit(1))
            await session.execute(select(Counter).limit(1))
        return True
    except Exception as e:
        logger.error(f"Schema verification failed: {e}")
        return False
    finally:
        await engine.dispose()
