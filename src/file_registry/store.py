"""
File record store.

Persists :class:`~file_registry.models.File` rows and enforces the record
invariants: unique object ids, store-assigned increasing file ids that are
never reused, and optimistic concurrency on targeted updates through the
``version`` column.

Every method opens its own session and commits or rolls back before it
returns. Predicates come from :mod:`file_registry.filters`.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, List, Mapping, Optional, Sequence, Tuple, Union, Any

from loguru import logger
from sqlalchemy import delete, func, select, true, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from .exceptions import ConflictError, NotFoundError
from .filters import build_state_filter
from .models import Counter, File, FILE_ID_COUNTER
from .schemas import FileInput, FileStateFilter, FileUpdate, UpdateOptions
from .validation import validate_file_input, validate_file_update

# Upper bound on ids bound into a single IN clause.
ID_CHUNK_SIZE = 500


def _chunks(ids: Sequence[int], size: int = ID_CHUNK_SIZE):
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


class FileStore:
    """Async store for file records backed by a SQLAlchemy session factory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def session(self, read_only: bool = False) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_maker() as session:
            try:
                yield session
                if not read_only:
                    await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ========================================================================
    # Identifier assignment
    # ========================================================================

    async def next_file_id(self) -> int:
        """
        Issue the next file id.

        The counter row is incremented and committed in its own transaction,
        so an id is consumed even when the insert that requested it fails.
        """
        increment = (
            update(Counter)
            .where(Counter.name == FILE_ID_COUNTER)
            .values(seq=Counter.seq + 1)
            .execution_options(synchronize_session=False)
        )
        for _ in range(2):
            async with self._session_maker() as session:
                result = await session.execute(increment)
                if result.rowcount == 1:
                    seq = await session.scalar(select(Counter.seq).where(Counter.name == FILE_ID_COUNTER))
                    await session.commit()
                    return seq

                # First id ever issued: start after any imported files.
                highest = await session.scalar(select(func.max(File.file_id)))
                seq = (highest or 0) + 1
                session.add(Counter(name=FILE_ID_COUNTER, seq=seq))
                try:
                    await session.commit()
                    logger.info(f"Initialized {FILE_ID_COUNTER} sequence at {seq}")
                    return seq
                except IntegrityError:
                    # Another writer created the counter row first
                    await session.rollback()
        raise ConflictError("Could not allocate a file id", counter=FILE_ID_COUNTER)

    # ========================================================================
    # Create & read
    # ========================================================================

    async def create(self, data: Union[FileInput, Mapping[str, Any]]) -> File:
        """Insert a new file. Raises ValidationError or ConflictError."""
        file_input = validate_file_input(data)
        file_id = await self.next_file_id()
        file = File(file_id=file_id, version=1, **file_input.model_dump())

        async with self._session_maker() as session:
            session.add(file)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.warning(f"Rejected duplicate file objectId={file_input.object_id}")
                raise ConflictError(
                    f"A file with objectId {file_input.object_id} already exists",
                    object_id=file_input.object_id,
                ) from e
            await session.refresh(file)

        logger.info(f"Created file {file.file_id} for objectId={file.object_id}")
        return file

    async def get_by_id(self, file_id: int) -> Optional[File]:
        async with self.session(read_only=True) as session:
            return await session.get(File, file_id)

    async def get_by_object_id(self, object_id: str) -> Optional[File]:
        async with self.session(read_only=True) as session:
            result = await session.execute(select(File).where(File.object_id == object_id))
            return result.scalar_one_or_none()

    async def find_by_filter(self, predicate: Optional[ColumnElement] = None) -> List[File]:
        """All files matching a predicate, in file id order."""
        async with self.session(read_only=True) as session:
            query = select(File).where(predicate if predicate is not None else true()).order_by(File.file_id)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def find_by_state_filter(self, state_filter: FileStateFilter) -> List[File]:
        return await self.find_by_filter(build_state_filter(state_filter))

    async def find_page(
        self,
        predicate: Optional[ColumnElement],
        limit: int,
        offset: int = 0,
    ) -> Tuple[List[File], int]:
        """One page of matching files plus the total match count."""
        predicate = predicate if predicate is not None else true()
        async with self.session(read_only=True) as session:
            total = await session.scalar(select(func.count()).select_from(File).where(predicate)) or 0
            query = select(File).where(predicate).order_by(File.file_id).limit(limit).offset(offset)
            result = await session.execute(query)
            return list(result.scalars().all()), total

    async def count(self, predicate: Optional[ColumnElement] = None) -> int:
        async with self.session(read_only=True) as session:
            query = select(func.count()).select_from(File).where(predicate if predicate is not None else true())
            return await session.scalar(query) or 0

    async def iterate(
        self,
        predicate: Optional[ColumnElement] = None,
        batch_size: int = 500,
    ) -> AsyncGenerator[File, None]:
        """Yield every matching file, loading them in file id order one batch at a time."""
        predicate = predicate if predicate is not None else true()
        last_id = 0
        while True:
            async with self.session(read_only=True) as session:
                query = (
                    select(File)
                    .where(predicate, File.file_id > last_id)
                    .order_by(File.file_id)
                    .limit(batch_size)
                )
                batch = list((await session.execute(query)).scalars().all())
            for file in batch:
                yield file
            if len(batch) < batch_size:
                return
            last_id = batch[-1].file_id

    async def distinct_programs(self, predicate: Optional[ColumnElement] = None) -> List[str]:
        async with self.session(read_only=True) as session:
            query = (
                select(File.program_id)
                .where(predicate if predicate is not None else true())
                .distinct()
                .order_by(File.program_id)
            )
            return list((await session.execute(query)).scalars().all())

    # ========================================================================
    # Updates
    # ========================================================================

    async def update_one(
        self,
        object_id: str,
        updates: Union[FileUpdate, Mapping[str, Any]],
        expected_version: Optional[int] = None,
    ) -> File:
        """
        Apply a partial update to the file with this object id.

        When ``expected_version`` is given the row is only written if its
        version still matches; the compare and the increment happen in the
        same UPDATE statement. Raises NotFoundError when no file has the
        object id and ConflictError when the version is stale.
        """
        values = validate_file_update(updates).to_values()

        stmt = update(File).where(File.object_id == object_id)
        if expected_version is not None:
            stmt = stmt.where(File.version == expected_version)
        stmt = stmt.values(**values, version=File.version + 1).execution_options(synchronize_session=False)

        async with self.session() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                current = await session.scalar(select(File.version).where(File.object_id == object_id))
                if current is None:
                    raise NotFoundError(f"No file found for objectId: {object_id}", object_id=object_id)
                logger.warning(
                    f"Version conflict updating objectId={object_id}: expected {expected_version}, found {current}"
                )
                raise ConflictError(
                    f"File {object_id} was modified concurrently (expected version {expected_version}, found {current})",
                    object_id=object_id,
                    expected_version=expected_version,
                    current_version=current,
                )
            await session.commit()

            query = select(File).where(File.object_id == object_id).execution_options(populate_existing=True)
            file = (await session.execute(query)).scalar_one()

        logger.debug(f"Updated objectId={object_id} to version {file.version}: {sorted(values)}")
        return file

    async def update_bulk(
        self,
        predicate: ColumnElement,
        updates: Union[FileUpdate, Mapping[str, Any]],
        options: Optional[UpdateOptions] = None,
    ) -> Optional[List[File]]:
        """
        Apply the same update to every file matching the predicate.

        The matched set is fixed when the statement runs. There is no version
        check; concurrent writers to the same rows are last-writer-wins.
        Returns the updated files when ``options.return_documents`` is set.
        """
        values = validate_file_update(updates).to_values()
        options = options or UpdateOptions()

        async with self.session() as session:
            ids = list((await session.execute(select(File.file_id).where(predicate).order_by(File.file_id))).scalars())
            for chunk in _chunks(ids):
                await session.execute(
                    update(File)
                    .where(File.file_id.in_(chunk))
                    .values(**values, version=File.version + 1)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()
            logger.info(f"Bulk updated {len(ids)} files: {sorted(values)}")

            if not options.return_documents:
                return None

            updated: List[File] = []
            for chunk in _chunks(ids):
                query = (
                    select(File)
                    .where(File.file_id.in_(chunk))
                    .order_by(File.file_id)
                    .execution_options(populate_existing=True)
                )
                updated.extend((await session.execute(query)).scalars().all())
            return updated

    # ========================================================================
    # Delete
    # ========================================================================

    async def delete_by_ids(self, ids: Optional[Iterable[int]]) -> int:
        """
        Delete files by numeric id and return how many were removed.

        An empty id collection deletes every file. Callers must guard this.
        """
        ids = list(ids or [])
        async with self.session() as session:
            if not ids:
                logger.warning("Deleting ALL file records")
                result = await session.execute(delete(File))
                return result.rowcount

            deleted = 0
            for chunk in _chunks(ids):
                result = await session.execute(delete(File).where(File.file_id.in_(chunk)))
                deleted += result.rowcount
            logger.info(f"Deleted {deleted} files")
            return deleted
