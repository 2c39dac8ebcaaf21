"""
File service: human-facing operations over the file record store.

Accepts and returns file ids in their prefixed form (``FL1234``) and converts
stored rows into :class:`~file_registry.schemas.FileSchema`.
"""

import math
from typing import AsyncGenerator, Iterable, List, Mapping, Optional, Union, Any

from loguru import logger

from .embargo import recalculate_release_properties
from .exceptions import ConflictError, NotFoundError, ValidationError
from .filters import build_file_filter, to_human_id, to_numeric_id
from .models import ClinicalExemption, EmbargoStage, File, ReleaseState
from .schemas import (
    FileFilter,
    FileFilterProperties,
    FileInput,
    FileLabel,
    FileSchema,
    FileStateFilter,
    PaginatedFilesResponse,
    PaginationMeta,
    UpdateOptions,
)
from .store import FileStore
from .validation import normalize_label_key, validate_clinical_exemption, validate_file_input, validate_labels


def to_schema(file: File) -> FileSchema:
    """Present a stored file with its prefixed id."""
    return FileSchema(
        file_id=to_human_id(file.file_id),
        file_number=file.file_id,
        object_id=file.object_id,
        repo_id=file.repo_id,
        program_id=file.program_id,
        donor_id=file.donor_id,
        analysis_id=file.analysis_id,
        status=file.status,
        first_published=file.first_published,
        embargo_stage=file.embargo_stage,
        release_state=file.release_state,
        admin_promote=file.admin_promote,
        admin_demote=file.admin_demote,
        admin_hold=file.admin_hold,
        clinical_exemption=file.clinical_exemption,
        labels=file.labels or [],
        version=file.version,
        created_at=file.created_at,
        updated_at=file.updated_at,
    )


class FileService:
    """Operations on file records addressed by prefixed file id or object id."""

    def __init__(self, store: FileStore):
        self.store = store

    # ========================================================================
    # Lookups
    # ========================================================================

    async def _get_file(self, file_id: str) -> File:
        file = await self.store.get_by_id(to_numeric_id(file_id))
        if file is None:
            raise NotFoundError(f"No file found for id: {file_id}", file_id=file_id)
        return file

    async def get_file_by_id(self, file_id: str) -> FileSchema:
        return to_schema(await self._get_file(file_id))

    async def get_file_by_object_id(self, object_id: str) -> FileSchema:
        file = await self.store.get_by_object_id(object_id)
        if file is None:
            raise NotFoundError(f"No file found for objectId: {object_id}", object_id=object_id)
        return to_schema(file)

    async def get_files(self, file_filter: Optional[FileFilter] = None) -> List[FileSchema]:
        files = await self.store.find_by_filter(build_file_filter(file_filter))
        return [to_schema(f) for f in files]

    async def get_files_by_analysis_id(self, analysis_id: str) -> List[FileSchema]:
        return await self.get_files(FileFilter(include=FileFilterProperties(analyses=[analysis_id])))

    async def get_files_by_object_ids(self, object_ids: List[str]) -> List[FileSchema]:
        if not object_ids:
            return []
        return await self.get_files(FileFilter(include=FileFilterProperties(object_ids=object_ids)))

    async def get_files_by_state(self, state_filter: FileStateFilter) -> List[FileSchema]:
        return [to_schema(f) for f in await self.store.find_by_state_filter(state_filter)]

    async def get_programs(self, file_filter: Optional[FileFilter] = None) -> List[str]:
        return await self.store.distinct_programs(build_file_filter(file_filter))

    async def count_files(self, file_filter: Optional[FileFilter] = None) -> int:
        return await self.store.count(build_file_filter(file_filter))

    async def iterate_files(self, file_filter: Optional[FileFilter] = None) -> AsyncGenerator[FileSchema, None]:
        """Stream every file matching a filter."""
        async for file in self.store.iterate(build_file_filter(file_filter)):
            yield to_schema(file)

    async def get_paginated_files(
        self,
        page: int = 1,
        limit: int = 20,
        properties: Optional[FileFilterProperties] = None,
    ) -> PaginatedFilesResponse:
        """One page of files matching the given include properties."""
        page = max(page, 1)
        limit = max(limit, 1)
        predicate = build_file_filter(FileFilter(include=properties))
        files, total = await self.store.find_page(predicate, limit=limit, offset=(page - 1) * limit)
        total_pages = math.ceil(total / limit) if total else 0
        meta = PaginationMeta(
            total=total,
            limit=limit,
            page=page,
            total_pages=total_pages,
            count=len(files),
            has_next=page < total_pages,
            has_prev=page > 1,
        )
        return PaginatedFilesResponse(meta=meta, data=[to_schema(f) for f in files])

    # ========================================================================
    # Create
    # ========================================================================

    async def create_file(self, data: Union[FileInput, Mapping[str, Any]]) -> FileSchema:
        return to_schema(await self.store.create(data))

    async def get_or_create_file(self, data: Union[FileInput, Mapping[str, Any]]) -> FileSchema:
        """Return the file for this object id, creating it with no labels if absent."""
        if isinstance(data, Mapping):
            data = {**data, "labels": []}
        else:
            data = data.model_copy(update={"labels": []})
        file_input = validate_file_input(data)

        existing = await self.store.get_by_object_id(file_input.object_id)
        if existing is not None:
            return to_schema(existing)
        try:
            return to_schema(await self.store.create(file_input))
        except ConflictError:
            # Created by a concurrent caller since the lookup above
            existing = await self.store.get_by_object_id(file_input.object_id)
            if existing is None:
                raise
            return to_schema(existing)

    # ========================================================================
    # Targeted updates
    # ========================================================================

    async def update_file_release_properties(
        self,
        object_id: str,
        embargo_stage: Optional[EmbargoStage] = None,
        release_state: Optional[ReleaseState] = None,
    ) -> FileSchema:
        updates = {}
        if embargo_stage is not None:
            updates["embargo_stage"] = embargo_stage
        if release_state is not None:
            updates["release_state"] = release_state
        logger.debug(f"Updating file embargo and release properties: {object_id} {updates}")
        return to_schema(await self.store.update_one(object_id, updates))

    async def update_file_admin_controls(self, object_id: str, **controls: Any) -> FileSchema:
        """Set or clear ``admin_hold``, ``admin_promote`` and ``admin_demote``."""
        allowed = {"admin_hold", "admin_promote", "admin_demote"}
        unknown = set(controls) - allowed
        if unknown:
            raise ValidationError(f"Unknown admin controls: {', '.join(sorted(unknown))}")
        return to_schema(await self.store.update_one(object_id, controls))

    async def update_file_publish_status(self, object_id: str, **fields: Any) -> FileSchema:
        """Set ``status`` and/or ``first_published``."""
        allowed = {"status", "first_published"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown publish fields: {', '.join(sorted(unknown))}")
        return to_schema(await self.store.update_one(object_id, fields))

    async def recalculate_file_state(self, file: FileSchema) -> FileSchema:
        """Bring a file's embargo stage and release state in line with its publish date."""
        updates = recalculate_release_properties(file)
        if not updates:
            return file
        return to_schema(await self.store.update_one(file.object_id, updates, expected_version=file.version))

    # ========================================================================
    # Bulk updates
    # ========================================================================

    async def admin_promote(
        self,
        file_filter: FileFilter,
        stage: EmbargoStage,
        options: Optional[UpdateOptions] = None,
    ) -> Optional[List[FileSchema]]:
        updated = await self.store.update_bulk(build_file_filter(file_filter), {"admin_promote": stage}, options)
        return None if updated is None else [to_schema(f) for f in updated]

    async def admin_demote(
        self,
        file_filter: FileFilter,
        stage: EmbargoStage,
        options: Optional[UpdateOptions] = None,
    ) -> Optional[List[FileSchema]]:
        updated = await self.store.update_bulk(build_file_filter(file_filter), {"admin_demote": stage}, options)
        return None if updated is None else [to_schema(f) for f in updated]

    async def apply_clinical_exemption(
        self,
        file_filter: FileFilter,
        exemption: Union[ClinicalExemption, str],
        options: Optional[UpdateOptions] = None,
    ) -> Optional[List[FileSchema]]:
        """Mark every matching file as exempt from clinical data requirements."""
        exemption = validate_clinical_exemption(exemption)
        updated = await self.store.update_bulk(
            build_file_filter(file_filter), {"clinical_exemption": exemption}, options
        )
        return None if updated is None else [to_schema(f) for f in updated]

    async def remove_clinical_exemption(
        self,
        file_filter: FileFilter,
        options: Optional[UpdateOptions] = None,
    ) -> Optional[List[FileSchema]]:
        updated = await self.store.update_bulk(build_file_filter(file_filter), {"clinical_exemption": None}, options)
        return None if updated is None else [to_schema(f) for f in updated]

    # ========================================================================
    # Delete
    # ========================================================================

    async def delete_by_ids(self, file_ids: Iterable[str]) -> int:
        """Delete files by prefixed id. An empty list deletes every file."""
        return await self.store.delete_by_ids([to_numeric_id(fid) for fid in file_ids])

    # ========================================================================
    # Labels
    # ========================================================================

    async def add_or_update_file_labels(
        self,
        file_id: str,
        labels: Iterable[Union[FileLabel, Mapping[str, Any]]],
    ) -> FileSchema:
        """
        Add labels to a file, replacing the value of any existing label with
        the same normalized key. Raises ConflictError if the file changed
        since it was read.
        """
        new_labels = validate_labels(labels)
        file = await self._get_file(file_id)

        current = [FileLabel.model_validate(label) for label in file.labels or []]
        for label in new_labels:
            key = normalize_label_key(label.key)
            existing = next((l for l in current if normalize_label_key(l.key) == key), None)
            if existing is None:
                current.append(FileLabel(key=key, value=label.value))
            else:
                existing.value = label.value

        updated = await self.store.update_one(
            file.object_id,
            {"labels": [label.model_dump() for label in current]},
            expected_version=file.version,
        )
        return to_schema(updated)

    async def remove_labels(self, file_id: str, keys: Iterable[str]) -> FileSchema:
        """Remove labels whose key is one of ``keys``."""
        keys = set(keys)
        file = await self._get_file(file_id)
        remaining = [label for label in file.labels or [] if label.get("key") not in keys]
        updated = await self.store.update_one(
            file.object_id,
            {"labels": remaining},
            expected_version=file.version,
        )
        return to_schema(updated)
