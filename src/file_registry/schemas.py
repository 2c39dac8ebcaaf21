"""Pydantic schemas for file registry inputs, filters and outputs.

Every schema accepts both the camelCase names used by API payloads
(``objectId``) and the snake_case attribute names (``object_id``).
"""
from datetime import datetime
from typing import Annotated, Optional, List
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel

from .models import ClinicalExemption, EmbargoStage, ReleaseState


RequiredStr = Annotated[str, Field(min_length=1)]


class CamelModel(BaseModel):
    """Base schema accepting camelCase aliases and rejecting unknown fields."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# ============================================================================
# File Schemas
# ============================================================================

class FileLabel(CamelModel):
    """A key with an ordered list of values."""
    key: RequiredStr
    value: List[str] = Field(default_factory=list)


class FileInput(CamelModel):
    """Caller-supplied fields for a new file record. The file id is never supplied."""

    object_id: RequiredStr
    repo_id: RequiredStr
    program_id: RequiredStr
    donor_id: RequiredStr
    analysis_id: RequiredStr
    status: RequiredStr

    first_published: Optional[datetime] = None

    embargo_stage: EmbargoStage = EmbargoStage.PROGRAM_ONLY
    release_state: ReleaseState = ReleaseState.RESTRICTED

    admin_promote: Optional[EmbargoStage] = None
    admin_demote: Optional[EmbargoStage] = None
    admin_hold: Optional[bool] = None
    clinical_exemption: Optional[ClinicalExemption] = None

    labels: List[FileLabel]


class FileUpdate(CamelModel):
    """Recognized fields for partial updates. Only fields explicitly set are written."""

    status: Optional[RequiredStr] = None
    first_published: Optional[datetime] = None
    embargo_stage: Optional[EmbargoStage] = None
    release_state: Optional[ReleaseState] = None
    admin_promote: Optional[EmbargoStage] = None
    admin_demote: Optional[EmbargoStage] = None
    admin_hold: Optional[bool] = None
    clinical_exemption: Optional[ClinicalExemption] = None
    labels: Optional[List[FileLabel]] = None

    def to_values(self) -> dict:
        """Column values for the fields that were explicitly set."""
        values = self.model_dump(exclude_unset=True)
        if "labels" in values and values["labels"] is None:
            values["labels"] = []
        return values


class FileSchema(CamelModel):
    """File record as presented to clients, with the prefixed file id."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    file_id: str = Field(..., description="Human-facing id, e.g. FL1234")
    file_number: int = Field(..., description="Numeric file id")
    object_id: str
    repo_id: str

    program_id: str
    donor_id: str
    analysis_id: str

    status: str
    first_published: Optional[datetime] = None

    embargo_stage: EmbargoStage
    release_state: ReleaseState

    admin_promote: Optional[EmbargoStage] = None
    admin_demote: Optional[EmbargoStage] = None
    admin_hold: Optional[bool] = None
    clinical_exemption: Optional[ClinicalExemption] = None

    labels: List[FileLabel] = Field(default_factory=list)

    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# Filter Schemas
# ============================================================================

class FileFilterProperties(CamelModel):
    """Attribute constraints; an absent or empty list imposes no constraint."""
    analyses: Optional[List[str]] = None
    donors: Optional[List[str]] = None
    programs: Optional[List[str]] = None
    object_ids: Optional[List[str]] = None
    file_ids: Optional[List[str]] = Field(None, description="Human-facing ids, e.g. FL1234")


class FileFilter(CamelModel):
    """Allow-list and deny-list constraints, conjoined when translated."""
    include: Optional[FileFilterProperties] = None
    exclude: Optional[FileFilterProperties] = None


class QueryFilters(CamelModel):
    """Simple set-membership filters without include/exclude."""
    analysis_id: Optional[List[str]] = None
    program_id: Optional[List[str]] = None
    object_id: Optional[List[str]] = None


class FileStateFilter(CamelModel):
    """Match on lifecycle state; an absent value is unconstrained."""
    embargo_stage: Optional[EmbargoStage] = None
    release_state: Optional[ReleaseState] = None


class UpdateOptions(CamelModel):
    """Options for bulk updates."""
    return_documents: bool = False


# ============================================================================
# Response Schemas
# ============================================================================

class PaginationMeta(BaseModel):
    """Pagination metadata."""
    total: int = Field(..., description="Total number of files matching filters")
    limit: int = Field(..., description="Maximum files returned per page")
    page: int = Field(..., description="Current page, starting at 1")
    total_pages: int = Field(..., description="Number of pages available")
    count: int = Field(..., description="Number of files in this response")
    has_next: bool = Field(..., description="Whether more files are available")
    has_prev: bool = Field(..., description="Whether previous files exist")


class PaginatedFilesResponse(BaseModel):
    """Paginated list of files."""
    meta: PaginationMeta
    data: List[FileSchema]
