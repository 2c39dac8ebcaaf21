"""
SQLAlchemy ORM models for the file registry database.

This module defines the ``files`` table, which holds one row per tracked file
object together with its controlled-access lifecycle, and the ``counters``
table that backs the store-wide file id sequence.
"""

import enum
from datetime import datetime
from typing import List, Optional
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# ============================================================================
# Lifecycle Enumerations
# ============================================================================

class EmbargoStage(str, enum.Enum):
    """Audience tier allowed to view a file, from most to least restricted."""
    PROGRAM_ONLY = "PROGRAM_ONLY"
    MEMBER_ACCESS = "MEMBER_ACCESS"
    ASSOCIATE_ACCESS = "ASSOCIATE_ACCESS"
    PUBLIC = "PUBLIC"

    @property
    def rank(self) -> int:
        return EMBARGO_STAGE_ORDER.index(self)


EMBARGO_STAGE_ORDER = [
    EmbargoStage.PROGRAM_ONLY,
    EmbargoStage.MEMBER_ACCESS,
    EmbargoStage.ASSOCIATE_ACCESS,
    EmbargoStage.PUBLIC,
]


class ReleaseState(str, enum.Enum):
    """Publication lifecycle position of a file."""
    RESTRICTED = "RESTRICTED"
    QUEUED = "QUEUED"
    PUBLIC = "PUBLIC"


class ClinicalExemption(str, enum.Enum):
    """Reason a file is exempt from clinical data requirements."""
    LEGACY = "LEGACY"
    EARLY_RELEASE = "EARLY_RELEASE"
    ADMIN = "ADMIN"


def _stage_column(name: str) -> Enum:
    # Stored as the string tag with a CHECK constraint, no native enum type.
    return Enum(
        EmbargoStage,
        name=name,
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
        length=32,
    )


LabelList = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# Files
# ============================================================================

class File(Base):
    """A tracked file object and its access-control state."""
    __tablename__ = "files"

    file_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    object_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    repo_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Provenance
    program_id: Mapped[str] = mapped_column(String(255), nullable=False)
    donor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    analysis_id: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(100), nullable=False)
    first_published: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Access lifecycle
    embargo_stage: Mapped[EmbargoStage] = mapped_column(
        _stage_column("ck_files_embargo_stage"),
        nullable=False,
        default=EmbargoStage.PROGRAM_ONLY,
        server_default=EmbargoStage.PROGRAM_ONLY.value,
    )
    release_state: Mapped[ReleaseState] = mapped_column(
        Enum(
            ReleaseState,
            name="ck_files_release_state",
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            length=32,
        ),
        nullable=False,
        default=ReleaseState.RESTRICTED,
        server_default=ReleaseState.RESTRICTED.value,
    )

    # Administrative overrides
    admin_promote: Mapped[Optional[EmbargoStage]] = mapped_column(_stage_column("ck_files_admin_promote"))
    admin_demote: Mapped[Optional[EmbargoStage]] = mapped_column(_stage_column("ck_files_admin_demote"))
    admin_hold: Mapped[Optional[bool]] = mapped_column(Boolean)
    clinical_exemption: Mapped[Optional[ClinicalExemption]] = mapped_column(
        Enum(
            ClinicalExemption,
            name="ck_files_clinical_exemption",
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            length=32,
        )
    )

    labels: Mapped[List[dict]] = mapped_column(LabelList, nullable=False, default=list)

    # Optimistic concurrency token, compared and incremented on every update
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    # Audit fields
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_files_program", "program_id"),
        Index("idx_files_donor", "donor_id"),
        Index("idx_files_analysis", "analysis_id"),
        Index("idx_files_state", "embargo_stage", "release_state"),
    )

    def __repr__(self) -> str:
        return f"<File(file_id={self.file_id}, object_id='{self.object_id}', version={self.version})>"


# ============================================================================
# Sequences
# ============================================================================

class Counter(Base):
    """Named monotonically increasing sequences."""
    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")

    def __repr__(self) -> str:
        return f"<Counter(name='{self.name}', seq={self.seq})>"


FILE_ID_COUNTER = "file_id"
