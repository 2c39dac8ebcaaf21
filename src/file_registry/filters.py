"""
Translation of filter values into SQLAlchemy predicates.

This is the only place that understands the filter grammar. The store only
ever receives plain conjunctive predicates built here.
"""

import re
from typing import List, Optional

from sqlalchemy import and_, true
from sqlalchemy.sql.elements import ColumnElement

from .exceptions import TranslationError
from .models import File
from .schemas import FileFilter, FileFilterProperties, FileStateFilter, QueryFilters

FILE_ID_PREFIX = "FL"

# Largest value the BigInteger file_id column can hold
MAX_FILE_ID = 2**63 - 1

_DIGITS = re.compile(r"[0-9]+")

# Filter property -> storage column
_PROPERTY_COLUMNS = {
    "analyses": File.analysis_id,
    "donors": File.donor_id,
    "programs": File.program_id,
    "object_ids": File.object_id,
}


# ============================================================================
# Identifier Translation
# ============================================================================

def to_numeric_id(file_id: str) -> int:
    """
    Convert a human-facing file id to the numeric id.

    ``"FL1234"`` becomes ``1234``. Raises TranslationError when the prefix is
    missing, the remainder is not a base-10 non-negative integer, or the
    value does not fit the file id column.
    """
    if not isinstance(file_id, str) or not file_id.startswith(FILE_ID_PREFIX):
        raise TranslationError(str(file_id), f"file id should start with {FILE_ID_PREFIX}, example: {FILE_ID_PREFIX}1234")
    digits = file_id[len(FILE_ID_PREFIX):]
    if not _DIGITS.fullmatch(digits):
        raise TranslationError(file_id, "not a valid numeric id")
    value = int(digits)
    if value > MAX_FILE_ID:
        raise TranslationError(file_id, "out of range")
    return value


def to_human_id(file_number: int) -> str:
    """Convert a numeric file id to its prefixed form."""
    return f"{FILE_ID_PREFIX}{file_number}"


# ============================================================================
# Predicate Builders
# ============================================================================

def _conjoin(conditions: List[ColumnElement]) -> ColumnElement:
    if not conditions:
        return true()
    return and_(*conditions)


def _property_conditions(props: Optional[FileFilterProperties], exclude: bool) -> List[ColumnElement]:
    conditions = []
    if props is None:
        return conditions

    for name, column in _PROPERTY_COLUMNS.items():
        values = getattr(props, name)
        if values:
            conditions.append(column.not_in(values) if exclude else column.in_(values))

    if props.file_ids:
        ids = [to_numeric_id(fid) for fid in props.file_ids]
        conditions.append(File.file_id.not_in(ids) if exclude else File.file_id.in_(ids))

    return conditions


def build_file_filter(file_filter: Optional[FileFilter]) -> ColumnElement:
    """
    Translate an include/exclude filter into a predicate.

    Every non-empty include property becomes ``column IN (...)`` and every
    non-empty exclude property becomes ``column NOT IN (...)``. All conditions
    are AND-ed, so a column named in both lists must be a member of the
    include set and outside the exclude set.
    """
    if file_filter is None:
        return true()
    conditions = _property_conditions(file_filter.include, exclude=False)
    conditions += _property_conditions(file_filter.exclude, exclude=True)
    return _conjoin(conditions)


def build_query_filters(filters: Optional[QueryFilters]) -> ColumnElement:
    """Translate the simple analysis/program/object filters into a predicate."""
    if filters is None:
        return true()
    conditions = []
    if filters.analysis_id:
        conditions.append(File.analysis_id.in_(filters.analysis_id))
    if filters.program_id:
        conditions.append(File.program_id.in_(filters.program_id))
    if filters.object_id:
        conditions.append(File.object_id.in_(filters.object_id))
    return _conjoin(conditions)


def build_state_filter(state_filter: Optional[FileStateFilter]) -> ColumnElement:
    """Match on embargo stage and/or release state."""
    if state_filter is None:
        return true()
    conditions = []
    if state_filter.embargo_stage is not None:
        conditions.append(File.embargo_stage == state_filter.embargo_stage)
    if state_filter.release_state is not None:
        conditions.append(File.release_state == state_filter.release_state)
    return _conjoin(conditions)
