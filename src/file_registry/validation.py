"""
Validation for file records, kept independent of the database.

Each function either returns a validated value or raises
:class:`~file_registry.exceptions.ValidationError`.
"""

from typing import Any, Iterable, List, Mapping, Union

import pydantic

from .exceptions import ValidationError
from .models import ClinicalExemption, EmbargoStage, ReleaseState
from .schemas import FileInput, FileLabel, FileUpdate

# Columns that may not be cleared by an update.
NON_NULLABLE_UPDATE_FIELDS = ("status", "embargo_stage", "release_state")


def _wrap(exc: pydantic.ValidationError, what: str) -> ValidationError:
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    fields = ", ".join(e["field"] for e in errors)
    return ValidationError(f"Invalid {what}: {fields}", errors=errors)


def validate_file_input(data: Union[FileInput, Mapping[str, Any]]) -> FileInput:
    """Validate the fields of a new file."""
    if isinstance(data, FileInput):
        return data
    if "fileId" in data or "file_id" in data:
        raise ValidationError(
            "fileId is assigned by the store and cannot be supplied",
            errors=[{"field": "fileId", "message": "not allowed on create"}],
        )
    try:
        return FileInput.model_validate(data)
    except pydantic.ValidationError as e:
        raise _wrap(e, "file") from e


def validate_file_update(data: Union[FileUpdate, Mapping[str, Any]]) -> FileUpdate:
    """Validate a partial update, rejecting unrecognized fields and cleared required fields."""
    if isinstance(data, FileUpdate):
        update = data
    else:
        try:
            update = FileUpdate.model_validate(data)
        except pydantic.ValidationError as e:
            raise _wrap(e, "file update") from e

    cleared = [
        name for name in NON_NULLABLE_UPDATE_FIELDS
        if name in update.model_fields_set and getattr(update, name) is None
    ]
    if cleared:
        raise ValidationError(
            f"Required fields cannot be cleared: {', '.join(cleared)}",
            errors=[{"field": name, "message": "may not be null"} for name in cleared],
        )
    if not update.model_fields_set:
        raise ValidationError("No fields to update")
    return update


def validate_embargo_stage(value: Any) -> EmbargoStage:
    try:
        return EmbargoStage(value)
    except ValueError:
        raise ValidationError(f"Invalid embargo stage: {value}") from None


def validate_release_state(value: Any) -> ReleaseState:
    try:
        return ReleaseState(value)
    except ValueError:
        raise ValidationError(f"Invalid release state: {value}") from None


def validate_clinical_exemption(value: Any) -> ClinicalExemption:
    try:
        return ClinicalExemption(value)
    except ValueError:
        raise ValidationError(f"Invalid clinical exemption reason: {value}") from None


def normalize_label_key(key: str) -> str:
    return key.lower().strip()


def validate_labels(labels: Iterable[Union[FileLabel, Mapping[str, Any]]]) -> List[FileLabel]:
    """
    Validate labels submitted for a file.

    Keys are required, may not contain commas, and must be unique after
    normalization (lower case, surrounding whitespace removed).
    """
    labels = list(labels or [])
    if not labels:
        raise ValidationError("Missing the labels")

    parsed: List[FileLabel] = []
    for i, label in enumerate(labels):
        if isinstance(label, FileLabel):
            parsed.append(label)
            continue
        if not label.get("key"):
            raise ValidationError(f'Label at index {i} is missing the "key" attribute')
        try:
            parsed.append(FileLabel.model_validate({"key": label["key"], "value": label.get("value") or []}))
        except pydantic.ValidationError as e:
            raise _wrap(e, f"label at index {i}") from e

    seen = set()
    for i, label in enumerate(parsed):
        if "," in label.key:
            raise ValidationError(f"Label at index {i}: keys cannot have a comma in them")
        key = normalize_label_key(label.key)
        if key in seen:
            raise ValidationError(f"Label at index {i}: cannot submit duplicated label keys")
        seen.add(key)
    return parsed
