"""
Exception types raised by the file registry core.

Every error is returned to the immediate caller; none of them is fatal to the
process. Each carries a machine-readable error code and a details mapping so
that an API layer can serialize it with ``to_dict()``.
"""

from typing import Any, Dict, Optional


class FileRegistryError(Exception):
    """Base exception for all file registry errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(FileRegistryError):
    """A required attribute is missing or an enumerated attribute is out of range."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(
            message,
            error_code="VALIDATION_ERROR",
            details={"errors": errors or []},
        )
        self.errors = errors or []


class ConflictError(FileRegistryError):
    """Uniqueness violation on create, or a stale version on a targeted update."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, error_code="CONFLICT", details=details)


class NotFoundError(FileRegistryError):
    """No record matches a single-record lookup or targeted update."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, error_code="NOT_FOUND", details=details)


class TranslationError(FileRegistryError):
    """A human-facing file id does not parse to a valid numeric id."""

    def __init__(self, value: str, reason: str):
        super().__init__(
            f"Invalid file id '{value}': {reason}",
            error_code="INVALID_FILE_ID",
            details={"value": value},
        )
        self.value = value


__all__ = [
    "FileRegistryError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "TranslationError",
]
