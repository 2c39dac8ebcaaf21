"""file_registry package.

Expose the store, service and CLI at package level:
`from file_registry import FileStore, FileService, cli`.
"""
from .cli import cli  # re-export the click CLI group at package level
from .exceptions import ConflictError, FileRegistryError, NotFoundError, TranslationError, ValidationError
from .filters import build_file_filter, build_query_filters, build_state_filter, to_human_id, to_numeric_id
from .models import ClinicalExemption, EmbargoStage, ReleaseState
from .service import FileService
from .store import FileStore

__all__ = [
    "cli",
    "FileStore",
    "FileService",
    "ClinicalExemption",
    "EmbargoStage",
    "ReleaseState",
    "build_file_filter",
    "build_query_filters",
    "build_state_filter",
    "to_human_id",
    "to_numeric_id",
    "FileRegistryError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "TranslationError",
]
