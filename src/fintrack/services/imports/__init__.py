"""Import pipeline for uploaded CSV and Excel bank exports."""

from .history import ImportHistoryStore
from .service import (
    ImportService,
    ImportOptions,
    ImportResult,
    UploadedFile,
    DEFAULT_INCOME_CATEGORY,
    DEFAULT_EXPENSE_CATEGORY,
)

__all__ = [
    "ImportHistoryStore",
    "ImportService",
    "ImportOptions",
    "ImportResult",
    "UploadedFile",
    "DEFAULT_INCOME_CATEGORY",
    "DEFAULT_EXPENSE_CATEGORY",
]
