"""
Tabular sources - delimited text and spreadsheet workbooks behind one interface.

The file type is decided once, here, from the extension and mimetype.
"""

from pathlib import PurePath
from typing import Optional

from fintrack.core.exceptions import MalformedSourceError
from fintrack.parsers.tabular.base import (
    TabularSource,
    RawRow,
    DEFAULT_PREVIEW_LIMIT,
    HEADER_SCAN_ROWS,
    make_header_labels,
)
from fintrack.parsers.tabular.delimited import DelimitedTextSource
from fintrack.parsers.tabular.workbook import WorkbookSource, normalize_cell

DELIMITED_EXTENSIONS = {".csv", ".tsv", ".txt"}
WORKBOOK_EXTENSIONS = {".xlsx", ".xlsm", ".xls"}

DELIMITED_MIMETYPES = {"text/csv", "text/tab-separated-values", "application/csv", "text/plain"}
WORKBOOK_MIMETYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel.sheet.macroenabled.12",
}


def detect_file_type(file_name: str, mimetype: Optional[str] = None) -> str:
    """
    Classify an upload as 'csv' or 'excel'.

    The extension decides; the mimetype is consulted only when the extension
    is not recognized.

    Raises:
        MalformedSourceError: If neither identifies a supported type
    """
    suffix = PurePath(file_name or "").suffix.lower()
    if suffix in DELIMITED_EXTENSIONS:
        return "csv"
    if suffix in WORKBOOK_EXTENSIONS:
        return "excel"

    mime = (mimetype or "").split(";")[0].strip().lower()
    if mime in DELIMITED_MIMETYPES:
        return "csv"
    if mime in WORKBOOK_MIMETYPES:
        return "excel"

    raise MalformedSourceError(
        f"Unsupported file type: {file_name}. Only CSV and Excel files are allowed."
    )


def open_tabular_source(
    file_name: str,
    content: bytes,
    mimetype: Optional[str] = None,
    encoding: str = "utf-8",
) -> TabularSource:
    """
    Build the tabular source for an uploaded file.

    Args:
        file_name: Original file name
        content: Raw file bytes
        mimetype: Declared content type, if any
        encoding: Text encoding for delimited files

    Returns:
        DelimitedTextSource or WorkbookSource
    """
    if detect_file_type(file_name, mimetype) == "csv":
        return DelimitedTextSource(content, file_name=file_name, encoding=encoding)
    return WorkbookSource(content, file_name=file_name, mimetype=mimetype)


__all__ = [
    "TabularSource",
    "RawRow",
    "DelimitedTextSource",
    "WorkbookSource",
    "DEFAULT_PREVIEW_LIMIT",
    "HEADER_SCAN_ROWS",
    "detect_file_type",
    "open_tabular_source",
    "make_header_labels",
    "normalize_cell",
]
