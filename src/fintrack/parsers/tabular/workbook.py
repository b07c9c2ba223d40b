"""
Spreadsheet workbook source (.xlsx, .xlsm, .xls).

Sheets are read with pandas: openpyxl for Office Open XML workbooks and
xlrd for legacy .xls files.
"""

import io
import logging
import math
from datetime import date, datetime
from typing import Any, Iterator, List, Optional

import pandas as pd

from fintrack.core.exceptions import MalformedSourceError
from fintrack.parsers.tabular.base import TabularSource

logger = logging.getLogger(__name__)

LEGACY_EXTENSIONS = (".xls",)
LEGACY_MIMETYPES = ("application/vnd.ms-excel",)


def normalize_cell(value: Any) -> Any:
    """
    Normalize one workbook cell.

    Empty and NaN cells become "", strings are stripped, pandas timestamps
    become datetimes and numpy scalars become Python numbers.
    """
    if value is None:
        return ""
    if isinstance(value, pd.Timestamp):
        return "" if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (datetime, date)):
        return value
    if hasattr(value, "item"):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return ""
    return value


class WorkbookSource(TabularSource):
    """
    Tabular source over a spreadsheet workbook.

    Usage:
        source = WorkbookSource(content, file_name="statement.xlsx")
        source.list_sections()        # ['Sheet1', 'Summary']
        source.preview(5, section="Sheet1")
    """

    FILE_TYPE = "excel"

    def __init__(self, content: bytes, file_name: str = None, mimetype: str = None):
        super().__init__(content, file_name)
        legacy = (file_name or "").lower().endswith(LEGACY_EXTENSIONS) or mimetype in LEGACY_MIMETYPES
        self.engine = "xlrd" if legacy else "openpyxl"

    def _open(self) -> pd.ExcelFile:
        try:
            return pd.ExcelFile(io.BytesIO(self.content), engine=self.engine)
        except Exception as e:
            raise MalformedSourceError(
                f"Cannot read {self.file_name or 'upload'} as a workbook: {e}"
            ) from e

    def list_sections(self) -> List[str]:
        with self._open() as workbook:
            return [str(name) for name in workbook.sheet_names]

    def _iter_raw(self, section: Optional[str] = None) -> Iterator[List[Any]]:
        with self._open() as workbook:
            sheet_names = [str(name) for name in workbook.sheet_names]
            if not sheet_names:
                raise MalformedSourceError(f"Workbook {self.file_name} has no sheets")

            sheet = section if section is not None else sheet_names[0]
            if sheet not in sheet_names:
                raise MalformedSourceError(
                    f"Sheet {sheet!r} not found in {self.file_name}; available: {', '.join(sheet_names)}"
                )

            try:
                df = workbook.parse(sheet_name=sheet, header=None, dtype=object)
            except Exception as e:
                raise MalformedSourceError(f"Cannot read sheet {sheet!r}: {e}") from e

        logger.debug(f"Read sheet {sheet!r} of {self.file_name}: {len(df)} rows x {len(df.columns)} columns")

        for record in df.itertuples(index=False, name=None):
            yield [normalize_cell(cell) for cell in record]
