"""
fintrack parsers - turning uploaded bank exports into candidate transactions.

Architecture:
- TabularSource: delimited text and workbooks behind one interface
- ColumnMapping / suggest_column_mapping: header labels to logical fields
- map_row: one raw row to a NormalizedRow or a RowRejection
"""

from .tabular import (
    TabularSource,
    DelimitedTextSource,
    WorkbookSource,
    detect_file_type,
    open_tabular_source,
)
from .column_mapping import ColumnMapping, suggest_column_mapping
from .row_mapper import (
    NormalizedRow,
    RowRejection,
    map_row,
    parse_amount,
    parse_date,
    infer_type,
    jsonable_row,
)

__all__ = [
    "TabularSource",
    "DelimitedTextSource",
    "WorkbookSource",
    "detect_file_type",
    "open_tabular_source",
    "ColumnMapping",
    "suggest_column_mapping",
    "NormalizedRow",
    "RowRejection",
    "map_row",
    "parse_amount",
    "parse_date",
    "infer_type",
    "jsonable_row",
]
