"""
Unit tests for tabular sources.

Tests file type detection, header detection, row shaping and the
delimited-text and workbook readers.
"""

import pytest
from datetime import datetime

from conftest import make_csv, make_xlsx
from fintrack.core.exceptions import MalformedSourceError
from fintrack.parsers.tabular import (
    DelimitedTextSource,
    WorkbookSource,
    detect_file_type,
    make_header_labels,
    open_tabular_source,
)
from fintrack.parsers.tabular.workbook import normalize_cell


class TestDetectFileType:
    """Tests for classifying uploads."""

    @pytest.mark.parametrize("file_name,expected", [
        ("statement.csv", "csv"),
        ("STATEMENT.TSV", "csv"),
        ("export.txt", "csv"),
        ("statement.xlsx", "excel"),
        ("macro.xlsm", "excel"),
        ("legacy.xls", "excel"),
    ])
    def test_by_extension(self, file_name, expected):
        assert detect_file_type(file_name) == expected

    def test_extension_wins_over_mimetype(self):
        assert detect_file_type("statement.csv", "application/vnd.ms-excel") == "csv"

    def test_falls_back_to_mimetype(self):
        assert detect_file_type("upload", "text/csv; charset=utf-8") == "csv"
        assert detect_file_type(
            "upload.bin", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        ) == "excel"

    def test_unsupported(self):
        with pytest.raises(MalformedSourceError, match="Unsupported file type"):
            detect_file_type("statement.pdf", "application/pdf")

    def test_open_tabular_source_picks_reader(self):
        assert isinstance(open_tabular_source("a.csv", b"Date,Amount\n"), DelimitedTextSource)
        workbook = make_xlsx({"Sheet1": [["Date", "Amount"]]})
        assert isinstance(open_tabular_source("a.xlsx", workbook), WorkbookSource)


class TestHeaderLabels:

    def test_blank_and_duplicate_labels(self):
        assert make_header_labels(["Date", "", "Amount", "Amount", "Amount"]) == [
            "Date", "Column2", "Amount", "Amount.1", "Amount.2",
        ]


class TestDelimitedTextSource:
    """Tests for CSV-like sources."""

    def test_headers_and_rows(self):
        source = DelimitedTextSource(make_csv(
            "Date,Description,Amount",
            "2025-01-01,Coffee,-4.50",
            "2025-01-02,Salary,3000",
        ), "statement.csv")

        assert source.list_sections() == []
        assert source.detect_headers() == ["Date", "Description", "Amount"]
        assert list(source.rows()) == [
            {"Date": "2025-01-01", "Description": "Coffee", "Amount": "-4.50"},
            {"Date": "2025-01-02", "Description": "Salary", "Amount": "3000"},
        ]

    def test_rows_can_be_reread(self):
        source = DelimitedTextSource(make_csv("Date,Amount", "2025-01-01,1"), "a.csv", delimiter=",")
        assert list(source.rows()) == list(source.rows())

    def test_byte_order_mark_is_dropped(self):
        content = "\ufeffDate,Amount\n2025-01-01,5\n".encode("utf-8")
        source = DelimitedTextSource(content, "bom.csv", delimiter=",")
        assert source.detect_headers() == ["Date", "Amount"]

    def test_semicolon_is_sniffed(self):
        source = DelimitedTextSource(make_csv(
            "Date;Description;Amount",
            "2025-01-01;Coffee;4,50",
            "2025-01-02;Tea;3,10",
        ), "export.csv")
        assert source.delimiter == ";"
        assert source.detect_headers() == ["Date", "Description", "Amount"]

    def test_tsv_uses_tab(self):
        source = DelimitedTextSource(make_csv("Date\tAmount", "2025-01-01\t5"), "export.tsv")
        assert source.delimiter == "\t"
        assert next(source.rows()) == {"Date": "2025-01-01", "Amount": "5"}

    def test_preamble_rows_are_skipped(self):
        source = DelimitedTextSource(make_csv(
            "Account 123-456",
            "Generated,2025-01-31",
            "",
            "Date,Description,Amount",
            "2025-01-01,Coffee,-4.50",
        ), "bank.csv", delimiter=",")

        assert source.detect_headers() == ["Date", "Description", "Amount"]
        assert [r["Description"] for r in source.rows()] == ["Coffee"]

    def test_first_row_is_header_when_none_qualifies(self):
        source = DelimitedTextSource(make_csv("2025-01-01,5", "2025-01-02,6"), "raw.csv", delimiter=",")
        assert source.detect_headers() == ["2025-01-01", "5"]
        assert len(list(source.rows())) == 1

    def test_short_rows_padded_long_rows_truncated(self):
        source = DelimitedTextSource(make_csv(
            "Date,Description,Amount",
            "2025-01-01,Coffee",
            "2025-01-02,Tea,3.10,extra,cells",
        ), "ragged.csv", delimiter=",")

        rows = list(source.rows())
        assert rows[0] == {"Date": "2025-01-01", "Description": "Coffee", "Amount": ""}
        assert rows[1] == {"Date": "2025-01-02", "Description": "Tea", "Amount": "3.10"}

    def test_blank_rows_skipped(self):
        source = DelimitedTextSource(make_csv(
            "Date,Amount",
            "2025-01-01,1",
            ",",
            "",
            "2025-01-02,2",
        ), "gaps.csv", delimiter=",")
        assert [r["Amount"] for r in source.rows()] == ["1", "2"]

    def test_header_only_file_has_no_rows(self):
        source = DelimitedTextSource(make_csv("Date,Description,Amount"), "empty.csv", delimiter=",")
        assert source.detect_headers() == ["Date", "Description", "Amount"]
        assert list(source.rows()) == []

    def test_preview_limit(self):
        lines = ["Date,Amount"] + [f"2025-01-{day:02d},{day}" for day in range(1, 16)]
        source = DelimitedTextSource(make_csv(*lines), "long.csv", delimiter=",")

        assert len(source.preview()) == 10
        assert len(source.preview(3)) == 3
        assert source.preview(0) == []

    def test_rows_span_chunks(self):
        lines = ["Date,Amount"] + [f"2025-01-01,{n}" for n in range(2500)]
        source = DelimitedTextSource(make_csv(*lines), "big.csv", delimiter=",")

        rows = list(source.rows())
        assert len(rows) == 2500
        assert rows[-1] == {"Date": "2025-01-01", "Amount": "2499"}

    def test_quoted_cells_kept_as_text(self):
        source = DelimitedTextSource(make_csv(
            "Date,Description,Amount",
            '2025-01-01,"Rent, January","1,200.00"',
            "2025-01-02,NA,0012",
        ), "quoted.csv", delimiter=",")

        rows = list(source.rows())
        assert rows[0] == {"Date": "2025-01-01", "Description": "Rent, January", "Amount": "1,200.00"}
        assert rows[1] == {"Date": "2025-01-02", "Description": "NA", "Amount": "0012"}

    def test_empty_content_rejected(self):
        with pytest.raises(MalformedSourceError):
            DelimitedTextSource(b"", "empty.csv")

    def test_only_blank_lines_rejected(self):
        source = DelimitedTextSource(b"\n\n  \n", "blank.csv", delimiter=",")
        with pytest.raises(MalformedSourceError, match="No rows found"):
            source.detect_headers()

    def test_undecodable_content(self):
        source = DelimitedTextSource(b"Date,Amount\n2025-01-01,\xff\xfe\n", "bad.csv", delimiter=",")
        with pytest.raises(MalformedSourceError, match="Cannot decode"):
            list(source.rows())

    def test_explicit_encoding(self):
        content = "Date,Description\n2025-01-01,Caf\xe9\n".encode("latin-1")
        source = DelimitedTextSource(content, "latin.csv", encoding="latin-1", delimiter=",")
        assert next(source.rows())["Description"] == "Caf\xe9"


class TestWorkbookSource:
    """Tests for spreadsheet sources."""

    @pytest.fixture
    def workbook_bytes(self):
        return make_xlsx({
            "January": [
                ["Date", "Description", "Amount"],
                [datetime(2025, 1, 3), "Salary", 3000],
                [datetime(2025, 1, 4), "  Coffee  ", -4.5],
            ],
            "February": [
                ["Posted", "Memo", "Value", None],
                [datetime(2025, 2, 1), "Rent", -1200, None],
            ],
        })

    def test_list_sections(self, workbook_bytes):
        source = WorkbookSource(workbook_bytes, "statement.xlsx")
        assert source.list_sections() == ["January", "February"]
        assert source.engine == "openpyxl"

    def test_first_sheet_by_default(self, workbook_bytes):
        source = WorkbookSource(workbook_bytes, "statement.xlsx")
        rows = list(source.rows())

        assert source.detect_headers() == ["Date", "Description", "Amount"]
        assert rows[0]["Date"] == datetime(2025, 1, 3)
        assert rows[0]["Amount"] == 3000
        assert rows[1]["Description"] == "Coffee"

    def test_named_sheet(self, workbook_bytes):
        source = WorkbookSource(workbook_bytes, "statement.xlsx")
        assert source.detect_headers("February") == ["Posted", "Memo", "Value"]
        assert source.preview(section="February")[0]["Memo"] == "Rent"

    def test_missing_sheet(self, workbook_bytes):
        source = WorkbookSource(workbook_bytes, "statement.xlsx")
        with pytest.raises(MalformedSourceError, match="not found"):
            source.detect_headers("March")

    def test_corrupt_workbook(self):
        source = WorkbookSource(b"definitely not a zip archive", "broken.xlsx")
        with pytest.raises(MalformedSourceError):
            source.list_sections()

    def test_legacy_engine(self):
        assert WorkbookSource(b"x", "old.xls").engine == "xlrd"
        assert WorkbookSource(b"x", "upload", mimetype="application/vnd.ms-excel").engine == "xlrd"


class TestNormalizeCell:

    def test_values(self):
        assert normalize_cell(None) == ""
        assert normalize_cell(float("nan")) == ""
        assert normalize_cell("  x ") == "x"
        assert normalize_cell(12) == 12
