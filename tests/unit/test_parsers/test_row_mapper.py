"""
Unit tests for row mapping.

Tests amount and date parsing, type inference and map_row results.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from fintrack.core.exceptions import RowRejectedError
from fintrack.core.models import TransactionType
from fintrack.parsers.column_mapping import ColumnMapping
from fintrack.parsers.row_mapper import (
    NormalizedRow,
    RowRejection,
    infer_type,
    jsonable_row,
    map_row,
    parse_amount,
    parse_date,
    to_strptime_format,
)


MAPPING = ColumnMapping(date="Date", description="Description", amount="Amount")


class TestParseAmount:
    """Tests for amount cleaning."""

    @pytest.mark.parametrize("value,expected", [
        ("-4.50", Decimal("-4.50")),
        ("+20", Decimal("20")),
        ("1,234.56", Decimal("1234.56")),
        ("$(1,234.50)", Decimal("-1234.50")),
        ("(75)", Decimal("-75")),
        ("4.50-", Decimal("-4.50")),
        ("1,234.00 -", Decimal("-1234.00")),
        ("AUD 99.95", Decimal("99.95")),
        (12.5, Decimal("12.5")),
        (3000, Decimal("3000")),
    ])
    def test_valid(self, value, expected):
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", ["abc", "", "1.2.3", "--5", "-", "-4.50-", float("nan"), True])
    def test_invalid(self, value):
        with pytest.raises(RowRejectedError, match="Invalid amount"):
            parse_amount(value)


class TestParseDate:
    """Tests for date parsing strategies."""

    def test_iso(self):
        assert parse_date("2025-01-15") == date(2025, 1, 15)

    def test_day_first_common_format(self):
        assert parse_date("15/01/2025") == date(2025, 1, 15)

    def test_month_first_when_day_first_impossible(self):
        assert parse_date("01/15/2025") == date(2025, 1, 15)

    def test_explicit_format_takes_precedence(self):
        assert parse_date("03/04/2025") == date(2025, 4, 3)
        assert parse_date("03/04/2025", "MM/dd/yyyy") == date(2025, 3, 4)

    def test_explicit_strptime_format(self):
        assert parse_date("2025.01.15", "%Y.%m.%d") == date(2025, 1, 15)

    def test_mismatched_format_falls_through(self):
        assert parse_date("2025-01-15", "dd/MM/yyyy") == date(2025, 1, 15)

    def test_generic_parser(self):
        assert parse_date("Jan 5, 2025") == date(2025, 1, 5)

    @pytest.mark.parametrize("value", ["10", "Mar", "March 2025", "10:30"])
    def test_partial_dates_rejected(self, value):
        with pytest.raises(RowRejectedError, match="Incomplete date"):
            parse_date(value)

    def test_generic_parser_full_date_without_separators(self):
        assert parse_date("5 January 2025") == date(2025, 1, 5)

    def test_native_cells(self):
        assert parse_date(datetime(2025, 1, 2, 13, 30)) == date(2025, 1, 2)
        assert parse_date(date(2025, 1, 2)) == date(2025, 1, 2)

    def test_excel_serial(self):
        assert parse_date(45658) == date(2025, 1, 1)

    def test_serial_out_of_range(self):
        with pytest.raises(RowRejectedError):
            parse_date(0)

    def test_garbage(self):
        with pytest.raises(RowRejectedError) as exc_info:
            parse_date("not a date")
        assert exc_info.value.reason == "Invalid date format: 'not a date'"


class TestDateFormatTranslation:

    def test_tokens(self):
        assert to_strptime_format("dd/MM/yyyy") == "%d/%m/%Y"
        assert to_strptime_format("d MMM yyyy") == "%d %b %Y"
        assert to_strptime_format("%d.%m.%Y") == "%d.%m.%Y"


class TestInferType:

    def test_type_column_decides(self):
        assert infer_type("Credit", Decimal("-5")) == TransactionType.INCOME
        assert infer_type("DEBIT CARD", Decimal("5")) == TransactionType.EXPENSE
        assert infer_type("Withdrawal", Decimal("5")) == TransactionType.EXPENSE

    def test_sign_decides_otherwise(self):
        assert infer_type(None, Decimal("-5")) == TransactionType.EXPENSE
        assert infer_type("", Decimal("0")) == TransactionType.INCOME
        assert infer_type("Transfer", Decimal("5")) == TransactionType.INCOME


class TestMapRow:
    """Tests for map_row."""

    def test_maps_expense(self):
        raw = {"Date": "2025-01-01", "Description": " Coffee ", "Amount": "-4.50"}
        result = map_row(raw, MAPPING)

        assert isinstance(result, NormalizedRow)
        assert result.date == date(2025, 1, 1)
        assert result.description == "Coffee"
        assert result.amount == Decimal("4.50")
        assert result.type == TransactionType.EXPENSE
        assert result.currency is None
        assert result.category is None
        assert result.raw == raw

    def test_optional_columns(self):
        mapping = ColumnMapping(
            date="Date", description="Description", amount="Amount",
            currency="Ccy", category="Category", type="Dr/Cr",
        )
        raw = {
            "Date": "2025-01-01",
            "Description": "Refund",
            "Amount": "10",
            "Ccy": "usd",
            "Category": "Shopping",
            "Dr/Cr": "debit",
        }
        result = map_row(raw, mapping)

        assert result.currency == "USD"
        assert result.category == "Shopping"
        assert result.type == TransactionType.EXPENSE
        assert result.amount == Decimal("10")

    def test_blank_optional_columns_are_none(self):
        mapping = ColumnMapping(date="Date", description="Description", amount="Amount", currency="Ccy")
        result = map_row({"Date": "2025-01-01", "Description": "x", "Amount": "1", "Ccy": " "}, mapping)
        assert result.currency is None

    def test_missing_required_fields(self):
        result = map_row({"Date": "2025-01-01", "Description": "", "Amount": ""}, MAPPING)
        assert isinstance(result, RowRejection)
        assert result.reason == "Missing required field(s): description, amount"

    def test_invalid_amount(self):
        result = map_row({"Date": "2025-01-01", "Description": "x", "Amount": "n/a"}, MAPPING)
        assert result.reason == "Invalid amount: 'n/a'"

    def test_invalid_date(self):
        result = map_row({"Date": "someday", "Description": "x", "Amount": "1"}, MAPPING)
        assert isinstance(result, RowRejection)
        assert result.reason.startswith("Invalid date format")

    def test_invalid_currency(self):
        mapping = ColumnMapping(date="Date", description="Description", amount="Amount", currency="Ccy")
        result = map_row({"Date": "2025-01-01", "Description": "x", "Amount": "1", "Ccy": "dollars"}, mapping)
        assert result.reason == "Invalid currency: 'DOLLARS'"

    def test_workbook_cells(self):
        raw = {"Date": datetime(2025, 1, 3), "Description": "Salary", "Amount": 3000}
        result = map_row(raw, MAPPING)
        assert result.date == date(2025, 1, 3)
        assert result.type == TransactionType.INCOME
        assert result.amount == Decimal("3000")

    def test_deterministic(self):
        raw = {"Date": "03/04/2025", "Description": "x", "Amount": "(12.00)"}
        assert map_row(raw, MAPPING, "dd/MM/yyyy") == map_row(raw, MAPPING, "dd/MM/yyyy")


class TestJsonableRow:

    def test_dates_become_iso_strings(self):
        row = jsonable_row({"Date": datetime(2025, 1, 1), "Day": date(2025, 1, 2), "Amount": 5})
        assert row == {"Date": "2025-01-01T00:00:00", "Day": "2025-01-02", "Amount": 5}
