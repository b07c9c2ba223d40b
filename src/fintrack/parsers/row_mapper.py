"""
Row mapping for imported files.

map_row() turns one raw row plus a confirmed ColumnMapping into either a
NormalizedRow or a RowRejection. It is a pure function: no clock, no I/O,
and identical inputs always give identical outputs.

Amount convention: comma is the thousands separator and period the decimal
point. Locale variants such as "1.234,50" are not supported.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from dateutil import parser as dtparser
from openpyxl.utils.datetime import from_excel

from fintrack.core.exceptions import RowRejectedError
from fintrack.core.models import TransactionType
from fintrack.parsers.column_mapping import REQUIRED_FIELDS, ColumnMapping

# Two defaults differing in year, month and day; a date that parses to the
# same day under both was fully given by the cell
_PARSE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))

# Tried in order when no explicit format is given (or it does not match)
COMMON_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%m-%d-%Y",
    "%Y/%m/%d",
)

# date-fns style tokens, as sent by the web client, to strptime directives
_DATE_TOKENS = {
    "yyyy": "%Y",
    "yy": "%y",
    "MMMM": "%B",
    "MMM": "%b",
    "MM": "%m",
    "M": "%m",
    "dd": "%d",
    "d": "%d",
    "HH": "%H",
    "H": "%H",
    "mm": "%M",
    "ss": "%S",
}
_DATE_TOKEN_RE = re.compile("|".join(sorted(_DATE_TOKENS, key=len, reverse=True)))

_AMOUNT_STRIP_RE = re.compile(r"[^0-9.\-+,]")

# Excel serial day numbers accepted in a date column (1900-01-01 .. 9999-12-31)
_EXCEL_SERIAL_RANGE = (1, 2958465)

INCOME_MARKERS = ("credit", "income", "deposit")
EXPENSE_MARKERS = ("debit", "expense", "withdrawal")


@dataclass(frozen=True)
class NormalizedRow:
    """A validated candidate transaction; amount is a magnitude, sign is in type."""

    date: date
    description: str
    amount: Decimal
    type: TransactionType
    currency: Optional[str]
    category: Optional[str]
    raw: Dict[str, Any]


@dataclass(frozen=True)
class RowRejection:
    """Why a row could not be mapped, with the row itself."""

    reason: str
    raw: Dict[str, Any]


MapResult = Union[NormalizedRow, RowRejection]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def jsonable_row(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a raw row with date cells as ISO strings, for JSON storage."""
    return {
        key: value.isoformat() if isinstance(value, (date, datetime)) else value
        for key, value in raw.items()
    }


def to_strptime_format(fmt: str) -> str:
    """Translate a date-fns pattern (dd/MM/yyyy) to strptime; '%' patterns pass through."""
    if "%" in fmt:
        return fmt
    return _DATE_TOKEN_RE.sub(lambda m: _DATE_TOKENS[m.group(0)], fmt)


def parse_amount(value: Any) -> Decimal:
    """
    Parse a signed amount from a cell.

    "$(1,234.50)" -> Decimal("-1234.50"); "-4.50" and "4.50-" -> Decimal("-4.50").

    Raises:
        RowRejectedError: If nothing finite remains after cleaning
    """
    if isinstance(value, bool):
        raise RowRejectedError(f"Invalid amount: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise RowRejectedError(f"Invalid amount: {value!r}")
        return amount

    text = str(value)
    cleaned = _AMOUNT_STRIP_RE.sub("", text).replace(",", "")
    negate = False
    if cleaned.endswith("-") and cleaned[:1] not in ("-", "+"):
        # Trailing minus, as in "4.50-"
        cleaned = cleaned[:-1]
        negate = True
    if not cleaned:
        raise RowRejectedError(f"Invalid amount: {text!r}")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise RowRejectedError(f"Invalid amount: {text!r}")
    if not amount.is_finite():
        raise RowRejectedError(f"Invalid amount: {text!r}")

    if negate or ("(" in text and ")" in text):
        amount = -abs(amount)
    return amount


def parse_date(value: Any, date_format: Optional[str] = None) -> date:
    """
    Parse a transaction date from a cell.

    Order: native date cells, Excel serial numbers, the caller's format,
    COMMON_DATE_FORMATS, then generic parsing.

    Raises:
        RowRejectedError: If no strategy yields a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        low, high = _EXCEL_SERIAL_RANGE
        if low <= value <= high:
            return from_excel(value).date()
        raise RowRejectedError(f"Invalid date format: {value!r}")

    text = str(value).strip()

    if date_format:
        try:
            return datetime.strptime(text, to_strptime_format(date_format)).date()
        except ValueError:
            pass

    for fmt in COMMON_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        parsed = {dtparser.parse(text, default=default).date() for default in _PARSE_DEFAULTS}
    except (ValueError, OverflowError):
        raise RowRejectedError(f"Invalid date format: {text!r}")
    if len(parsed) != 1:
        raise RowRejectedError(f"Incomplete date: {text!r}")
    return parsed.pop()


def infer_type(type_cell: Any, signed_amount: Decimal) -> TransactionType:
    """
    Classify a row as INCOME or EXPENSE.

    A type cell containing credit/income/deposit or debit/expense/withdrawal
    decides; otherwise the amount's sign does (zero counts as income).
    """
    if not _is_blank(type_cell):
        marker = str(type_cell).lower()
        if any(word in marker for word in INCOME_MARKERS):
            return TransactionType.INCOME
        if any(word in marker for word in EXPENSE_MARKERS):
            return TransactionType.EXPENSE
    return TransactionType.INCOME if signed_amount >= 0 else TransactionType.EXPENSE


def _optional_cell(raw: Dict[str, Any], label: Optional[str]) -> Optional[str]:
    if not label:
        return None
    value = raw.get(label)
    return None if _is_blank(value) else str(value).strip()


def _normalize(raw: Dict[str, Any], mapping: ColumnMapping, date_format: Optional[str]) -> NormalizedRow:
    missing = [name for name in REQUIRED_FIELDS if _is_blank(raw.get(getattr(mapping, name)))]
    if missing:
        raise RowRejectedError(f"Missing required field(s): {', '.join(missing)}")

    signed = parse_amount(raw[mapping.amount])
    txn_type = infer_type(raw.get(mapping.type) if mapping.type else None, signed)
    txn_date = parse_date(raw[mapping.date], date_format)

    currency = _optional_cell(raw, mapping.currency)
    if currency is not None:
        currency = currency.upper()
        if len(currency) != 3 or not currency.isalpha():
            raise RowRejectedError(f"Invalid currency: {currency!r}")

    return NormalizedRow(
        date=txn_date,
        description=str(raw[mapping.description]).strip(),
        amount=abs(signed),
        type=txn_type,
        currency=currency,
        category=_optional_cell(raw, mapping.category),
        raw=dict(raw),
    )


def map_row(raw: Dict[str, Any], mapping: ColumnMapping, date_format: Optional[str] = None) -> MapResult:
    """
    Map one raw row to a NormalizedRow, or explain why it cannot be.

    Args:
        raw: {header label: cell} from a tabular source
        mapping: Confirmed column mapping
        date_format: Optional caller-supplied date pattern

    Returns:
        NormalizedRow on success, RowRejection otherwise
    """
    try:
        return _normalize(raw, mapping, date_format)
    except RowRejectedError as e:
        return RowRejection(reason=e.reason, raw=dict(raw))
