"""
Column mapping for imported files.

ColumnMapping ties the logical transaction fields to the literal header
labels of an upload. suggest_column_mapping() proposes one from the headers
alone; the result is advisory and must be confirmed before an import commits.
"""

import re
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Pattern, Sequence, Tuple

from fintrack.core.exceptions import ValidationError

REQUIRED_FIELDS = ("date", "description", "amount")
OPTIONAL_FIELDS = ("currency", "category", "type")


@dataclass
class ColumnMapping:
    """Header label for each logical field; optional fields may be None."""

    date: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnMapping":
        """Build a mapping from a request body; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{
            key: (str(value).strip() or None) if value is not None else None
            for key, value in (data or {}).items()
            if key in known
        })

    def to_dict(self) -> Dict[str, str]:
        """Only the fields that are mapped."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, name) for name in REQUIRED_FIELDS)

    def validate(self, headers: Sequence[str] = None) -> None:
        """
        Check that required fields are mapped and every mapped label exists.

        Raises:
            ValidationError: On a missing required field or unknown label
        """
        missing = [name for name in REQUIRED_FIELDS if not getattr(self, name)]
        if missing:
            raise ValidationError(
                f"Column mapping is missing required field(s): {', '.join(missing)}",
                field="columnMapping",
            )
        if headers is not None:
            available = set(headers)
            unknown = [label for label in self.to_dict().values() if label not in available]
            if unknown:
                raise ValidationError(
                    f"Mapped column(s) not found in file: {', '.join(unknown)}",
                    field="columnMapping",
                )


# (field, pattern) in evaluation order; a header is claimed by the first
# unfilled field whose pattern matches it.
SUGGESTION_RULES: Tuple[Tuple[str, Pattern], ...] = (
    ("date", re.compile(r"date|time|when", re.IGNORECASE)),
    ("description", re.compile(r"description|desc|detail|memo|particular|narration", re.IGNORECASE)),
    ("amount", re.compile(r"amount|value|total|balance", re.IGNORECASE)),
    ("currency", re.compile(r"currency|curr|ccy", re.IGNORECASE)),
    ("category", re.compile(r"category|cat|class", re.IGNORECASE)),
    ("type", re.compile(r"type|credit|debit", re.IGNORECASE)),
)


def suggest_column_mapping(headers: List[str]) -> ColumnMapping:
    """
    Guess a column mapping from header labels.

    The first header matching a field wins it, and each header fills at most
    one field. Never raises; unrecognized headers yield an empty mapping.
    """
    mapping = ColumnMapping()
    for header in headers or []:
        label = str(header).strip() if header is not None else ""
        if not label:
            continue
        for field_name, pattern in SUGGESTION_RULES:
            if getattr(mapping, field_name) is None and pattern.search(label):
                setattr(mapping, field_name, label)
                break
    return mapping
