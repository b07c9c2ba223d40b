"""
Base class for tabular sources.

A tabular source wraps the bytes of one uploaded file and exposes the same
four operations for delimited text and spreadsheet workbooks:

- list_sections(): sheet names (empty for delimited text)
- detect_headers(): column labels of the detected header row
- preview(): first N data rows
- rows(): lazy, forward-only sequence of data rows

Data rows are dicts keyed by header label. The source keeps no cursor
between calls; every call re-reads from the start of the content.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from itertools import chain, islice
from typing import Any, Dict, Iterator, List, Optional, Tuple

from fintrack.core.exceptions import MalformedSourceError

logger = logging.getLogger(__name__)

RawRow = Dict[str, Any]

# Non-blank rows examined when looking for the header row
HEADER_SCAN_ROWS = 20

DEFAULT_PREVIEW_LIMIT = 10

_NUMERIC_RE = re.compile(r"^[\s$€£¥₮+\-(]*[\d,]+(\.\d+)?[\s)%]*$")
_DATE_RE = re.compile(r"^\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}")


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def looks_like_data(value: Any) -> bool:
    """True for cells that look like a value rather than a column label."""
    if isinstance(value, (int, float, datetime, date)) and not isinstance(value, bool):
        return True
    text = str(value).strip()
    return bool(_NUMERIC_RE.match(text) or _DATE_RE.match(text))


def _trim_trailing_blanks(cells: List[Any]) -> List[Any]:
    end = len(cells)
    while end and is_blank(cells[end - 1]):
        end -= 1
    return cells[:end]


def make_header_labels(cells: List[Any]) -> List[str]:
    """
    Turn a header row into unique column labels.

    Blank cells become Column{n} (1-based position); repeated labels get
    .1, .2 suffixes in order of appearance.
    """
    labels = []
    seen: Dict[str, int] = {}
    for position, cell in enumerate(cells, start=1):
        label = f"Column{position}" if is_blank(cell) else str(cell).strip()
        if label in seen:
            seen[label] += 1
            label = f"{label}.{seen[label]}"
        else:
            seen[label] = 0
        labels.append(label)
    return labels


class TabularSource(ABC):
    """
    Abstract base class for uploaded tabular files.

    Subclasses implement list_sections() and _iter_raw(); header detection,
    row shaping and previews are shared.
    """

    FILE_TYPE: str = ""  # Override in subclass ('csv' or 'excel')

    def __init__(self, content: bytes, file_name: str = None):
        """
        Initialize source.

        Args:
            content: Raw file bytes
            file_name: Original file name, used in messages

        Raises:
            MalformedSourceError: If the content is empty
        """
        if not content:
            raise MalformedSourceError(f"Uploaded file is empty: {file_name or '<upload>'}")
        self.content = content
        self.file_name = file_name

    @abstractmethod
    def list_sections(self) -> List[str]:
        """Names of the sheets in the file (empty for delimited text)."""
        pass

    @abstractmethod
    def _iter_raw(self, section: Optional[str] = None) -> Iterator[List[Any]]:
        """
        Yield every physical row of a section as a list of normalized cells.

        Cells are stripped strings, numbers, dates or "" for empty cells.

        Raises:
            MalformedSourceError: On undecodable content or unknown section
        """
        pass

    def _split(self, section: Optional[str] = None) -> Tuple[List[str], Iterator[List[Any]]]:
        """Locate the header row and return (labels, iterator over data rows)."""
        raw = self._iter_raw(section)

        scanned: List[List[Any]] = []
        for cells in raw:
            if all(is_blank(c) for c in cells):
                continue
            scanned.append(cells)
            if len(scanned) >= HEADER_SCAN_ROWS:
                break

        if not scanned:
            where = f" in section {section!r}" if section else ""
            raise MalformedSourceError(f"No rows found{where} of {self.file_name or 'upload'}")

        header_index = 0
        for i, cells in enumerate(scanned):
            filled = [c for c in cells if not is_blank(c)]
            if len(filled) >= 2 and not any(looks_like_data(c) for c in filled):
                header_index = i
                break

        header_cells = _trim_trailing_blanks(scanned[header_index])
        if not header_cells:
            raise MalformedSourceError("Header row has no columns")

        if header_index:
            logger.debug(f"Header found after {header_index} preamble row(s) in {self.file_name}")

        labels = make_header_labels(header_cells)
        remaining = chain(scanned[header_index + 1:], raw)
        return labels, remaining

    def detect_headers(self, section: Optional[str] = None) -> List[str]:
        """Ordered column labels of the detected header row."""
        labels, _ = self._split(section)
        return labels

    def rows(self, section: Optional[str] = None) -> Iterator[RawRow]:
        """
        Lazily yield data rows as {label: cell} dicts.

        Cells beyond the header width are dropped, missing cells are "",
        and fully blank rows are skipped.
        """
        labels, remaining = self._split(section)
        width = len(labels)
        for cells in remaining:
            cells = list(cells[:width])
            if all(is_blank(c) for c in cells):
                continue
            if len(cells) < width:
                cells.extend([""] * (width - len(cells)))
            yield dict(zip(labels, cells))

    def preview(self, limit: int = DEFAULT_PREVIEW_LIMIT, section: Optional[str] = None) -> List[RawRow]:
        """First `limit` data rows."""
        return list(islice(self.rows(section), max(0, limit)))
