"""
Delimited-text source (CSV, TSV, semicolon or pipe separated).

Rows are read with pandas in chunks, so a bad byte or a broken line late in
a large file surfaces as MalformedSourceError from rows(), not up front.
"""

import csv
import io
import logging
from typing import Any, Iterator, List, Optional

import pandas as pd

from fintrack.core.exceptions import MalformedSourceError
from fintrack.parsers.tabular.base import TabularSource

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = ",;\t|"
SNIFF_BYTES = 4096

# Rows per DataFrame chunk
CHUNK_ROWS = 1000

# Widest row accepted; narrower rows are padded, so preamble lines and the
# header row may differ in width
MAX_COLUMNS = 256


def _text_cell(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class DelimitedTextSource(TabularSource):
    """
    Tabular source over delimited text.

    Usage:
        source = DelimitedTextSource(content, file_name="statement.csv")
        headers = source.detect_headers()
        for row in source.rows():
            print(row["Date"], row["Amount"])
    """

    FILE_TYPE = "csv"

    def __init__(
        self,
        content: bytes,
        file_name: str = None,
        encoding: str = "utf-8",
        delimiter: str = None,
    ):
        """
        Initialize source.

        Args:
            content: Raw file bytes
            file_name: Original file name (.tsv forces a tab delimiter)
            encoding: Text encoding of the content
            delimiter: Explicit delimiter; sniffed from the content when None
        """
        super().__init__(content, file_name)
        # utf-8-sig drops a leading byte order mark that spreadsheet exports add
        self.encoding = "utf-8-sig" if encoding.lower().replace("_", "-") == "utf-8" else encoding
        if delimiter is None and file_name and file_name.lower().endswith(".tsv"):
            delimiter = "\t"
        self.delimiter = delimiter or self._sniff_delimiter()

    def _sniff_delimiter(self) -> str:
        # Sniffed over the first 4 KiB so a one-cell preamble line does not decide it
        sample = self.content[:SNIFF_BYTES].decode(self.encoding, errors="replace")
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS)
            return dialect.delimiter
        except csv.Error:
            logger.debug(f"Could not sniff delimiter for {self.file_name}, using ','")
            return ","

    def list_sections(self) -> List[str]:
        return []

    def _read_chunks(self) -> Iterator[pd.DataFrame]:
        reader = pd.read_csv(
            io.BytesIO(self.content),
            sep=self.delimiter,
            header=None,
            names=list(range(MAX_COLUMNS)),
            index_col=False,
            dtype=str,
            keep_default_na=False,
            encoding=self.encoding,
            engine="python",
            chunksize=CHUNK_ROWS,
        )
        with reader:
            yield from reader

    def _iter_raw(self, section: Optional[str] = None) -> Iterator[List[Any]]:
        if section:
            logger.debug(f"Ignoring section {section!r} for delimited file {self.file_name}")

        try:
            for chunk in self._read_chunks():
                for record in chunk.itertuples(index=False, name=None):
                    yield [_text_cell(cell) for cell in record]
        except pd.errors.EmptyDataError:
            return
        except UnicodeDecodeError as e:
            raise MalformedSourceError(
                f"Cannot decode {self.file_name or 'upload'} as {self.encoding}: {e}"
            ) from e
        except pd.errors.ParserError as e:
            raise MalformedSourceError(
                f"Malformed delimited text in {self.file_name or 'upload'}: {e}"
            ) from e
