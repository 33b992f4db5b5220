"""CSV parsing of decoded import files."""

import csv
import io
import logging
from typing import Optional

from .errors import CSVParseError
from .models import ParseResult, ParseWarning, RawRow

logger = logging.getLogger(__name__)

DELIMITERS = ",;\t|"
DEFAULT_DELIMITER = ","
SNIFF_LINES = 20


def _header_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line
    return ""


def sniff_delimiter(text: str) -> str:
    """Guess the delimiter from the first lines of the file."""
    header = _header_line(text)
    sample = "\n".join(text.splitlines()[:SNIFF_LINES])

    try:
        delimiter = csv.Sniffer().sniff(sample, delimiters=DELIMITERS).delimiter
        if delimiter in header:
            return delimiter
    except csv.Error:
        pass

    # Sniffer gave up or picked a character the header never uses
    counts = {d: header.count(d) for d in DELIMITERS}
    best = max(counts, key=lambda d: counts[d])
    return best if counts[best] > 0 else DEFAULT_DELIMITER


def _clean_headers(record: list[str]) -> list[str]:
    headers: list[str] = []
    for position, cell in enumerate(record, start=1):
        name = cell.replace("\ufeff", "").strip() or f"Column {position}"
        candidate, suffix = name, 2
        while candidate in headers:
            candidate = f"{name} ({suffix})"
            suffix += 1
        headers.append(candidate)
    return headers


def parse_csv(text: str, delimiter: Optional[str] = None) -> ParseResult:
    """Split decoded text into headers and rows.

    Blank lines and rows whose cells are all whitespace are skipped. Rows with
    too few cells are padded and rows with too many are truncated; either way a
    ParseWarning is recorded for the row instead of failing the file.
    """
    if delimiter is None:
        delimiter = sniff_delimiter(text)

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    headers: Optional[list[str]] = None
    rows: list[RawRow] = []
    warnings: list[ParseWarning] = []

    try:
        for record in reader:
            if not any(cell.strip() for cell in record):
                continue

            if headers is None:
                headers = _clean_headers(record)
                continue

            index = len(rows)
            expected = len(headers)
            if len(record) < expected:
                warnings.append(
                    ParseWarning(
                        row=index,
                        message=f"Row {index + 1} has {len(record)} cells, expected {expected}; padded with empty values",
                    )
                )
                record = record + [""] * (expected - len(record))
            elif len(record) > expected:
                extra = record[expected:]
                if any(cell.strip() for cell in extra):
                    warnings.append(
                        ParseWarning(
                            row=index,
                            message=f"Row {index + 1} has {len(record)} cells, expected {expected}; extra values dropped",
                        )
                    )
                record = record[:expected]

            rows.append(dict(zip(headers, record)))
    except csv.Error as e:
        raise CSVParseError(f"Malformed CSV near line {reader.line_num}: {e}") from e

    if warnings:
        logger.info(f"Parsed {len(rows)} rows with {len(warnings)} structural warnings")
    else:
        logger.debug(f"Parsed {len(rows)} rows using delimiter {delimiter!r}")

    return ParseResult(headers=headers or [], rows=rows, warnings=warnings, delimiter=delimiter)
