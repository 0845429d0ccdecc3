"""Delimited text parsing.

Registry exports come as semicolon-separated text; uploaded SII books are
comma-, tab- or pipe-separated. The delimiter is detected from the header
line.
"""

import csv
import io
from typing import Dict, List

from connectors.errors import ParseError


CANDIDATE_DELIMITERS = (",", "\t", "|")


def _count_outside_quotes(line: str, char: str) -> int:
    count = 0
    inside_quotes = False
    for current in line:
        if current == '"':
            inside_quotes = not inside_quotes
        elif current == char and not inside_quotes:
            count += 1
    return count


def detect_delimiter(header_line: str) -> str:
    """Pick the delimiter of a header line.

    A semicolon wins whenever present; otherwise the most frequent of comma,
    tab and pipe outside quotes; comma when nothing matches.
    """
    if _count_outside_quotes(header_line, ";") > 0:
        return ";"
    best, best_count = ",", 0
    for candidate in CANDIDATE_DELIMITERS:
        count = _count_outside_quotes(header_line, candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def parse_delimited(text: str) -> List[Dict[str, str]]:
    """Parse delimited text into rows keyed by the header labels.

    Blank lines are skipped, short rows are padded with "", cells and
    labels are trimmed, surplus cells beyond the header are dropped.

    Raises:
        ParseError: No header row
    """
    if text is None:
        raise ParseError("Delimited text is empty: no header row")
    text = text.lstrip("﻿")

    lines = text.splitlines()
    header_line = next((line for line in lines if line.strip()), None)
    if header_line is None:
        raise ParseError("Delimited text is empty: no header row")

    reader = csv.reader(io.StringIO(text), delimiter=detect_delimiter(header_line))
    try:
        records = [record for record in reader if any(cell.strip() for cell in record)]
    except csv.Error as e:
        raise ParseError(f"Malformed delimited text: {e}") from e

    if not records:
        raise ParseError("Delimited text is empty: no header row")

    headers = [label.strip() for label in records[0]]
    rows: List[Dict[str, str]] = []
    for record in records[1:]:
        cells = [cell.strip() for cell in record]
        if len(cells) < len(headers):
            cells.extend([""] * (len(headers) - len(cells)))
        rows.append(dict(zip(headers, cells)))
    return rows
