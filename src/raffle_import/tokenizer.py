"""raffle_import.tokenizer

Delimiter-sniffing, quote-aware parser for entrant files.

Accepts comma, semicolon or tab separated text with optional RFC-4180 style
quoting. Lines are split on \\r?\\n before field parsing, so a quoted field
cannot span lines.
"""

from __future__ import annotations

import re

from raffle_import.shared import EmptyInputError, NoDataRowsError

CANDIDATE_DELIMITERS = (",", ";", "\t")

_LINE_SPLIT = re.compile(r"\r?\n")


# ---------------------------------------------------------------------------
# Delimiter detection
# ---------------------------------------------------------------------------

def detect_delimiter(line: str) -> str:
    """Return the delimiter with a strict majority of unquoted occurrences.

    Ties (including no delimiters at all) resolve to comma.
    """
    counts = {d: 0 for d in CANDIDATE_DELIMITERS}
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes and char in counts:
            counts[char] += 1

    comma, semicolon, tab = counts[","], counts[";"], counts["\t"]
    if semicolon > comma and semicolon > tab:
        return ";"
    if tab > comma and tab > semicolon:
        return "\t"
    return ","


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------

def parse_line(line: str, delimiter: str) -> list[str]:
    """Split one line into trimmed fields.

    A `"` toggles quote state; `""` inside quotes is a literal quote; the
    delimiter only separates fields outside quotes.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1
    fields.append("".join(current).strip())
    return fields


def split_lines(text: str) -> list[str]:
    """Split on \\r?\\n, trim each line, drop blank lines."""
    return [line.strip() for line in _LINE_SPLIT.split(text) if line.strip()]


def parse_csv(text: str) -> list[list[str]]:
    """Tokenize a whole file; row 0 is the header row.

    Raises EmptyInputError when no non-blank line remains.
    """
    lines = split_lines(text)
    if not lines:
        raise EmptyInputError("CSV file is empty")
    delimiter = detect_delimiter(lines[0])
    return [parse_line(line, delimiter) for line in lines]


def require_data_rows(rows: list[list[str]]) -> None:
    """Raise NoDataRowsError unless at least one row follows the header."""
    if len(rows) < 2:
        raise NoDataRowsError("CSV file has no data rows")
