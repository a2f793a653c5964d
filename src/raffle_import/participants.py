"""raffle_import.participants

Turn tokenized rows plus a confirmed ColumnMapping into Participant records.
"""

from __future__ import annotations

import re

from raffle_import.models import ColumnMapping, Participant

_WS = re.compile(r"\s+")


def split_full_name(full_name: str | None) -> tuple[str, str]:
    """Split on whitespace: first token, then the rest joined by one space.

    No comma handling: "Smith, John" → ("Smith,", "John").
    """
    tokens = _WS.split((full_name or "").strip())
    tokens = [t for t in tokens if t]
    if not tokens:
        return ("", "")
    return (tokens[0], " ".join(tokens[1:]))


def _column_index(header_row: list[str], header: str | None) -> int | None:
    if not header:
        return None
    try:
        return header_row.index(header)
    except ValueError:
        return None


def _cell(row: list[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index]


def _iter_resolved(rows: list[list[str]], mapping: ColumnMapping):
    header_row = rows[0] if rows else []
    first_idx = _column_index(header_row, mapping.first_name)
    last_idx = _column_index(header_row, mapping.last_name)
    full_idx = _column_index(header_row, mapping.full_name)
    ticket_idx = _column_index(header_row, mapping.ticket_number)
    split_names = not mapping.first_name and not mapping.last_name and full_idx is not None

    for row in rows[1:]:
        if split_names:
            first, last = split_full_name(_cell(row, full_idx))
        else:
            first, last = _cell(row, first_idx), _cell(row, last_idx)
        yield Participant(
            first_name=first,
            last_name=last,
            ticket_number=_cell(row, ticket_idx).strip(),
        )


def build_participants(rows: list[list[str]], mapping: ColumnMapping) -> list[Participant]:
    """Resolve every data row (rows[0] is the header row).

    Rows whose ticket number is empty after trimming are dropped. Names are
    not otherwise validated.
    """
    return [p for p in _iter_resolved(rows, mapping) if p.ticket_number]


def count_dropped_rows(rows: list[list[str]], mapping: ColumnMapping) -> int:
    return sum(1 for p in _iter_resolved(rows, mapping) if not p.ticket_number)
