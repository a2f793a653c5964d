"""raffle_import.column_roles

Heuristic header classifier. The guess it returns is only a starting point
for the mapping dialog and is never treated as confirmed.
"""

from __future__ import annotations

from raffle_import.models import ColumnMapping

FULL_NAME_HEADERS = frozenset({"name", "full name", "fullname", "participant"})
TICKET_HEADERS = frozenset({"no", "#", "id", "entry"})


def clean_headers(headers: list[str]) -> list[str]:
    """Drop empty and whitespace-only header cells."""
    return [h for h in headers if h and h.strip()]


def classify_header(header: str) -> str | None:
    """Return the first role (by priority) a header matches, or None."""
    lower = header.lower()
    if "first" in lower and "name" in lower:
        return "first_name"
    if "last" in lower and "name" in lower:
        return "last_name"
    if lower in FULL_NAME_HEADERS:
        return "full_name"
    if "ticket" in lower or "number" in lower or lower in TICKET_HEADERS:
        return "ticket_number"
    return None


def detect_column_mapping(headers: list[str]) -> ColumnMapping:
    """Guess a mapping from header names.

    Each role is sticky: the first header to match a role keeps it.
    """
    found: dict[str, str] = {}
    for header in headers:
        role = classify_header(header)
        if role is not None and role not in found:
            found[role] = header
    return ColumnMapping(**found)
