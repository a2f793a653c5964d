"""raffle_import.mapping

Mapping reconciliation: validating proposals against the headers of the
current file, choosing the initial proposal, and finalizing a confirmed
mapping.

Proposal priority:
    1. suggested saved mapping (default first, then store order) whose
       referenced headers are all present
    2. mapping carried over from the previous confirmation
    3. heuristic guess from column_roles
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace

from raffle_import.column_roles import detect_column_mapping
from raffle_import.models import ColumnMapping, SavedMapping, utcnow

log = logging.getLogger(__name__)


def validate_mapping(mapping: ColumnMapping, headers: list[str]) -> ColumnMapping:
    """Drop every field that names a header absent from `headers`."""
    present = set(headers)
    return ColumnMapping(
        first_name=mapping.first_name if mapping.first_name in present else None,
        last_name=mapping.last_name if mapping.last_name in present else None,
        full_name=mapping.full_name if mapping.full_name in present else None,
        ticket_number=mapping.ticket_number if mapping.ticket_number in present else None,
    )


def mapping_matches_headers(mapping: ColumnMapping, headers: list[str]) -> bool:
    present = set(headers)
    referenced = mapping.referenced_headers()
    return bool(referenced) and all(h in present for h in referenced)


def find_suggested_mapping(
    saved_mappings: list[SavedMapping],
    headers: list[str],
) -> SavedMapping | None:
    """Return the saved mapping to pre-select for these headers, if any."""
    matching = [m for m in saved_mappings if mapping_matches_headers(m.mapping, headers)]
    for saved in matching:
        if saved.is_default:
            return saved
    return matching[0] if matching else None


def propose_mapping(
    headers: list[str],
    suggested: SavedMapping | None = None,
    carried_over: ColumnMapping | None = None,
) -> ColumnMapping:
    """Pick the initial mapping shown for confirmation."""
    if suggested is not None:
        validated = validate_mapping(suggested.mapping, headers)
        if not validated.is_empty():
            log.debug("Proposing saved mapping %s (%s)", suggested.id, suggested.name)
            return validated
    if carried_over is not None:
        validated = validate_mapping(carried_over, headers)
        if not validated.is_empty():
            log.debug("Proposing carried-over mapping")
            return validated
    return detect_column_mapping(headers)


def finalize_mapping(
    mapping: ColumnMapping,
    use_full_name: bool | None = None,
) -> ColumnMapping:
    """Keep exactly one naming mode.

    When `use_full_name` is None the full-name mode is chosen whenever a
    full-name column is set.
    """
    if use_full_name is None:
        use_full_name = bool(mapping.full_name)
    if use_full_name:
        return ColumnMapping(full_name=mapping.full_name, ticket_number=mapping.ticket_number)
    return ColumnMapping(
        first_name=mapping.first_name,
        last_name=mapping.last_name,
        ticket_number=mapping.ticket_number,
    )


def new_saved_mapping(name: str, mapping: ColumnMapping) -> SavedMapping:
    now = utcnow()
    return SavedMapping(
        id=f"mapping-{uuid.uuid4().hex}",
        name=name.strip(),
        mapping=mapping,
        usage_count=1,
        is_default=False,
        created_at=now,
        updated_at=now,
    )


def record_usage(saved: SavedMapping) -> SavedMapping:
    """Return a copy with usage_count incremented and updated_at refreshed."""
    return replace(saved, usage_count=(saved.usage_count or 0) + 1, updated_at=utcnow())
