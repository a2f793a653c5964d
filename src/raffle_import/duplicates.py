"""raffle_import.duplicates

Ticket-number duplicate detection and first-occurrence collapsing.
"""

from __future__ import annotations

from collections import defaultdict

from raffle_import.models import DuplicateGroup, Participant


def find_duplicate_groups(participants: list[Participant]) -> list[DuplicateGroup]:
    """Group by exact ticket string; return groups with two or more members.

    Groups come back in order of each ticket's first appearance.
    """
    by_ticket: dict[str, list[str]] = defaultdict(list)
    for p in participants:
        by_ticket[p.ticket_number].append(p.display_name)
    return [
        DuplicateGroup(ticket_number=ticket, names=names)
        for ticket, names in by_ticket.items()
        if len(names) > 1
    ]


def keep_first_occurrence(participants: list[Participant]) -> list[Participant]:
    """Keep the earliest participant for each ticket, preserving order."""
    seen: set[str] = set()
    kept: list[Participant] = []
    for p in participants:
        if p.ticket_number in seen:
            continue
        seen.add(p.ticket_number)
        kept.append(p)
    return kept
