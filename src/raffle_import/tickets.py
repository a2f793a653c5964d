"""raffle_import.tickets

Non-numeric ticket detection and digit-extraction conversion.
"""

from __future__ import annotations

import re

from raffle_import.models import Participant, TicketConversion

_NUMERIC = re.compile(r"\d+", re.ASCII)
_NON_DIGIT = re.compile(r"\D", re.ASCII)


def is_numeric_ticket(ticket: str) -> bool:
    return _NUMERIC.fullmatch(ticket) is not None


def convert_ticket(ticket: str) -> str | None:
    """Strip every non-digit; None when nothing is left."""
    digits = _NON_DIGIT.sub("", ticket)
    return digits or None


def propose_conversions(participants: list[Participant]) -> list[TicketConversion]:
    return [
        TicketConversion(
            original=p.ticket_number,
            converted=convert_ticket(p.ticket_number),
            first_name=p.first_name,
            last_name=p.last_name,
        )
        for p in participants
        if not is_numeric_ticket(p.ticket_number)
    ]


def apply_conversions(participants: list[Participant]) -> list[Participant]:
    """Replace non-numeric tickets with their digits, in row order.

    Numeric tickets pass through unchanged; tickets that convert to None
    are excluded.
    """
    result: list[Participant] = []
    for p in participants:
        if is_numeric_ticket(p.ticket_number):
            result.append(p)
            continue
        converted = convert_ticket(p.ticket_number)
        if converted is None:
            continue
        result.append(Participant(p.first_name, p.last_name, converted))
    return result
