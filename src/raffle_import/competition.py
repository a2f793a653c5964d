"""raffle_import.competition

Packages a confirmed participant list into a Competition and hands it to
the competition store.
"""

from __future__ import annotations

import logging
import uuid

from raffle_import.models import Competition, ImportSummary, Participant, utcnow
from raffle_import.shared import ImportFailure, NoValidParticipantsError
from raffle_import.stores import CompetitionStore

log = logging.getLogger(__name__)


def create_competition(name: str, participants: list[Participant]) -> Competition:
    now = utcnow()
    return Competition(
        id=f"comp-{uuid.uuid4().hex}",
        name=name,
        participants=list(participants),
        created_at=now,
        updated_at=now,
    )


def success_message(count: int, name: str) -> str:
    return f'Successfully imported {count} participants into "{name}"'


def assemble_and_store(
    store: CompetitionStore,
    name: str,
    participants: list[Participant],
) -> tuple[ImportSummary, Competition | None]:
    """Build the competition and persist it.

    Store failures are reported in the returned summary, never re-raised.
    """
    if not participants:
        raise NoValidParticipantsError("no participants to assemble")

    competition = create_competition(name, participants)
    try:
        store.add_competition(competition)
    except Exception:
        log.exception("add_competition failed for %s (%s)", competition.id, name)
        return (
            ImportSummary(
                success=False,
                message="Failed to create competition",
                failure=ImportFailure.STORAGE_FAILURE,
            ),
            None,
        )

    log.info(
        "Stored competition %s %r with %d participants",
        competition.id, name, competition.participant_count,
    )
    return (
        ImportSummary(
            success=True,
            message=success_message(competition.participant_count, name),
            participant_count=competition.participant_count,
        ),
        competition,
    )
