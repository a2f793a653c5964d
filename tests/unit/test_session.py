"""Unit tests for raffle_import.session.ImportSession.

Drives the state machine end to end with in-memory stores; no database.
"""

from __future__ import annotations

import pytest

from raffle_import.models import ColumnMapping, Participant, SavedMapping
from raffle_import.session import ImportSession, ImportState
from raffle_import.shared import ImportFailure, StorageError
from raffle_import.stores import (
    InMemoryCompetitionStore,
    InMemorySavedMappingStore,
    TextFileSource,
)


class SpyCompetitionStore(InMemoryCompetitionStore):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def add_competition(self, competition):
        self.calls += 1
        super().add_competition(competition)


class FailingCompetitionStore:
    def __init__(self) -> None:
        self.calls = 0

    def add_competition(self, competition):
        self.calls += 1
        raise StorageError("disk full")


class ReadOnlyMappingStore(InMemorySavedMappingStore):
    def save(self, mapping):
        raise OSError("read-only")


@pytest.fixture
def store():
    return SpyCompetitionStore()


@pytest.fixture
def mappings():
    return InMemorySavedMappingStore()


@pytest.fixture
def session(store, mappings):
    s = ImportSession(store, mappings)
    yield s
    s.close()


def _select(session, text, name="Spring Draw"):
    session.handle_file_select(TextFileSource("entrants.csv", text))
    return session.handle_name_confirm(name)


def _run(session, text, name="Spring Draw"):
    _select(session, text, name)
    return session.handle_mapping_confirm(session.detected_mapping)


def _only_competition(store):
    assert len(store.competitions) == 1
    return next(iter(store.competitions.values()))


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------

class TestHappyPath:
    def test_first_last_ticket_file(self, session, store):
        state = _run(session, "First Name,Last Name,Ticket #\nJohn,Doe,1\nJane,Roe,2\n")
        assert state is ImportState.COMPLETED
        summary = session.import_summary
        assert summary.success is True
        assert summary.message == 'Successfully imported 2 participants into "Spring Draw"'
        comp = _only_competition(store)
        assert comp.name == "Spring Draw"
        assert comp.participants == [Participant("John", "Doe", "1"), Participant("Jane", "Roe", "2")]
        assert comp.id.startswith("comp-")
        assert comp.created_at == comp.updated_at

    def test_duplicate_checkpoint_then_proceed(self, session, store):
        state = _run(session, "Name,Ticket\nJohn Doe,5\nJane Roe,6\nJohn Doe,5\n")
        assert state is ImportState.AWAITING_DUPLICATE_DECISION
        assert len(session.duplicates) == 1
        assert session.duplicates[0].ticket_number == "5"
        assert session.duplicates[0].names == ["John Doe", "John Doe"]
        assert store.calls == 0

        assert session.handle_duplicate_proceed() is ImportState.COMPLETED
        comp = _only_competition(store)
        assert comp.participant_count == 2
        assert session.counters.rows_read == 3
        assert session.counters.duplicate_groups == 1
        assert session.counters.duplicate_rows_discarded == 1
        assert session.counters.participants_imported == 2

    def test_first_occurrence_kept(self, session, store):
        _run(session, "Name,Ticket\nAlice Smith,001\nBob Jones,001\n")
        assert session.duplicates[0].names == ["Alice Smith", "Bob Jones"]
        session.handle_duplicate_proceed()
        assert _only_competition(store).participants == [Participant("Alice", "Smith", "001")]

    def test_semicolon_file(self, session, store):
        assert _run(session, "Full Name;Ticket\nAnn Lee;10\n") is ImportState.COMPLETED
        assert _only_competition(store).participants == [Participant("Ann", "Lee", "10")]

    def test_transient_state_cleared_after_completion(self, session):
        _run(session, "Name,Ticket\nAnn Lee,1\n")
        assert session.selected_file is None
        assert session.detected_headers == []
        assert session.duplicates == []
        assert session.ticket_conversions == []
        assert session.competition_name == ""


# ---------------------------------------------------------------------------
# Ticket conversion
# ---------------------------------------------------------------------------

class TestTicketConversion:
    def test_conversion_review_and_exclusion(self, session, store):
        state = _run(session, "Name,Ticket\nAnn Lee,A-001\nBo Ray,---\nCy Dunn,7\n")
        assert state is ImportState.AWAITING_CONVERSION_DECISION
        assert [(c.original, c.converted) for c in session.ticket_conversions] == [
            ("A-001", "001"), ("---", None),
        ]
        assert session.counters.tickets_non_numeric == 2
        assert session.counters.tickets_unconvertible == 1

        assert session.handle_conversion_proceed() is ImportState.COMPLETED
        assert _only_competition(store).participants == [
            Participant("Ann", "Lee", "001"),
            Participant("Cy", "Dunn", "7"),
        ]

    def test_second_duplicate_pass_on_converted_tickets(self, session, store):
        state = _run(session, "Name,Ticket\nAnn Lee,A-1\nBo Ray,1\n")
        assert state is ImportState.AWAITING_CONVERSION_DECISION

        state = session.handle_conversion_proceed()
        assert state is ImportState.AWAITING_DUPLICATE_DECISION
        assert session.duplicates[0].ticket_number == "1"
        assert session.duplicates[0].names == ["Ann Lee", "Bo Ray"]

        assert session.handle_duplicate_proceed() is ImportState.COMPLETED
        assert _only_competition(store).participants == [Participant("Ann", "Lee", "1")]

    def test_all_unconvertible_fails(self, session, store):
        _run(session, "Name,Ticket\nAnn Lee,---\nBo Ray,abc\n")
        assert session.handle_conversion_proceed() is ImportState.FAILED
        assert session.import_summary.failure is ImportFailure.NO_VALID_PARTICIPANTS
        assert session.import_summary.message == "No valid participants found after conversion"
        assert store.calls == 0

    def test_duplicates_then_conversion(self, session, store):
        state = _run(session, "Name,Ticket\nAnn Lee,X9\nBo Ray,X9\nCy Dunn,3\n")
        assert state is ImportState.AWAITING_DUPLICATE_DECISION
        assert session.handle_duplicate_proceed() is ImportState.AWAITING_CONVERSION_DECISION
        assert [c.original for c in session.ticket_conversions] == ["X9"]
        assert session.handle_conversion_proceed() is ImportState.COMPLETED
        assert _only_competition(store).participants == [
            Participant("Ann", "Lee", "9"),
            Participant("Cy", "Dunn", "3"),
        ]


# ---------------------------------------------------------------------------
# Terminal failures
# ---------------------------------------------------------------------------

class TestFailures:
    def test_empty_file(self, session):
        state = session.handle_file_select(TextFileSource("empty.csv", "  \n\n"))
        assert state is ImportState.FAILED
        assert session.import_summary.success is False
        assert session.import_summary.failure is ImportFailure.EMPTY_INPUT
        assert session.import_summary.message == "Failed to read CSV file"
        assert session.selected_file is None

    def test_header_only(self, session, store):
        assert _run(session, "Name,Ticket\n") is ImportState.FAILED
        assert session.import_summary.failure is ImportFailure.NO_DATA_ROWS
        assert session.import_summary.message == "CSV file has no data rows"
        assert store.calls == 0

    def test_all_tickets_empty_never_stores(self, session, store):
        assert _run(session, "Name,Ticket\nAnn Lee,\nBo Ray,   \n") is ImportState.FAILED
        assert session.import_summary.failure is ImportFailure.NO_VALID_PARTICIPANTS
        assert session.import_summary.message == "No valid participants found"
        assert session.counters.rows_dropped_empty_ticket == 2
        assert store.calls == 0

    def test_storage_rejection(self, mappings):
        failing = FailingCompetitionStore()
        session = ImportSession(failing, mappings)
        assert _run(session, "Name,Ticket\nAnn Lee,1\n") is ImportState.FAILED
        assert failing.calls == 1
        assert session.import_summary.failure is ImportFailure.STORAGE_FAILURE
        assert session.import_summary.message == "Failed to create competition"
        assert session.last_competition is None
        assert session.duplicates == []

    def test_reselecting_file_after_failure_restarts(self, session, store):
        session.handle_file_select(TextFileSource("empty.csv", ""))
        assert _run(session, "Name,Ticket\nAnn Lee,1\n") is ImportState.COMPLETED
        assert session.import_summary.success is True


# ---------------------------------------------------------------------------
# Local recovery and ignored actions
# ---------------------------------------------------------------------------

class TestRecoveryAndIgnoredActions:
    def test_incomplete_mapping_keeps_waiting(self, session, store):
        _select(session, "Name,Ticket\nAnn Lee,1\n")
        state = session.handle_mapping_confirm(ColumnMapping(full_name="Name"))
        assert state is ImportState.AWAITING_MAPPING_CONFIRM
        assert session.import_summary is None
        assert store.calls == 0

    def test_unknown_name_header_keeps_waiting(self, session, store):
        _select(session, "First Name,Last Name,Ticket\nAnn,Lee,1\nBo,Ray,2\n")
        state = session.handle_mapping_confirm(
            ColumnMapping(first_name="Frist Name", last_name="Last Name", ticket_number="Ticket"),
        )
        assert state is ImportState.AWAITING_MAPPING_CONFIRM
        assert session.import_summary is None
        assert store.calls == 0

    def test_unknown_ticket_header_keeps_waiting(self, session, store):
        _select(session, "Name,Ticket\nAnn Lee,1\n")
        state = session.handle_mapping_confirm(ColumnMapping(full_name="Name", ticket_number="Tix"))
        assert state is ImportState.AWAITING_MAPPING_CONFIRM
        assert session.import_summary is None
        assert store.calls == 0

        state = session.handle_mapping_confirm(ColumnMapping(full_name="Name", ticket_number="Ticket"))
        assert state is ImportState.COMPLETED

    def test_blank_competition_name_ignored(self, session):
        session.handle_file_select(TextFileSource("a.csv", "Name,Ticket\nAnn Lee,1\n"))
        assert session.handle_name_confirm("   ") is ImportState.AWAITING_NAME_CONFIRM

    def test_name_is_trimmed(self, session, store):
        _run(session, "Name,Ticket\nAnn Lee,1\n", name="  Autumn  ")
        assert _only_competition(store).name == "Autumn"

    def test_handlers_ignored_out_of_state(self, session):
        assert session.handle_duplicate_proceed() is ImportState.IDLE
        assert session.handle_conversion_proceed() is ImportState.IDLE
        assert session.handle_mapping_confirm(
            ColumnMapping(full_name="Name", ticket_number="Ticket"),
        ) is ImportState.IDLE
        assert session.cancel() is ImportState.IDLE

    def test_only_one_modal_at_a_time(self, session):
        def shown():
            return [
                session.show_name_modal,
                session.show_mapper_modal,
                session.show_duplicate_modal,
                session.show_conversion_modal,
            ].count(True)

        session.handle_file_select(TextFileSource("a.csv", "Name,Ticket\nA B,X1\nC D,X1\n"))
        assert session.show_name_modal and shown() == 1
        session.handle_name_confirm("Draw")
        assert session.show_mapper_modal and shown() == 1
        session.handle_mapping_confirm(session.detected_mapping)
        assert session.show_duplicate_modal and shown() == 1
        session.handle_duplicate_proceed()
        assert session.show_conversion_modal and shown() == 1

    def test_reopen_mapper_from_duplicate_checkpoint(self, session, store):
        _run(session, "Name,Ticket,Alt\nAnn Lee,1,7\nBo Ray,1,8\n")
        assert session.open_mapper_modal() is True
        assert session.state is ImportState.AWAITING_MAPPING_CONFIRM
        assert session.duplicates == []

        state = session.handle_mapping_confirm(ColumnMapping(full_name="Name", ticket_number="Alt"))
        assert state is ImportState.COMPLETED
        assert [p.ticket_number for p in _only_competition(store).participants] == ["7", "8"]


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class TestCancel:
    @pytest.mark.parametrize("text", [
        "Name,Ticket\nAnn Lee,1\nBo Ray,1\n",
        "Name,Ticket\nAnn Lee,A1\n",
    ])
    def test_cancel_at_checkpoint(self, session, store, text):
        state = _run(session, text)
        assert state in (
            ImportState.AWAITING_DUPLICATE_DECISION,
            ImportState.AWAITING_CONVERSION_DECISION,
        )
        assert session.cancel() is ImportState.CANCELLED
        assert session.import_summary is None
        assert session.duplicates == []
        assert session.ticket_conversions == []
        assert store.calls == 0

    def test_cancel_at_name_prompt(self, session):
        session.handle_file_select(TextFileSource("a.csv", "Name,Ticket\nAnn Lee,1\n"))
        assert session.cancel() is ImportState.CANCELLED
        assert session.selected_file is None


# ---------------------------------------------------------------------------
# Saved mappings
# ---------------------------------------------------------------------------

def _saved(mapping_id, mapping, usage_count=1, is_default=False):
    return SavedMapping(
        id=mapping_id, name=mapping_id.title(), mapping=mapping,
        usage_count=usage_count, is_default=is_default,
    )


class TestSavedMappings:
    def test_suggested_mapping_is_proposed_and_usage_recorded(self, store):
        saved = _saved("shop", ColumnMapping(full_name="Participant", ticket_number="Code"), usage_count=2)
        mappings = InMemorySavedMappingStore([saved])
        session = ImportSession(store, mappings)

        _select(session, "Participant,Code,Email\nAnn Lee,5,a@x\n")
        assert session.suggested_mapping_id == "shop"
        assert session.detected_mapping == saved.mapping

        assert session.handle_mapping_confirm(session.detected_mapping) is ImportState.COMPLETED
        assert mappings.get_all()[0].usage_count == 3
        assert session.saved_mappings[0].usage_count == 3
        session.close()

    def test_usage_not_recorded_when_confirmed_mapping_differs(self, store):
        saved = _saved("shop", ColumnMapping(full_name="Name", ticket_number="Ticket"), usage_count=2)
        mappings = InMemorySavedMappingStore([saved])
        session = ImportSession(store, mappings)

        _select(session, "Name,Ticket,Alt\nAnn Lee,1,7\n")
        assert session.suggested_mapping_id == "shop"
        state = session.handle_mapping_confirm(ColumnMapping(full_name="Name", ticket_number="Alt"))
        assert state is ImportState.COMPLETED
        assert mappings.get_all()[0].usage_count == 2
        session.close()

    def test_default_mapping_preferred(self, store):
        a = _saved("a", ColumnMapping(full_name="Name", ticket_number="Ticket"))
        b = _saved("b", ColumnMapping(full_name="Name", ticket_number="Ticket"), is_default=True)
        session = ImportSession(store, InMemorySavedMappingStore([a, b]))
        _select(session, "Name,Ticket\nAnn Lee,1\n")
        assert session.suggested_mapping_id == "b"

    def test_stale_saved_mapping_partially_applied(self, store):
        stale = _saved("old", ColumnMapping(full_name="Name", ticket_number="Ticket No"))
        session = ImportSession(store, InMemorySavedMappingStore([stale]))
        _select(session, "Name,Ticket\nAnn Lee,1\n")
        assert session.suggested_mapping_id is None
        assert session.select_saved_mapping("old") is True
        assert session.detected_mapping == ColumnMapping(full_name="Name")
        assert session.select_saved_mapping("missing") is False

    def test_save_new_mapping_on_confirm(self, session, mappings):
        _select(session, "Name,Ticket\nAnn Lee,1\n")
        new = session.new_saved_mapping("Shop export", session.detected_mapping)
        session.handle_mapping_confirm(session.detected_mapping, save_mapping=new)
        stored = mappings.get_all()
        assert [m.name for m in stored] == ["Shop export"]
        assert stored[0].usage_count == 1

    def test_mapping_store_failure_does_not_block_import(self, store):
        session = ImportSession(store, ReadOnlyMappingStore())
        _select(session, "Name,Ticket\nAnn Lee,1\n")
        new = session.new_saved_mapping("x", session.detected_mapping)
        assert session.handle_mapping_confirm(session.detected_mapping, save_mapping=new) is ImportState.COMPLETED
        assert session.counters.saved_mapping_errors == 1

    def test_store_changes_refresh_cached_list(self, session, mappings):
        assert session.saved_mappings == []
        mappings.save(_saved("ext", ColumnMapping(full_name="Name", ticket_number="Ticket")))
        assert [m.id for m in session.saved_mappings] == ["ext"]

        session.close()
        mappings.save(_saved("later", ColumnMapping(full_name="Name", ticket_number="Ticket")))
        assert [m.id for m in session.saved_mappings] == ["ext"]

    def test_confirmed_mapping_carries_over(self, session):
        _select(session, "Who,Ref\nAnn Lee,1\n")
        chosen = ColumnMapping(full_name="Who", ticket_number="Ref")
        session.handle_mapping_confirm(chosen)
        assert session.column_mapping == chosen

        _select(session, "Who,Ref\nBo Ray,2\n")
        assert session.detected_mapping == chosen

    def test_carried_over_mapping_falls_back_to_heuristic(self):
        session = ImportSession(
            InMemoryCompetitionStore(),
            column_mapping=ColumnMapping(full_name="Who", ticket_number="Ref"),
        )
        _select(session, "Participant,Entry\nAnn Lee,1\n")
        assert session.detected_mapping == ColumnMapping(full_name="Participant", ticket_number="Entry")
