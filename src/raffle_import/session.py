"""raffle_import.session

ImportSession: the checkpointed state machine that drives one CSV import
from file selection to a stored Competition.

State flow:
    IDLE → HEADERS_DETECTED → AWAITING_NAME_CONFIRM → AWAITING_MAPPING_CONFIRM
        → AWAITING_DUPLICATE_DECISION | AWAITING_CONVERSION_DECISION
        → COMPLETED | CANCELLED | FAILED

Stage order after the mapping is confirmed:
    1. build participants from the rows
    2. duplicate check on the raw tickets        (checkpoint)
    3. non-numeric ticket review                 (checkpoint)
    4. duplicate check on the converted tickets  (checkpoint)
    5. assemble + store the competition

Only one checkpoint is ever pending. Handlers called in a state where they
do not apply are ignored and return the current state. Terminal failures
are reported through `import_summary`, never raised.
"""

from __future__ import annotations

import logging
from enum import Enum

from raffle_import.column_roles import clean_headers
from raffle_import.competition import assemble_and_store
from raffle_import.duplicates import find_duplicate_groups, keep_first_occurrence
from raffle_import.mapping import (
    finalize_mapping,
    find_suggested_mapping,
    new_saved_mapping,
    propose_mapping,
    record_usage,
    validate_mapping,
)
from raffle_import.models import (
    ColumnMapping,
    Competition,
    DuplicateGroup,
    ImportSummary,
    Participant,
    SavedMapping,
    TicketConversion,
)
from raffle_import.participants import build_participants, count_dropped_rows
from raffle_import.shared import (
    EmptyInputError,
    ImportCounters,
    ImportFailure,
    InvalidTransitionError,
    NoDataRowsError,
)
from raffle_import.stores import (
    CompetitionStore,
    FileSource,
    InMemorySavedMappingStore,
    SavedMappingStore,
)
from raffle_import.tickets import apply_conversions, propose_conversions
from raffle_import.tokenizer import parse_csv, require_data_rows

log = logging.getLogger(__name__)


class ImportState(str, Enum):
    IDLE = "idle"
    HEADERS_DETECTED = "headers_detected"
    AWAITING_NAME_CONFIRM = "awaiting_name_confirm"
    AWAITING_MAPPING_CONFIRM = "awaiting_mapping_confirm"
    AWAITING_DUPLICATE_DECISION = "awaiting_duplicate_decision"
    AWAITING_CONVERSION_DECISION = "awaiting_conversion_decision"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_S = ImportState

_TRANSITIONS: dict[ImportState, frozenset[ImportState]] = {
    _S.IDLE: frozenset({_S.HEADERS_DETECTED, _S.FAILED}),
    _S.HEADERS_DETECTED: frozenset({_S.AWAITING_NAME_CONFIRM}),
    _S.AWAITING_NAME_CONFIRM: frozenset({_S.AWAITING_MAPPING_CONFIRM, _S.CANCELLED}),
    _S.AWAITING_MAPPING_CONFIRM: frozenset({
        _S.AWAITING_DUPLICATE_DECISION, _S.AWAITING_CONVERSION_DECISION,
        _S.COMPLETED, _S.FAILED, _S.CANCELLED,
    }),
    _S.AWAITING_DUPLICATE_DECISION: frozenset({
        _S.AWAITING_CONVERSION_DECISION, _S.AWAITING_MAPPING_CONFIRM,
        _S.COMPLETED, _S.FAILED, _S.CANCELLED,
    }),
    _S.AWAITING_CONVERSION_DECISION: frozenset({
        _S.AWAITING_DUPLICATE_DECISION, _S.AWAITING_MAPPING_CONFIRM,
        _S.COMPLETED, _S.FAILED, _S.CANCELLED,
    }),
    _S.COMPLETED: frozenset(),
    _S.CANCELLED: frozenset(),
    _S.FAILED: frozenset(),
}

_CANCELLABLE = frozenset({
    _S.AWAITING_NAME_CONFIRM,
    _S.AWAITING_MAPPING_CONFIRM,
    _S.AWAITING_DUPLICATE_DECISION,
    _S.AWAITING_CONVERSION_DECISION,
})

# Which duplicate pass a pending AWAITING_DUPLICATE_DECISION belongs to
_PHASE_ROWS = "rows"
_PHASE_CONVERTED = "converted"


class ImportSession:
    """One operator's import workflow, parameterized by its storage ports.

    `column_mapping` is the mapping carried over between imports: it seeds
    the proposal for the next file and is updated on every confirmation.
    """

    def __init__(
        self,
        competition_store: CompetitionStore,
        mapping_store: SavedMappingStore | None = None,
        column_mapping: ColumnMapping | None = None,
    ) -> None:
        self._competition_store = competition_store
        self._mapping_store = mapping_store or InMemorySavedMappingStore()
        self.column_mapping = column_mapping
        self.saved_mappings: list[SavedMapping] = self._mapping_store.get_all()
        self._unsubscribe = self._mapping_store.subscribe(self._on_mappings_changed)

        self._state = ImportState.IDLE
        self.import_summary: ImportSummary | None = None
        self.last_competition: Competition | None = None
        self.counters = ImportCounters()
        self._clear_transient()

    # ------------------------------------------------------------------
    # State plumbing
    # ------------------------------------------------------------------

    @property
    def state(self) -> ImportState:
        return self._state

    @property
    def show_name_modal(self) -> bool:
        return self._state is ImportState.AWAITING_NAME_CONFIRM

    @property
    def show_mapper_modal(self) -> bool:
        return self._state is ImportState.AWAITING_MAPPING_CONFIRM

    @property
    def show_duplicate_modal(self) -> bool:
        return self._state is ImportState.AWAITING_DUPLICATE_DECISION

    @property
    def show_conversion_modal(self) -> bool:
        return self._state is ImportState.AWAITING_CONVERSION_DECISION

    def _transition(self, target: ImportState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {target.value}")
        log.debug("import state %s -> %s", self._state.value, target.value)
        self._state = target

    def _ignored(self, handler: str) -> ImportState:
        log.debug("%s ignored in state %s", handler, self._state.value)
        return self._state

    def _clear_transient(self) -> None:
        self.selected_file: FileSource | None = None
        self.detected_headers: list[str] = []
        self.detected_mapping: ColumnMapping = ColumnMapping()
        self.duplicates: list[DuplicateGroup] = []
        self.ticket_conversions: list[TicketConversion] = []
        self.competition_name: str = ""
        self.suggested_mapping_id: str | None = None
        self._selected_mapping_id: str | None = None
        self._rows: list[list[str]] = []
        self._pending: list[Participant] = []
        self._duplicate_phase: str | None = None

    def _fail(self, failure: ImportFailure, message: str) -> ImportState:
        log.warning("import failed (%s): %s", failure.value, message)
        self.import_summary = ImportSummary(success=False, message=message, failure=failure)
        self._transition(ImportState.FAILED)
        self._clear_transient()
        return self._state

    def _on_mappings_changed(self, mappings: list[SavedMapping]) -> None:
        self.saved_mappings = list(mappings)

    def close(self) -> None:
        """Stop observing the saved-mapping store."""
        self._unsubscribe()

    # ------------------------------------------------------------------
    # File selection
    # ------------------------------------------------------------------

    def handle_file_select(self, file: FileSource) -> ImportState:
        """Start a new import; any in-flight import is discarded."""
        self._clear_transient()
        self._state = ImportState.IDLE
        self.import_summary = None
        self.last_competition = None
        self.counters = ImportCounters()
        self.selected_file = file

        try:
            rows = parse_csv(file.text())
        except (EmptyInputError, OSError, UnicodeDecodeError) as exc:
            log.info("could not read %s: %s", getattr(file, "name", "?"), exc)
            return self._fail(ImportFailure.EMPTY_INPUT, "Failed to read CSV file")

        headers = clean_headers(rows[0])
        self.detected_headers = headers
        self._transition(ImportState.HEADERS_DETECTED)

        suggested = find_suggested_mapping(self.saved_mappings, headers)
        if suggested is not None:
            self.suggested_mapping_id = suggested.id
            self._selected_mapping_id = suggested.id
        self.detected_mapping = propose_mapping(headers, suggested, self.column_mapping)
        log.info(
            "%s: %d headers, %d rows, suggested mapping=%s",
            getattr(file, "name", "?"), len(headers), len(rows), self.suggested_mapping_id,
        )
        self._transition(ImportState.AWAITING_NAME_CONFIRM)
        return self._state

    def handle_name_confirm(self, name: str) -> ImportState:
        if self._state is not ImportState.AWAITING_NAME_CONFIRM:
            return self._ignored("handle_name_confirm")
        name = (name or "").strip()
        if not name:
            return self._state
        self.competition_name = name
        self._transition(ImportState.AWAITING_MAPPING_CONFIRM)
        return self._state

    # ------------------------------------------------------------------
    # Mapping selection + confirmation
    # ------------------------------------------------------------------

    def select_saved_mapping(self, mapping_id: str | None) -> bool:
        """Load a saved mapping into detected_mapping (None = manual)."""
        if self._state not in (ImportState.AWAITING_NAME_CONFIRM, ImportState.AWAITING_MAPPING_CONFIRM):
            return False
        if mapping_id is None:
            self._selected_mapping_id = None
            self.detected_mapping = propose_mapping(
                self.detected_headers, None, self.column_mapping,
            )
            return True
        saved = next((m for m in self.saved_mappings if m.id == mapping_id), None)
        if saved is None:
            return False
        self._selected_mapping_id = saved.id
        self.detected_mapping = validate_mapping(saved.mapping, self.detected_headers)
        return True

    def new_saved_mapping(self, name: str, mapping: ColumnMapping) -> SavedMapping:
        return new_saved_mapping(name, mapping)

    def open_mapper_modal(self) -> bool:
        """Return to mapping confirmation from a pending review checkpoint."""
        if self._state is ImportState.AWAITING_MAPPING_CONFIRM:
            return True
        if self._state not in (
            ImportState.AWAITING_DUPLICATE_DECISION,
            ImportState.AWAITING_CONVERSION_DECISION,
        ):
            return False
        self.duplicates = []
        self.ticket_conversions = []
        self._pending = []
        self._duplicate_phase = None
        if self.column_mapping is not None:
            self.detected_mapping = validate_mapping(self.column_mapping, self.detected_headers)
        self._transition(ImportState.AWAITING_MAPPING_CONFIRM)
        return True

    def _persist_mapping_choice(
        self,
        save_mapping: SavedMapping | None,
        final: ColumnMapping,
    ) -> None:
        if save_mapping is not None:
            target = save_mapping
        elif self._selected_mapping_id is not None:
            existing = next(
                (m for m in self.saved_mappings if m.id == self._selected_mapping_id), None,
            )
            if existing is None:
                return
            # Usage only counts when the confirmed mapping is the saved one
            applied = finalize_mapping(validate_mapping(existing.mapping, self.detected_headers))
            if applied != final:
                log.info("confirmed mapping differs from saved mapping %s; usage not recorded", existing.id)
                return
            target = record_usage(existing)
        else:
            return
        try:
            self._mapping_store.save(target)
        except Exception as exc:
            log.warning("saving mapping %s failed: %s", target.id, exc)
            self.counters.saved_mapping_errors += 1
            self.counters.warnings.append(f"saved mapping {target.id}: {type(exc).__name__}: {exc}")

    def handle_mapping_confirm(
        self,
        mapping: ColumnMapping,
        save_mapping: SavedMapping | None = None,
        use_full_name: bool | None = None,
    ) -> ImportState:
        """Confirm the mapping and run the pipeline up to the next checkpoint.

        Fields naming a header absent from the file are dropped first; an
        incomplete result leaves the session waiting for confirmation.
        """
        if self._state is not ImportState.AWAITING_MAPPING_CONFIRM or self.selected_file is None:
            return self._ignored("handle_mapping_confirm")

        final = finalize_mapping(validate_mapping(mapping, self.detected_headers), use_full_name)
        if not final.is_complete():
            log.info("mapping incomplete; confirmation blocked: %s", final.to_dict())
            return self._state

        self._persist_mapping_choice(save_mapping, final)
        self.column_mapping = final

        try:
            rows = parse_csv(self.selected_file.text())
        except (EmptyInputError, OSError, UnicodeDecodeError) as exc:
            log.info("re-read failed: %s", exc)
            return self._fail(ImportFailure.EMPTY_INPUT, "Failed to read CSV file")
        try:
            require_data_rows(rows)
        except NoDataRowsError as exc:
            return self._fail(exc.failure, "CSV file has no data rows")

        self._rows = rows
        self.counters.rows_read = len(rows) - 1
        self.counters.rows_dropped_empty_ticket = count_dropped_rows(rows, final)
        participants = build_participants(rows, final)
        if self.counters.rows_dropped_empty_ticket:
            log.info("dropped %d rows without a ticket number", self.counters.rows_dropped_empty_ticket)
        if not participants:
            return self._fail(ImportFailure.NO_VALID_PARTICIPANTS, "No valid participants found")

        groups = find_duplicate_groups(participants)
        if groups:
            return self._await_duplicates(groups, _PHASE_ROWS)
        return self._review_conversions(participants)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def _await_duplicates(self, groups: list[DuplicateGroup], phase: str) -> ImportState:
        log.info("%d duplicate ticket groups (%s pass)", len(groups), phase)
        self.duplicates = groups
        self.ticket_conversions = []
        self._duplicate_phase = phase
        self.counters.duplicate_groups += len(groups)
        self._transition(ImportState.AWAITING_DUPLICATE_DECISION)
        return self._state

    def _review_conversions(self, participants: list[Participant]) -> ImportState:
        conversions = propose_conversions(participants)
        if not conversions:
            return self._assemble(participants)
        self._pending = participants
        self.duplicates = []
        self.ticket_conversions = conversions
        self.counters.tickets_non_numeric = len(conversions)
        self.counters.tickets_unconvertible = sum(1 for c in conversions if c.converted is None)
        log.info(
            "%d non-numeric tickets (%d unconvertible) awaiting review",
            len(conversions), self.counters.tickets_unconvertible,
        )
        self._transition(ImportState.AWAITING_CONVERSION_DECISION)
        return self._state

    def handle_duplicate_proceed(self) -> ImportState:
        """Keep the first occurrence of every duplicated ticket."""
        if self._state is not ImportState.AWAITING_DUPLICATE_DECISION:
            return self._ignored("handle_duplicate_proceed")

        if self._duplicate_phase == _PHASE_ROWS:
            candidates = build_participants(self._rows, self.column_mapping)
        else:
            candidates = self._pending
        kept = keep_first_occurrence(candidates)
        self.counters.duplicate_rows_discarded += len(candidates) - len(kept)
        self.duplicates = []

        if self._duplicate_phase == _PHASE_ROWS:
            self._duplicate_phase = None
            return self._review_conversions(kept)
        self._duplicate_phase = None
        return self._assemble(kept)

    def handle_conversion_proceed(self) -> ImportState:
        """Apply digit extraction, then run the mandatory second duplicate pass."""
        if self._state is not ImportState.AWAITING_CONVERSION_DECISION:
            return self._ignored("handle_conversion_proceed")

        converted = apply_conversions(self._pending)
        self.ticket_conversions = []
        if not converted:
            return self._fail(
                ImportFailure.NO_VALID_PARTICIPANTS,
                "No valid participants found after conversion",
            )
        groups = find_duplicate_groups(converted)
        if groups:
            self._pending = converted
            return self._await_duplicates(groups, _PHASE_CONVERTED)
        return self._assemble(converted)

    def cancel(self) -> ImportState:
        """Abort the import at any pending checkpoint; nothing is stored."""
        if self._state not in _CANCELLABLE:
            return self._ignored("cancel")
        log.info("import cancelled in state %s", self._state.value)
        self._transition(ImportState.CANCELLED)
        self._clear_transient()
        return self._state

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _assemble(self, participants: list[Participant]) -> ImportState:
        if not participants:
            return self._fail(ImportFailure.NO_VALID_PARTICIPANTS, "No valid participants found")
        summary, competition = assemble_and_store(
            self._competition_store, self.competition_name, participants,
        )
        self.import_summary = summary
        self.last_competition = competition
        if summary.success:
            self.counters.participants_imported = summary.participant_count
            self._transition(ImportState.COMPLETED)
        else:
            self._transition(ImportState.FAILED)
        self._clear_transient()
        return self._state
