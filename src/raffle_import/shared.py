"""raffle_import.shared

Shared pieces used by every stage of the CSV import pipeline and the CLI.
Includes the exception taxonomy, ImportCounters, and report-writing support.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Failure taxonomy
# ---------------------------------------------------------------------------

class ImportFailure(str, Enum):
    EMPTY_INPUT = "empty_input"
    NO_DATA_ROWS = "no_data_rows"
    NO_VALID_PARTICIPANTS = "no_valid_participants"
    STORAGE_FAILURE = "storage_failure"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class EmptyInputError(ValueError):
    """Raised when a file contains no non-blank lines."""

    failure = ImportFailure.EMPTY_INPUT


class NoDataRowsError(ValueError):
    """Raised when a file has a header row but no data rows."""

    failure = ImportFailure.NO_DATA_ROWS


class NoValidParticipantsError(ValueError):
    """Raised when every data row was dropped by filtering or conversion."""

    failure = ImportFailure.NO_VALID_PARTICIPANTS


class StorageError(Exception):
    """Raised by competition store adapters when a write is rejected."""

    failure = ImportFailure.STORAGE_FAILURE


class InvalidTransitionError(RuntimeError):
    """Raised when the import state machine is asked for an undeclared transition."""


class SavedMappingFileError(ValueError):
    """Raised when a saved-mapping YAML file fails validation."""


# ---------------------------------------------------------------------------
# ImportCounters
# ---------------------------------------------------------------------------

@dataclass
class ImportCounters:
    rows_read: int = 0
    rows_dropped_empty_ticket: int = 0
    duplicate_groups: int = 0
    duplicate_rows_discarded: int = 0
    tickets_non_numeric: int = 0
    tickets_unconvertible: int = 0
    participants_imported: int = 0
    saved_mapping_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


def build_import_report(
    counters: ImportCounters,
    competition_name: str | None,
    dry_run: bool = False,
) -> str:
    lines = [
        "=" * 60,
        "Raffle CSV Import Report",
        f"  competition: {competition_name or '-'}",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  rows read:                 {counters.rows_read}",
        f"  rows dropped (no ticket):  {counters.rows_dropped_empty_ticket}",
        f"  duplicate groups:          {counters.duplicate_groups}",
        f"  duplicate rows discarded:  {counters.duplicate_rows_discarded}",
        f"  non-numeric tickets:       {counters.tickets_non_numeric}",
        f"  unconvertible tickets:     {counters.tickets_unconvertible}",
        f"  participants imported:     {counters.participants_imported}",
        f"  saved-mapping errors:      {counters.saved_mapping_errors}",
    ]
    if counters.warnings:
        lines.append(f"\nWarnings ({len(counters.warnings)}):")
        for w in counters.warnings[:20]:
            lines.append(f"  {w}")
        if len(counters.warnings) > 20:
            lines.append(f"  ... and {len(counters.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: ImportCounters,
    summary: dict[str, Any] | None = None,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "summary": summary,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
