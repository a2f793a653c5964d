"""raffle_import.import_csv

Unified CLI entrypoint for raffle entrant imports and saved-mapping
management.

Modes (--mode):
  import                : import one CSV/TSV file into a competition (default)
  list_mappings         : print saved column mappings
  set_default_mapping   : mark --saved-mapping-id as the default mapping
  clear_default_mapping : remove the default flag
  delete_mapping        : delete --saved-mapping-id

Usage (import into PostgreSQL):
    python -m raffle_import.import_csv \\
        --csv-path "entrants/october-draw.csv" \\
        --competition-name "October Draw" \\
        --db-dsn "$DB_DSN" \\
        --on-duplicates proceed --on-conversion proceed

Usage (import into local JSON files, explicit columns, save the mapping):
    python -m raffle_import.import_csv \\
        --csv-path entrants.tsv \\
        --competition-name "Summer Raffle" \\
        --full-name-col "Name" --ticket-col "Ticket #" \\
        --save-mapping-as "Shop export"
"""

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import click

from raffle_import.mapping import finalize_mapping
from raffle_import.models import ColumnMapping, SavedMapping
from raffle_import.session import ImportSession, ImportState
from raffle_import.shared import SavedMappingFileError, build_import_report, write_run_report
from raffle_import.stores import (
    CompetitionStore,
    InMemoryCompetitionStore,
    InMemorySavedMappingStore,
    LocalCompetitionStore,
    PathFileSource,
    PostgresCompetitionStore,
    SavedMappingStore,
    YamlSavedMappingStore,
)

DECISIONS = ["proceed", "cancel", "prompt"]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_mapping(mapping: ColumnMapping) -> str:
    parts = []
    if mapping.full_name:
        parts.append(f"Full Name: {mapping.full_name}")
    else:
        if mapping.first_name:
            parts.append(f"First: {mapping.first_name}")
        if mapping.last_name:
            parts.append(f"Last: {mapping.last_name}")
    if mapping.ticket_number:
        parts.append(f"Ticket: {mapping.ticket_number}")
    return ", ".join(parts) or "(empty)"


def format_saved_mapping(saved: SavedMapping) -> str:
    flag = " (Default)" if saved.is_default else ""
    return (
        f"{saved.id}  {saved.name}{flag}  used={saved.usage_count}  "
        f"{format_mapping(saved.mapping)}"
    )


def mapping_from_flags(
    base: ColumnMapping,
    first_name_col: str | None,
    last_name_col: str | None,
    full_name_col: str | None,
    ticket_col: str | None,
) -> tuple[ColumnMapping, bool | None]:
    """Overlay explicit column flags on the proposed mapping.

    Returns (mapping, use_full_name); use_full_name is None when no naming
    flag was given so the proposal decides.
    """
    overrides = {
        "first_name": first_name_col,
        "last_name": last_name_col,
        "full_name": full_name_col,
        "ticket_number": ticket_col,
    }
    mapping = replace(base, **{k: v for k, v in overrides.items() if v})
    if full_name_col:
        return mapping, True
    if first_name_col or last_name_col:
        return mapping, False
    return mapping, None


def _decide(policy: str, question: str) -> bool:
    if policy == "proceed":
        return True
    if policy == "cancel":
        return False
    return click.confirm(question, default=True)


# ---------------------------------------------------------------------------
# Import run
# ---------------------------------------------------------------------------

def _select_competition_store(
    dry_run: bool,
    db_dsn: str | None,
    competitions_dir: str,
) -> CompetitionStore:
    if dry_run:
        return InMemoryCompetitionStore()
    if db_dsn:
        return PostgresCompetitionStore(db_dsn)
    return LocalCompetitionStore(base_dir=Path(competitions_dir))


def run_import(
    run_id: str,
    session: ImportSession,
    csv_path: Path,
    competition_name: str | None,
    saved_mapping_id: str | None,
    first_name_col: str | None,
    last_name_col: str | None,
    full_name_col: str | None,
    ticket_col: str | None,
    save_mapping_as: str | None,
    on_duplicates: str,
    on_conversion: str,
) -> ImportState:
    """Drive one ImportSession through every checkpoint."""
    state = session.handle_file_select(PathFileSource(csv_path))
    if state is ImportState.FAILED:
        return state

    click.echo(f"[{run_id}] Headers: {session.detected_headers}")
    if session.suggested_mapping_id:
        click.echo(f"[{run_id}] Suggested saved mapping: {session.suggested_mapping_id}")

    name = competition_name or click.prompt("Competition name")
    state = session.handle_name_confirm(name)
    if state is not ImportState.AWAITING_MAPPING_CONFIRM:
        click.echo(f"[{run_id}] ERROR: competition name is required", err=True)
        return state

    if saved_mapping_id and not session.select_saved_mapping(saved_mapping_id):
        click.echo(f"[{run_id}] ERROR: unknown saved mapping {saved_mapping_id!r}", err=True)
        return state

    mapping, use_full_name = mapping_from_flags(
        session.detected_mapping, first_name_col, last_name_col, full_name_col, ticket_col,
    )
    click.echo(f"[{run_id}] Mapping: {format_mapping(finalize_mapping(mapping, use_full_name))}")

    save_mapping = None
    if save_mapping_as:
        save_mapping = session.new_saved_mapping(
            save_mapping_as, finalize_mapping(mapping, use_full_name),
        )

    state = session.handle_mapping_confirm(mapping, save_mapping, use_full_name=use_full_name)
    if state is ImportState.AWAITING_MAPPING_CONFIRM:
        click.echo(
            f"[{run_id}] ERROR: mapping is incomplete; need a ticket column plus either "
            "a full-name column or first- and last-name columns",
            err=True,
        )
        return state

    while state in (ImportState.AWAITING_DUPLICATE_DECISION, ImportState.AWAITING_CONVERSION_DECISION):
        if state is ImportState.AWAITING_DUPLICATE_DECISION:
            click.echo(f"[{run_id}] Duplicate ticket numbers ({len(session.duplicates)}):")
            for group in session.duplicates:
                click.echo(f"  {group.ticket_number}: {', '.join(group.names)}")
            if _decide(on_duplicates, "Keep the first entry for each duplicated ticket?"):
                state = session.handle_duplicate_proceed()
            else:
                state = session.cancel()
        else:
            click.echo(f"[{run_id}] Non-numeric ticket numbers ({len(session.ticket_conversions)}):")
            for conv in session.ticket_conversions:
                target = conv.converted if conv.converted is not None else "(excluded)"
                click.echo(f"  {conv.original} -> {target}  {conv.first_name} {conv.last_name}")
            if _decide(on_conversion, "Apply these ticket conversions?"):
                state = session.handle_conversion_proceed()
            else:
                state = session.cancel()
    return state


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="import",
    type=click.Choice([
        "import", "list_mappings", "set_default_mapping",
        "clear_default_mapping", "delete_mapping",
    ]),
    show_default=True,
    help="Operation to run",
)
@click.option("--csv-path", default=None, type=click.Path(), help="[import] Entrant CSV/TSV file")
@click.option("--competition-name", default=None, help="[import] Name of the competition to create")
@click.option("--saved-mapping-id", default=None, help="[import|set_default_mapping|delete_mapping] Saved mapping id")
@click.option("--first-name-col", default=None, help="[import] Header holding first names")
@click.option("--last-name-col", default=None, help="[import] Header holding last names")
@click.option("--full-name-col", default=None, help="[import] Header holding full names")
@click.option("--ticket-col", default=None, help="[import] Header holding ticket numbers")
@click.option("--save-mapping-as", default=None, help="[import] Save the confirmed mapping under this name")
@click.option("--on-duplicates", default="prompt", type=click.Choice(DECISIONS), show_default=True)
@click.option("--on-conversion", default="prompt", type=click.Choice(DECISIONS), show_default=True)
@click.option(
    "--mappings-path",
    default="./artifacts/mappings.yml",
    type=click.Path(),
    show_default=True,
    help="YAML file holding saved column mappings",
)
@click.option("--db-dsn", default=None, envvar="DB_DSN", help="[import] PostgreSQL DSN for the competition store")
@click.option(
    "--competitions-dir",
    default="./artifacts/competitions",
    type=click.Path(),
    show_default=True,
    help="[import] Local JSON competition store (used when no --db-dsn)",
)
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    csv_path: str | None,
    competition_name: str | None,
    saved_mapping_id: str | None,
    first_name_col: str | None,
    last_name_col: str | None,
    full_name_col: str | None,
    ticket_col: str | None,
    save_mapping_as: str | None,
    on_duplicates: str,
    on_conversion: str,
    mappings_path: str,
    db_dsn: str | None,
    competitions_dir: str,
    dry_run: bool,
    run_id: str | None,
    log_level: str,
) -> None:
    """Raffle entrant CSV import CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    try:
        yaml_store = YamlSavedMappingStore(Path(mappings_path))
    except SavedMappingFileError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    if mode == "list_mappings":
        mappings = yaml_store.get_all()
        if not mappings:
            click.echo("No saved mappings.")
        for saved in mappings:
            click.echo(format_saved_mapping(saved))
        return

    if mode in ("set_default_mapping", "delete_mapping"):
        if not saved_mapping_id:
            click.echo(f"[{run_id}] FATAL: --saved-mapping-id is required for {mode}", err=True)
            sys.exit(1)
        ok = (
            yaml_store.set_default(saved_mapping_id)
            if mode == "set_default_mapping"
            else yaml_store.delete(saved_mapping_id)
        )
        if not ok:
            click.echo(f"[{run_id}] FATAL: unknown saved mapping {saved_mapping_id!r}", err=True)
            sys.exit(1)
        click.echo(f"[{run_id}] {mode}: {saved_mapping_id}")
        return

    if mode == "clear_default_mapping":
        yaml_store.set_default(None)
        click.echo(f"[{run_id}] Default mapping cleared")
        return

    # --- import ---
    if not csv_path:
        click.echo(f"[{run_id}] FATAL: --csv-path is required for import", err=True)
        sys.exit(1)

    click.echo(f"[{run_id}] Starting import of {csv_path} (dry_run={dry_run})")
    mapping_store: SavedMappingStore = (
        InMemorySavedMappingStore(yaml_store.get_all()) if dry_run else yaml_store
    )
    session = ImportSession(
        _select_competition_store(dry_run, db_dsn, competitions_dir),
        mapping_store,
        column_mapping=yaml_store.get_last_mapping(),
    )
    target_name = competition_name
    try:
        state = run_import(
            run_id, session, Path(csv_path), competition_name, saved_mapping_id,
            first_name_col, last_name_col, full_name_col, ticket_col,
            save_mapping_as, on_duplicates, on_conversion,
        )
        target_name = target_name or (
            session.last_competition.name if session.last_competition else None
        )
    finally:
        session.close()

    if not dry_run and session.column_mapping is not None:
        yaml_store.save_last_mapping(session.column_mapping)

    click.echo(build_import_report(session.counters, target_name, dry_run=dry_run))
    summary = session.import_summary
    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"csv_path": csv_path, "mappings_path": mappings_path},
        session.counters,
        summary=summary.to_dict() if summary else None,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if state is ImportState.CANCELLED:
        click.echo(f"[{run_id}] Import cancelled; nothing was stored.")
        return
    if summary is not None and summary.success:
        competition = session.last_competition
        click.echo(f"[{run_id}] {summary.message}")
        if competition is not None:
            click.echo(f"[{run_id}] Competition id: {competition.id}")
        return
    message = summary.message if summary else f"import stopped in state {state.value}"
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


if __name__ == "__main__":
    main()
