"""raffle_import.stores

Ports the import pipeline depends on, plus the adapters shipped with it.

Ports (typing.Protocol):
  FileSource          : selected file: name + text()
  SavedMappingStore   : get_all / save (upsert by id) / subscribe
  CompetitionStore    : add_competition

Adapters:
  PathFileSource, TextFileSource
  InMemorySavedMappingStore, YamlSavedMappingStore
  InMemoryCompetitionStore, LocalCompetitionStore, PostgresCompetitionStore
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Protocol

import psycopg
import yaml

from raffle_import.models import ColumnMapping, Competition, Participant, SavedMapping, utcnow
from raffle_import.shared import SavedMappingFileError, StorageError

log = logging.getLogger(__name__)

MappingListener = Callable[[list[SavedMapping]], None]


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------

class FileSource(Protocol):
    name: str

    def text(self) -> str:
        """Return the full decoded file contents."""
        ...


class SavedMappingStore(Protocol):
    def get_all(self) -> list[SavedMapping]:
        ...

    def save(self, mapping: SavedMapping) -> None:
        """Insert or replace by id."""
        ...

    def subscribe(self, listener: MappingListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        ...


class CompetitionStore(Protocol):
    def add_competition(self, competition: Competition) -> None:
        ...


# ---------------------------------------------------------------------------
# File sources
# ---------------------------------------------------------------------------

@dataclass
class PathFileSource:
    """A file on disk, decoded as UTF-8 with an optional BOM."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    def text(self) -> str:
        return self.path.read_text(encoding="utf-8-sig")


@dataclass
class TextFileSource:
    """In-memory file contents (uploads, tests)."""

    name: str
    content: str

    def text(self) -> str:
        return self.content


# ---------------------------------------------------------------------------
# Saved-mapping stores
# ---------------------------------------------------------------------------

class _Listeners:
    def __init__(self) -> None:
        self._listeners: list[MappingListener] = []

    def subscribe(self, listener: MappingListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, mappings: list[SavedMapping]) -> None:
        for listener in list(self._listeners):
            listener(list(mappings))


class InMemorySavedMappingStore(_Listeners):
    def __init__(self, mappings: list[SavedMapping] | None = None) -> None:
        super().__init__()
        self._mappings: list[SavedMapping] = list(mappings or [])

    def get_all(self) -> list[SavedMapping]:
        return list(self._mappings)

    def save(self, mapping: SavedMapping) -> None:
        self._mappings = _upsert(self._mappings, mapping)
        self._notify(self._mappings)


def _upsert(mappings: list[SavedMapping], mapping: SavedMapping) -> list[SavedMapping]:
    out = list(mappings)
    for idx, existing in enumerate(out):
        if existing.id == mapping.id:
            out[idx] = mapping
            return out
    out.append(mapping)
    return out


class YamlSavedMappingStore(_Listeners):
    """Saved mappings plus the last confirmed mapping in one YAML document.

    Layout:
        saved_mappings:
          - {id, name, mapping: {firstName, ...}, usageCount, isDefault, ...}
        last_mapping: {firstName, lastName, fullName, ticketNumber}

    refresh() re-reads the file when another process has changed it and
    notifies subscribers.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        self._mappings: list[SavedMapping] = []
        self._last_mapping: ColumnMapping | None = None
        self._content_hash: str | None = None
        self._load()

    # -- persistence ---------------------------------------------------------

    def _load(self) -> None:
        if not self._path.exists():
            self._mappings, self._last_mapping, self._content_hash = [], None, None
            return
        raw = self._path.read_bytes()
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as exc:
            raise SavedMappingFileError(f"{self._path}: invalid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise SavedMappingFileError(f"{self._path}: top level must be a mapping")
        entries = data.get("saved_mappings") or []
        if not isinstance(entries, list):
            raise SavedMappingFileError(f"{self._path}: saved_mappings must be a list")
        try:
            self._mappings = [SavedMapping.from_dict(e) for e in entries]
        except (KeyError, TypeError, ValueError) as exc:
            raise SavedMappingFileError(f"{self._path}: bad saved mapping entry: {exc}") from exc
        last = data.get("last_mapping")
        self._last_mapping = ColumnMapping.from_dict(last) if last else None
        self._content_hash = hashlib.sha256(raw).hexdigest()

    def _write(self) -> None:
        doc: dict[str, Any] = {
            "saved_mappings": [m.to_dict() for m in self._mappings],
            "last_mapping": self._last_mapping.to_dict() if self._last_mapping else None,
        }
        raw = yaml.safe_dump(doc, sort_keys=False, allow_unicode=True).encode("utf-8")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_bytes(raw)
        self._content_hash = hashlib.sha256(raw).hexdigest()

    def refresh(self) -> bool:
        """Reload if the file changed on disk. Returns True when it did."""
        current = (
            hashlib.sha256(self._path.read_bytes()).hexdigest()
            if self._path.exists() else None
        )
        if current == self._content_hash:
            return False
        self._load()
        log.debug("Saved mappings reloaded from %s", self._path)
        self._notify(self._mappings)
        return True

    # -- SavedMappingStore ---------------------------------------------------

    def get_all(self) -> list[SavedMapping]:
        return list(self._mappings)

    def save(self, mapping: SavedMapping) -> None:
        self._mappings = _upsert(self._mappings, mapping)
        self._write()
        self._notify(self._mappings)

    # -- management ----------------------------------------------------------

    def get(self, mapping_id: str) -> SavedMapping | None:
        return next((m for m in self._mappings if m.id == mapping_id), None)

    def delete(self, mapping_id: str) -> bool:
        remaining = [m for m in self._mappings if m.id != mapping_id]
        if len(remaining) == len(self._mappings):
            return False
        self._mappings = remaining
        self._write()
        self._notify(self._mappings)
        return True

    def set_default(self, mapping_id: str | None) -> bool:
        """Mark one mapping as default (None clears it). False if id unknown."""
        if mapping_id is not None and self.get(mapping_id) is None:
            return False
        now = utcnow()
        self._mappings = [
            replace(m, is_default=(m.id == mapping_id), updated_at=now)
            if m.is_default != (m.id == mapping_id) else m
            for m in self._mappings
        ]
        self._write()
        self._notify(self._mappings)
        return True

    def get_last_mapping(self) -> ColumnMapping | None:
        return self._last_mapping

    def save_last_mapping(self, mapping: ColumnMapping) -> None:
        self._last_mapping = mapping
        self._write()


# ---------------------------------------------------------------------------
# Competition stores
# ---------------------------------------------------------------------------

class InMemoryCompetitionStore:
    def __init__(self) -> None:
        self.competitions: dict[str, Competition] = {}

    def add_competition(self, competition: Competition) -> None:
        self.competitions[competition.id] = competition


@dataclass
class LocalCompetitionStore:
    """One JSON document per competition id under base_dir."""

    base_dir: Path

    def _path_for(self, competition_id: str) -> Path:
        return self.base_dir / f"{competition_id}.json"

    def add_competition(self, competition: Competition) -> None:
        dest = self._path_for(competition.id)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(
                json.dumps(competition.to_dict(), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as exc:
            raise StorageError(f"could not write {dest}: {exc}") from exc

    def get_competition(self, competition_id: str) -> Competition | None:
        path = self._path_for(competition_id)
        if not path.exists():
            return None
        return Competition.from_dict(json.loads(path.read_text(encoding="utf-8")))


class PostgresCompetitionStore:
    """Competitions in raffle_competition / raffle_participant.

    Requires migrations/0001_raffle_competitions.sql. add_competition is an
    upsert by id; participants are replaced wholesale in the same
    transaction.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def add_competition(self, competition: Competition) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=False) as conn:
                conn.execute(
                    """
                    INSERT INTO raffle_competition
                      (id, name, participant_count, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                      name = EXCLUDED.name,
                      participant_count = EXCLUDED.participant_count,
                      updated_at = EXCLUDED.updated_at
                    """,
                    (competition.id, competition.name, competition.participant_count,
                     competition.created_at, competition.updated_at),
                )
                conn.execute(
                    "DELETE FROM raffle_participant WHERE competition_id = %s",
                    (competition.id,),
                )
                with conn.cursor() as cur:
                    cur.executemany(
                        """
                        INSERT INTO raffle_participant
                          (competition_id, position, first_name, last_name, ticket_number)
                        VALUES (%s, %s, %s, %s, %s)
                        """,
                        [
                            (competition.id, idx, p.first_name, p.last_name, p.ticket_number)
                            for idx, p in enumerate(competition.participants)
                        ],
                    )
                conn.commit()
        except psycopg.Error as exc:
            raise StorageError(f"add_competition {competition.id}: {exc}") from exc

    def get_competition(self, competition_id: str) -> Competition | None:
        with psycopg.connect(self._dsn) as conn:
            row = conn.execute(
                "SELECT id, name, created_at, updated_at FROM raffle_competition WHERE id = %s",
                (competition_id,),
            ).fetchone()
            if row is None:
                return None
            prows = conn.execute(
                """
                SELECT first_name, last_name, ticket_number
                FROM raffle_participant
                WHERE competition_id = %s
                ORDER BY position ASC
                """,
                (competition_id,),
            ).fetchall()
        return Competition(
            id=str(row[0]),
            name=row[1],
            participants=[Participant(r[0], r[1], r[2]) for r in prows],
            created_at=row[2],
            updated_at=row[3],
        )
