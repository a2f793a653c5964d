"""raffle_import.models

Dataclasses for the import pipeline.

to_dict()/from_dict() use the camelCase keys of the stored JSON documents
(`firstName`, `ticketNumber`, `usageCount`, ...) so files written by earlier
versions of the app load unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from raffle_import.shared import ImportFailure

_MAPPING_KEYS = (
    ("first_name", "firstName"),
    ("last_name", "lastName"),
    ("full_name", "fullName"),
    ("ticket_number", "ticketNumber"),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime:
    """Accept ISO strings, epoch milliseconds, or datetimes."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utcnow()


# ---------------------------------------------------------------------------
# ColumnMapping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnMapping:
    """Assignment of header strings to the participant fields.

    Any field may be None while the mapping is being proposed; a confirmed
    mapping satisfies is_complete() and uses exactly one naming mode.
    """

    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    ticket_number: str | None = None

    def is_complete(self) -> bool:
        if not self.ticket_number:
            return False
        if self.full_name:
            return True
        return bool(self.first_name and self.last_name)

    def is_empty(self) -> bool:
        return not self.referenced_headers()

    def referenced_headers(self) -> list[str]:
        return [
            getattr(self, attr)
            for attr, _ in _MAPPING_KEYS
            if getattr(self, attr)
        ]

    def to_dict(self) -> dict[str, str | None]:
        return {key: getattr(self, attr) for attr, key in _MAPPING_KEYS}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ColumnMapping:
        data = data or {}
        values = {}
        for attr, key in _MAPPING_KEYS:
            raw = data.get(key, data.get(attr))
            values[attr] = raw if raw else None
        return cls(**values)


# ---------------------------------------------------------------------------
# SavedMapping
# ---------------------------------------------------------------------------

@dataclass
class SavedMapping:
    id: str
    name: str
    mapping: ColumnMapping
    usage_count: int = 1
    is_default: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mapping": self.mapping.to_dict(),
            "usageCount": self.usage_count,
            "isDefault": self.is_default,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SavedMapping:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            mapping=ColumnMapping.from_dict(data.get("mapping")),
            usage_count=int(data.get("usageCount") or 0),
            is_default=bool(data.get("isDefault", False)),
            created_at=_parse_dt(data.get("createdAt")),
            updated_at=_parse_dt(data.get("updatedAt")),
        )


# ---------------------------------------------------------------------------
# Participant / review records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Participant:
    first_name: str
    last_name: str
    ticket_number: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, str]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "ticketNumber": self.ticket_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Participant:
        return cls(
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            ticket_number=data.get("ticketNumber") or "",
        )


@dataclass(frozen=True)
class DuplicateGroup:
    ticket_number: str
    names: list[str]


@dataclass(frozen=True)
class TicketConversion:
    original: str
    converted: str | None
    first_name: str
    last_name: str


# ---------------------------------------------------------------------------
# Competition
# ---------------------------------------------------------------------------

@dataclass
class Competition:
    id: str
    name: str
    participants: list[Participant]
    created_at: datetime
    updated_at: datetime

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "participants": [p.to_dict() for p in self.participants],
            "participantCount": self.participant_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Competition:
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            participants=[Participant.from_dict(p) for p in data.get("participants") or []],
            created_at=_parse_dt(data.get("createdAt")),
            updated_at=_parse_dt(data.get("updatedAt")),
        )


@dataclass(frozen=True)
class ImportSummary:
    success: bool
    message: str
    failure: ImportFailure | None = None
    participant_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "failure": self.failure.value if self.failure else None,
            "participant_count": self.participant_count,
        }
