from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, date, timezone
from typing import Optional, List, Dict, Any
import uuid
from .errors import ValidationError

# Record shapes persisted through the store. Rows travel as plain dicts;
# these dataclasses are the typed view used by the managers.

DEMAND_STATUSES = ("pending", "in_progress", "done")
SCHEDULE_STATUSES = ("draft", "published", "cancelled")
CONFIRMATION_STATUSES = ("pending", "confirmed", "declined")

# 1 low .. 5 critical
PRIORITY_LEVELS = {
    "low": 1,
    "normal": 2,
    "high": 3,
    "urgent": 4,
    "critical": 5,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return _now().isoformat()


@dataclass
class EventLogEntry:
    id: str
    timestamp: datetime
    correlation_id: str
    actor: str
    tenant_id: str
    entity: Optional[str]
    kind: str  # demand_created, demand_status_changed, volunteer_assigned, schedule_published, etc.
    data: Dict[str, Any]


@dataclass
class Demand:
    id: str
    ministry_id: str
    title: str
    status: str = "pending"
    event_id: Optional[str] = None
    responsible_id: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[str] = None  # ISO date
    priority: Optional[int] = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Demand":
        return cls(
            id=row["id"],
            ministry_id=row["ministry_id"],
            title=row["title"],
            status=row.get("status") or "pending",
            event_id=row.get("event_id"),
            responsible_id=row.get("responsible_id"),
            description=row.get("description"),
            deadline=_iso(row.get("deadline")),
            priority=row.get("priority"),
            created_at=_iso(row.get("created_at")) or now_iso(),
        )

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Assignment:
    id: str
    schedule_id: str
    member_id: str
    church_id: str
    confirmation_status: str = "pending"
    created_at: str = field(default_factory=now_iso)
    # joined volunteer identity (id, name, email); soft reference, may be None
    member: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Assignment":
        return cls(
            id=row["id"],
            schedule_id=row["schedule_id"],
            member_id=row["member_id"],
            church_id=row["church_id"],
            confirmation_status=row.get("confirmation_status") or "pending",
            created_at=_iso(row.get("created_at")) or now_iso(),
        )

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row.pop("member")
        return row


@dataclass
class Schedule:
    id: str
    church_id: str
    ministry_id: str
    service_date: str  # ISO date
    event_id: Optional[str] = None
    notes: Optional[str] = None
    status: str = "draft"
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    assignments: List[Assignment] = field(default_factory=list)
    event: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Schedule":
        return cls(
            id=row["id"],
            church_id=row["church_id"],
            ministry_id=row["ministry_id"],
            service_date=_iso(row["service_date"]),
            event_id=row.get("event_id"),
            notes=row.get("notes"),
            status=row.get("status") or "draft",
            created_at=_iso(row.get("created_at")) or now_iso(),
            updated_at=_iso(row.get("updated_at")) or now_iso(),
        )

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row.pop("assignments")
        row.pop("event")
        return row


@dataclass
class Notification:
    id: str
    church_id: str
    member_id: str
    title: str
    description: str
    link: Optional[str] = None
    type: Optional[str] = None
    read: bool = False
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Notification":
        return cls(
            id=row["id"],
            church_id=row["church_id"],
            member_id=row["member_id"],
            title=row["title"],
            description=row["description"],
            link=row.get("link"),
            type=row.get("type"),
            read=bool(row.get("read")),
            created_at=_iso(row.get("created_at")) or now_iso(),
        )

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


def _iso(value: Any) -> Optional[str]:
    # Postgres hands back date/datetime objects, the in-memory store keeps strings
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def parse_iso_date(value: Any, field_name: str) -> Optional[str]:
    """Normalise a date-ish input to ``YYYY-MM-DD``; blank means absent."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    # full ISO timestamps keep their date part
    try:
        if len(text) <= 10 or text[10] not in "T ":
            raise ValueError(text)
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD), got {value!r}") from None


def parse_priority(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("priority must be 1-5 or one of " + ", ".join(PRIORITY_LEVELS))
    if isinstance(value, str):
        key = value.strip().lower()
        if key in PRIORITY_LEVELS:
            return PRIORITY_LEVELS[key]
        if not key.isdigit():
            raise ValidationError(f"Unknown priority {value!r}")
        value = int(key)
    if isinstance(value, int) and 1 <= value <= 5:
        return value
    raise ValidationError(f"priority must be between 1 and 5, got {value!r}")


def new_id() -> str:
    return uuid.uuid4().hex
