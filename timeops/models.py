"""
Domain models for running timers, time entries, timesheets and invoices.
Field names follow the backend's snake_case wire format.
"""
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed by the lifecycle."""


class EntryStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class TimesheetStatus(str, Enum):
    OPEN = "open"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    PAID = "paid"


ENTRY_TRANSITIONS: Dict[EntryStatus, frozenset] = {
    EntryStatus.DRAFT: frozenset({EntryStatus.SUBMITTED}),
    EntryStatus.SUBMITTED: frozenset({EntryStatus.APPROVED, EntryStatus.REJECTED}),
    EntryStatus.APPROVED: frozenset({EntryStatus.PAID}),
    EntryStatus.REJECTED: frozenset(),
    EntryStatus.PAID: frozenset(),
}

INVOICE_TRANSITIONS: Dict[InvoiceStatus, frozenset] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.PENDING}),
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.APPROVED, InvoiceStatus.DECLINED}),
    InvoiceStatus.APPROVED: frozenset({InvoiceStatus.PAID}),
    InvoiceStatus.DECLINED: frozenset(),
    InvoiceStatus.PAID: frozenset(),
}


def can_transition(current: Enum, target: Enum) -> bool:
    """Check a status change against the entry or invoice lifecycle."""
    if isinstance(current, EntryStatus):
        return target in ENTRY_TRANSITIONS[current]
    if isinstance(current, InvoiceStatus):
        return target in INVOICE_TRANSITIONS[current]
    raise TypeError(f"No lifecycle defined for {type(current).__name__}")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps from the server are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserRef(BaseModel):
    """User as embedded in timesheets and invoices."""
    id: int
    name: Optional[str] = None
    hourly_rate: Optional[float] = None


class RunningTimerSession(BaseModel):
    """The single in-progress timer of the current user, as issued by the server."""
    id: int
    project_id: int
    project_name: Optional[str] = None
    todo_id: Optional[int] = None
    todo_name: Optional[str] = None
    description: Optional[str] = None
    started_at: datetime
    is_billable: bool = True

    @model_validator(mode="before")
    @classmethod
    def _flatten_relations(cls, data: Any) -> Any:
        # The current-timer payload is a running TimeEntry with nested project/todo
        if isinstance(data, dict):
            data = dict(data)
            project = data.get("project")
            if isinstance(project, dict) and not data.get("project_name"):
                data["project_name"] = project.get("name")
            todo = data.get("todo")
            if isinstance(todo, dict) and not data.get("todo_name"):
                data["todo_name"] = todo.get("title") or todo.get("name")
        return data

    @field_validator("started_at")
    @classmethod
    def _started_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class TimeEntry(BaseModel):
    """Committed unit of work."""
    id: int
    user_id: int
    project_id: int
    description: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None  # null while running
    is_billable: bool = True
    status: EntryStatus = EntryStatus.DRAFT
    hourly_rate_override: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("hourly_rate_override", "hourly_rate"),
    )
    rejection_reason: Optional[str] = None
    timesheet_id: Optional[int] = None
    approved_at: Optional[datetime] = None

    @field_validator("started_at", "ended_at", "approved_at")
    @classmethod
    def _timestamps_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_editable(self) -> bool:
        return self.status == EntryStatus.DRAFT

    @property
    def minutes(self) -> int:
        return self.duration_minutes or 0

    def transition(self, target: EntryStatus, **changes: Any) -> "TimeEntry":
        """Return a copy moved to ``target``; illegal moves raise InvalidTransitionError."""
        if not can_transition(self.status, target):
            raise InvalidTransitionError(
                f"Entry {self.id} cannot move from {self.status.value} to {target.value}"
            )
        if self.rejection_reason:
            changes.pop("rejection_reason", None)
        return self.model_copy(update={"status": target, **changes})


def iso_week_key(entry: TimeEntry) -> Tuple[int, int, int]:
    """(user_id, iso_year, iso_week) bucket a timesheet groups the entry into."""
    if entry.started_at is None:
        raise ValueError(f"Entry {entry.id} has no start time")
    iso = entry.started_at.isocalendar()
    return entry.user_id, iso[0], iso[1]


def group_by_week(entries: List[TimeEntry]) -> Dict[Tuple[int, int, int], List[TimeEntry]]:
    groups: Dict[Tuple[int, int, int], List[TimeEntry]] = {}
    for entry in entries:
        if entry.started_at is None:
            continue
        groups.setdefault(iso_week_key(entry), []).append(entry)
    return groups


class Timesheet(BaseModel):
    """Weekly grouping of one user's entries; totals are always derived."""
    id: int
    user_id: int
    week_number: int
    year: int
    week_start: Optional[str] = None
    week_end: Optional[str] = None
    status: TimesheetStatus = TimesheetStatus.OPEN
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    user: Optional[UserRef] = None
    entries: List[TimeEntry] = Field(default_factory=list)

    @property
    def total_minutes(self) -> int:
        return sum(e.minutes for e in self.entries)

    @property
    def total_billable_minutes(self) -> int:
        return sum(e.minutes for e in self.entries if e.is_billable)

    def entry(self, entry_id: int) -> Optional[TimeEntry]:
        for e in self.entries:
            if e.id == entry_id:
                return e
        return None

    def entries_with_status(self, status: EntryStatus) -> List[TimeEntry]:
        return [e for e in self.entries if e.status == status]


class Invoice(BaseModel):
    """Invoice built by the server from approved entries of one timesheet."""
    id: int
    user_id: int
    timesheet_id: Optional[int] = None
    invoice_number: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    total_hours: float = 0.0
    total_amount: float = 0.0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: Optional[str] = None
    user: Optional[UserRef] = None
    entries: List[TimeEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _only_approved_entries(self) -> "Invoice":
        bad = [
            e.id for e in self.entries
            if e.status not in (EntryStatus.APPROVED, EntryStatus.PAID)
        ]
        if bad:
            raise ValueError(f"Invoice references unapproved entries: {bad}")
        return self


# Operation envelopes
class ApiError(BaseModel):
    """Structured error result."""
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ApiResponse(BaseModel):
    """Standard operation result envelope."""
    ok: bool
    data: Optional[Any] = None
    error: Optional[ApiError] = None
    requestId: str = ""

    @classmethod
    def success(cls, data: Any = None, request_id: str = "") -> "ApiResponse":
        """Create a success response."""
        return cls(ok=True, data=data, requestId=request_id)

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        request_id: str = "",
    ) -> "ApiResponse":
        """Create an error response."""
        return cls(
            ok=False,
            error=ApiError(code=code, message=message, details=details),
            requestId=request_id,
        )
