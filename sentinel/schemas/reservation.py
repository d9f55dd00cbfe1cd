"""Reservation, client and calendar-override data models."""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sentinel.utils import add_minutes, overlaps


class ReservationStatus(str, Enum):
    """Lifecycle status of a reservation row."""
    PENDING_APPROVAL = "pending_approval"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


ACTIVE_STATUSES = frozenset({ReservationStatus.PENDING_APPROVAL, ReservationStatus.CONFIRMED})


class PendingActionType(str, Enum):
    """Change awaiting a human decision. ``None`` on the row means no action."""
    BOOK = "book"
    CANCEL = "cancel"
    MODIFY = "modify"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Interval(BaseModel):
    """Half-open time range ``[start, end)``."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _end_after_start(self) -> "Interval":
        if self.end <= self.start:
            raise ValueError("interval end must be after its start")
        return self

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> "Interval":
        return cls(start=start, end=add_minutes(start, duration_minutes))

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)


class BookChange(BaseModel):
    """Pending creation of a new reservation."""
    type: Literal["book"] = "book"
    requested_by: str = "ai_agent"
    duration_minutes: int
    client_phone_number: str


class CancelChange(BaseModel):
    """Pending cancellation; ``previous_status`` is kept for the audit trail."""
    type: Literal["cancel"] = "cancel"
    requested_reason: Optional[str] = None
    previous_status: ReservationStatus


class ModifyChange(BaseModel):
    """Pending move of an existing reservation to a new interval."""
    type: Literal["modify"] = "modify"
    previous_start: datetime
    previous_end: datetime
    previous_status: ReservationStatus
    requested_duration_minutes: int


PendingChange = Annotated[
    Union[BookChange, CancelChange, ModifyChange],
    Field(discriminator="type"),
]


class Client(BaseModel):
    """Client record keyed by normalized phone number."""
    id: str
    phone_number: str
    name: str
    email: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Reservation(BaseModel):
    """A time-bounded reservation against the shared calendar.

    ``pending_action`` and ``pending_change`` are set together, and only
    while the reservation is awaiting approval.
    """

    id: str
    client_id: str
    interval: Interval
    status: ReservationStatus
    pending_action: Optional[PendingActionType] = None
    pending_change: Optional[PendingChange] = None
    version: int = 1
    audit_tier: str
    agent_request_id: Optional[str] = None
    requested_by_channel: str = "ai_agent"
    confirmation_webhook_url: Optional[str] = None
    notes: Optional[str] = None
    confirmed_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    approval_requested_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _pending_fields_agree(self) -> "Reservation":
        if self.pending_action is None:
            if self.pending_change is not None:
                raise ValueError("pending_change requires a pending_action")
            return self
        if self.status != ReservationStatus.PENDING_APPROVAL:
            raise ValueError("pending_action is only allowed while pending_approval")
        if self.pending_change is not None and self.pending_change.type != self.pending_action.value:
            raise ValueError(
                f"pending_change '{self.pending_change.type}' does not match "
                f"pending_action '{self.pending_action.value}'"
            )
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class AvailabilityOverride(BaseModel):
    """Day-level calendar override: a full block or custom opening hours."""
    override_date: date
    is_blocked: bool = False
    custom_start_time: Optional[time] = None
    custom_end_time: Optional[time] = None
