"""
Storage contract for reservations, clients and calendar overrides.

Writes that can collide with another active reservation report the
collision as a typed ``ConstraintViolated`` outcome instead of raising,
so callers branch on the result rather than on driver error codes.
Adapters raise ``TransientStoreError`` for retryable infrastructure
faults and ``NotFoundError`` when a locked row does not exist.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import AsyncContextManager, Optional, Protocol, Union

from sentinel.schemas.reservation import (
    AvailabilityOverride,
    Client,
    Interval,
    PendingChange,
    Reservation,
    ReservationStatus,
)

NO_OVERLAP_CONSTRAINT = "appointments_no_overlap"


@dataclass(frozen=True)
class Stored:
    """The write was applied; ``reservation`` is the row as stored."""
    reservation: Reservation


@dataclass(frozen=True)
class ConstraintViolated:
    """The write would make two active reservations overlap."""
    constraint: str = NO_OVERLAP_CONSTRAINT


WriteOutcome = Union[Stored, ConstraintViolated]


@dataclass(frozen=True)
class NewReservation:
    """Fields supplied by the caller when inserting a reservation."""
    client_id: str
    interval: Interval
    pending_change: PendingChange
    audit_tier: str
    agent_request_id: Optional[str] = None
    confirmation_webhook_url: Optional[str] = None
    notes: Optional[str] = None


class StoreTransaction(Protocol):
    """Operations available inside ``ReservationStore.transaction()``."""

    async def upsert_client(
        self, phone_number: str, name: str, email: Optional[str]
    ) -> Client:
        """Insert or refresh a client; email only overwritten when not None."""
        ...

    async def insert_reservation(self, draft: NewReservation) -> WriteOutcome:
        """Insert a pending_approval/book reservation at version 1."""
        ...

    async def lock_reservation(self, reservation_id: str) -> Reservation:
        """Load a reservation and hold its row lock until the transaction ends."""
        ...

    async def update_reservation(self, reservation: Reservation) -> WriteOutcome:
        """Persist every mutable column of a locked reservation."""
        ...

    async def resolve_approval(
        self,
        reservation_id: str,
        expected_version: int,
        status: ReservationStatus,
        approved: bool,
        reviewed_by: str,
        decided_at: datetime,
    ) -> Optional[Reservation]:
        """Apply an approval decision if the stored version still matches.

        Returns None when no row matched ``expected_version``.
        """
        ...


class ReservationStore(Protocol):
    """Read access plus a scoped transaction primitive."""

    async def find_conflict(
        self, interval: Interval, exclude_id: Optional[str] = None
    ) -> Optional[Reservation]:
        """Earliest active reservation intersecting ``interval``, if any."""
        ...

    async def list_active_between(
        self, start: datetime, end: datetime, exclude_id: Optional[str] = None
    ) -> list[Reservation]:
        """Active reservations intersecting ``[start, end)``, ordered by start."""
        ...

    async def list_overrides(self, from_day: date, to_day: date) -> list[AvailabilityOverride]:
        """Calendar overrides for days in ``[from_day, to_day]``."""
        ...

    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """Commit on normal exit, roll back when the block raises."""
        ...
