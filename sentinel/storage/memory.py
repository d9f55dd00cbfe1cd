"""
Process-local reservation store.

Mirrors the PostgreSQL adapter's guarantees closely enough to run the
processor end to end without a database: row locks are held until the
owning transaction ends, writes are staged and discarded on rollback, and
an exclusion check over in-flight and committed active intervals stands
in for the ``appointments_no_overlap`` constraint. Every operation yields
to the event loop once, the way a network round trip would.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Iterable, Mapping, Optional

from sentinel.errors import NotFoundError
from sentinel.schemas.reservation import (
    AvailabilityOverride,
    Client,
    Interval,
    PendingActionType,
    Reservation,
    ReservationStatus,
    utcnow,
)
from sentinel.storage.base import ConstraintViolated, NewReservation, Stored, WriteOutcome

logger = logging.getLogger(__name__)


class _MemoryTransaction:
    def __init__(self, store: "InMemoryReservationStore") -> None:
        self._store = store
        self._tx_id = uuid.uuid4().hex
        self._reservations: dict[str, Reservation] = {}
        self._clients: dict[str, Client] = {}
        self._held: list[asyncio.Lock] = []

    async def upsert_client(self, phone_number: str, name: str, email: Optional[str]) -> Client:
        await asyncio.sleep(0)
        existing = self._clients.get(phone_number) or self._store._clients.get(phone_number)
        now = utcnow()
        if existing is None:
            client = Client(id=str(uuid.uuid4()), phone_number=phone_number, name=name, email=email)
        else:
            client = existing.model_copy(
                update={
                    "name": name,
                    "email": email if email is not None else existing.email,
                    "updated_at": now,
                }
            )
        self._clients[phone_number] = client
        return client

    async def insert_reservation(self, draft: NewReservation) -> WriteOutcome:
        await asyncio.sleep(0)
        reservation = Reservation(
            id=str(uuid.uuid4()),
            client_id=draft.client_id,
            interval=draft.interval,
            status=ReservationStatus.PENDING_APPROVAL,
            pending_action=PendingActionType.BOOK,
            pending_change=draft.pending_change,
            version=1,
            audit_tier=draft.audit_tier,
            agent_request_id=draft.agent_request_id,
            confirmation_webhook_url=draft.confirmation_webhook_url,
            notes=draft.notes,
            approval_requested_at=utcnow(),
        )
        return self._stage(reservation)

    async def lock_reservation(self, reservation_id: str) -> Reservation:
        staged = self._reservations.get(reservation_id)
        if staged is not None:
            return staged
        if reservation_id not in self._store._reservations:
            raise NotFoundError("Appointment not found")
        lock = self._store._row_lock(reservation_id)
        if lock not in self._held:
            await lock.acquire()
            self._held.append(lock)
        await asyncio.sleep(0)
        existing = self._store._reservations.get(reservation_id)
        if existing is None:
            raise NotFoundError("Appointment not found")
        return existing

    async def update_reservation(self, reservation: Reservation) -> WriteOutcome:
        await asyncio.sleep(0)
        if reservation.id not in self._store._reservations and reservation.id not in self._reservations:
            raise NotFoundError("Appointment not found")
        return self._stage(reservation)

    async def resolve_approval(
        self,
        reservation_id: str,
        expected_version: int,
        status: ReservationStatus,
        approved: bool,
        reviewed_by: str,
        decided_at: datetime,
    ) -> Optional[Reservation]:
        await asyncio.sleep(0)
        current = self._reservations.get(reservation_id) or self._store._reservations.get(reservation_id)
        if current is None or current.version != expected_version:
            return None
        resolved = current.model_copy(
            update={
                "status": status,
                "pending_action": None,
                "pending_change": None,
                "approved_at": decided_at if approved else current.approved_at,
                "cancelled_at": decided_at if status == ReservationStatus.CANCELLED else current.cancelled_at,
                "confirmed_by": reviewed_by,
                "version": current.version + 1,
            }
        )
        outcome = self._stage(resolved)
        return outcome.reservation if isinstance(outcome, Stored) else None

    def _stage(self, reservation: Reservation) -> WriteOutcome:
        if reservation.is_active and self._store._collides(reservation, self._reservations):
            logger.debug("Exclusion violation staging reservation %s", reservation.id)
            return ConstraintViolated()
        self._reservations[reservation.id] = reservation
        if reservation.is_active:
            self._store._claims[reservation.id] = (self._tx_id, reservation.interval)
        else:
            self._store._claims.pop(reservation.id, None)
        return Stored(reservation)

    def _commit(self) -> None:
        self._store._reservations.update(self._reservations)
        self._store._clients.update(self._clients)
        self._forget_claims()

    def _rollback(self) -> None:
        self._reservations.clear()
        self._clients.clear()
        self._forget_claims()

    def _forget_claims(self) -> None:
        for reservation_id, (owner, _) in list(self._store._claims.items()):
            if owner == self._tx_id:
                del self._store._claims[reservation_id]

    def _release(self) -> None:
        while self._held:
            self._held.pop().release()


class InMemoryReservationStore:
    """Reservation store backed by dictionaries, for demos and tests."""

    def __init__(
        self,
        reservations: Iterable[Reservation] = (),
        overrides: Iterable[AvailabilityOverride] = (),
    ) -> None:
        self._reservations: dict[str, Reservation] = {r.id: r for r in reservations}
        self._clients: dict[str, Client] = {}
        self._overrides: dict[date, AvailabilityOverride] = {o.override_date: o for o in overrides}
        self._row_locks: dict[str, asyncio.Lock] = {}
        # Uncommitted active intervals, keyed by reservation id -> (tx id, interval).
        self._claims: dict[str, tuple[str, Interval]] = {}

    def _row_lock(self, reservation_id: str) -> asyncio.Lock:
        return self._row_locks.setdefault(reservation_id, asyncio.Lock())

    def _collides(self, reservation: Reservation, staged: Mapping[str, Reservation]) -> bool:
        # A transaction sees its own staged rows in place of the committed ones.
        for other in self._reservations.values():
            if other.id == reservation.id or other.id in staged or not other.is_active:
                continue
            if other.interval.overlaps(reservation.interval):
                return True
        for other_id, (_, interval) in self._claims.items():
            if other_id == reservation.id:
                continue
            if interval.overlaps(reservation.interval):
                return True
        return False

    # --- fixtures ---

    def add_reservation(self, reservation: Reservation) -> None:
        self._reservations[reservation.id] = reservation

    def set_override(self, override: AvailabilityOverride) -> None:
        self._overrides[override.override_date] = override

    def get(self, reservation_id: str) -> Optional[Reservation]:
        return self._reservations.get(reservation_id)

    def get_client(self, phone_number: str) -> Optional[Client]:
        return self._clients.get(phone_number)

    def active_reservations(self) -> list[Reservation]:
        return sorted(
            (r for r in self._reservations.values() if r.is_active),
            key=lambda r: r.interval.start,
        )

    def reset(self) -> None:
        """Clear all state. Used by test fixtures for isolation."""
        self._reservations.clear()
        self._clients.clear()
        self._overrides.clear()
        self._row_locks.clear()
        self._claims.clear()

    # --- ReservationStore ---

    async def find_conflict(
        self, interval: Interval, exclude_id: Optional[str] = None
    ) -> Optional[Reservation]:
        matches = await self.list_active_between(interval.start, interval.end, exclude_id)
        return matches[0] if matches else None

    async def list_active_between(
        self, start: datetime, end: datetime, exclude_id: Optional[str] = None
    ) -> list[Reservation]:
        await asyncio.sleep(0)
        window = Interval(start=start, end=end)
        return [
            r for r in self.active_reservations()
            if r.id != exclude_id and r.interval.overlaps(window)
        ]

    async def list_overrides(self, from_day: date, to_day: date) -> list[AvailabilityOverride]:
        await asyncio.sleep(0)
        return [
            o for day, o in sorted(self._overrides.items())
            if from_day <= day <= to_day
        ]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_MemoryTransaction]:
        tx = _MemoryTransaction(self)
        try:
            yield tx
        except BaseException:
            tx._rollback()
            raise
        else:
            tx._commit()
        finally:
            tx._release()
