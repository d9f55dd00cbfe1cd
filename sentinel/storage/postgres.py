"""PostgreSQL reservation store on an asyncpg connection pool."""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator, Optional

import asyncpg
from pydantic import TypeAdapter

from sentinel.config import DatabaseConfig
from sentinel.errors import NotFoundError, TransientStoreError
from sentinel.schemas.reservation import (
    AvailabilityOverride,
    Client,
    Interval,
    PendingActionType,
    PendingChange,
    Reservation,
    ReservationStatus,
)
from sentinel.storage.base import (
    NO_OVERLAP_CONSTRAINT,
    ConstraintViolated,
    NewReservation,
    Stored,
    WriteOutcome,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)

SCHEMA_SQL = f"""
create extension if not exists btree_gist;

create table if not exists clients (
    id uuid primary key default gen_random_uuid(),
    phone_number text not null unique,
    name text not null,
    email text,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);

create table if not exists appointments (
    id uuid primary key default gen_random_uuid(),
    client_id uuid not null references clients (id),
    start_time timestamptz not null,
    end_time timestamptz not null,
    status text not null
        check (status in ('pending_approval', 'confirmed', 'cancelled', 'rejected')),
    pending_action text check (pending_action in ('book', 'cancel', 'modify')),
    pending_payload jsonb,
    version integer not null default 1,
    requested_by_channel text not null default 'ai_agent',
    agent_request_id text,
    audit_tier text not null,
    confirmation_webhook_url text,
    notes text,
    confirmed_by text,
    created_at timestamptz not null default now(),
    approval_requested_at timestamptz,
    approved_at timestamptz,
    cancelled_at timestamptz,
    check (end_time > start_time),
    constraint {NO_OVERLAP_CONSTRAINT} exclude using gist (
        tstzrange(start_time, end_time, '[)') with &&
    ) where (status in ('pending_approval', 'confirmed'))
);

create table if not exists availability_overrides (
    override_date date primary key,
    is_blocked boolean not null default false,
    custom_start_time time,
    custom_end_time time
);
"""

_RESERVATION_COLUMNS = """
    id, client_id, start_time, end_time, status, pending_action, pending_payload,
    version, requested_by_channel, agent_request_id, audit_tier,
    confirmation_webhook_url, notes, confirmed_by, created_at,
    approval_requested_at, approved_at, cancelled_at
"""

_ACTIVE_OVERLAP_SQL = f"""
    select {_RESERVATION_COLUMNS}
    from appointments
    where status in ('pending_approval', 'confirmed')
      and tstzrange(start_time, end_time, '[)') && tstzrange($1, $2, '[)')
      and ($3::uuid is null or id <> $3::uuid)
    order by start_time asc
"""

_pending_change_adapter: TypeAdapter[PendingChange] = TypeAdapter(PendingChange)


def _parse_jsonb(value: Any) -> Optional[dict[str, Any]]:
    """Parse a JSONB value (may be a string or already a dict)."""
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _dump_pending(reservation: Reservation) -> Optional[str]:
    if reservation.pending_change is None:
        return None
    return reservation.pending_change.model_dump_json()


def _row_to_reservation(row: asyncpg.Record) -> Reservation:
    payload = _parse_jsonb(row["pending_payload"])
    return Reservation(
        id=str(row["id"]),
        client_id=str(row["client_id"]),
        interval=Interval(start=row["start_time"], end=row["end_time"]),
        status=ReservationStatus(row["status"]),
        pending_action=PendingActionType(row["pending_action"]) if row["pending_action"] else None,
        pending_change=_pending_change_adapter.validate_python(payload) if payload else None,
        version=row["version"],
        requested_by_channel=row["requested_by_channel"],
        agent_request_id=row["agent_request_id"],
        audit_tier=row["audit_tier"],
        confirmation_webhook_url=row["confirmation_webhook_url"],
        notes=row["notes"],
        confirmed_by=row["confirmed_by"],
        created_at=row["created_at"],
        approval_requested_at=row["approval_requested_at"],
        approved_at=row["approved_at"],
        cancelled_at=row["cancelled_at"],
    )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, TypeError):
        return False
    return True


def _exclusion_param(exclude_id: Optional[str]) -> Optional[str]:
    # A non-uuid id cannot match any row, so there is nothing to exclude.
    return exclude_id if exclude_id and _is_uuid(exclude_id) else None


def _row_to_client(row: asyncpg.Record) -> Client:
    return Client(
        id=str(row["id"]),
        phone_number=row["phone_number"],
        name=row["name"],
        email=row["email"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


@asynccontextmanager
async def _translate_errors() -> AsyncIterator[None]:
    try:
        yield
    except TRANSIENT_ERRORS as exc:
        raise TransientStoreError(f"{type(exc).__name__}: {exc}") from exc


class _PostgresTransaction:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def upsert_client(self, phone_number: str, name: str, email: Optional[str]) -> Client:
        async with _translate_errors():
            row = await self._conn.fetchrow(
                """
                insert into clients (phone_number, name, email)
                values ($1, $2, $3)
                on conflict (phone_number)
                do update set
                    name = excluded.name,
                    email = coalesce(excluded.email, clients.email),
                    updated_at = now()
                returning id, phone_number, name, email, created_at, updated_at
                """,
                phone_number, name, email,
            )
        return _row_to_client(row)

    async def insert_reservation(self, draft: NewReservation) -> WriteOutcome:
        try:
            async with self._conn.transaction():
                async with _translate_errors():
                    row = await self._conn.fetchrow(
                        f"""
                        insert into appointments (
                            client_id, start_time, end_time, status, pending_action,
                            pending_payload, requested_by_channel, agent_request_id,
                            audit_tier, approval_requested_at, confirmation_webhook_url, notes
                        )
                        values ($1::uuid, $2, $3, 'pending_approval', 'book', $4::jsonb,
                                'ai_agent', $5, $6, now(), $7, $8)
                        returning {_RESERVATION_COLUMNS}
                        """,
                        draft.client_id,
                        draft.interval.start,
                        draft.interval.end,
                        draft.pending_change.model_dump_json(),
                        draft.agent_request_id,
                        draft.audit_tier,
                        draft.confirmation_webhook_url,
                        draft.notes,
                    )
        except asyncpg.exceptions.ExclusionViolationError as exc:
            return ConstraintViolated(exc.constraint_name or NO_OVERLAP_CONSTRAINT)
        return Stored(_row_to_reservation(row))

    async def lock_reservation(self, reservation_id: str) -> Reservation:
        if not _is_uuid(reservation_id):
            raise NotFoundError("Appointment not found")
        async with _translate_errors():
            row = await self._conn.fetchrow(
                f"select {_RESERVATION_COLUMNS} from appointments where id = $1::uuid for update",
                reservation_id,
            )
        if row is None:
            raise NotFoundError("Appointment not found")
        return _row_to_reservation(row)

    async def update_reservation(self, reservation: Reservation) -> WriteOutcome:
        try:
            async with self._conn.transaction():
                async with _translate_errors():
                    row = await self._conn.fetchrow(
                        f"""
                        update appointments
                        set start_time = $2,
                            end_time = $3,
                            status = $4,
                            pending_action = $5,
                            pending_payload = $6::jsonb,
                            approval_requested_at = $7,
                            agent_request_id = $8,
                            audit_tier = $9,
                            confirmation_webhook_url = $10,
                            notes = $11,
                            version = $12
                        where id = $1::uuid
                        returning {_RESERVATION_COLUMNS}
                        """,
                        reservation.id,
                        reservation.interval.start,
                        reservation.interval.end,
                        reservation.status.value,
                        reservation.pending_action.value if reservation.pending_action else None,
                        _dump_pending(reservation),
                        reservation.approval_requested_at,
                        reservation.agent_request_id,
                        reservation.audit_tier,
                        reservation.confirmation_webhook_url,
                        reservation.notes,
                        reservation.version,
                    )
        except asyncpg.exceptions.ExclusionViolationError as exc:
            return ConstraintViolated(exc.constraint_name or NO_OVERLAP_CONSTRAINT)
        if row is None:
            raise NotFoundError("Appointment not found")
        return Stored(_row_to_reservation(row))

    async def resolve_approval(
        self,
        reservation_id: str,
        expected_version: int,
        status: ReservationStatus,
        approved: bool,
        reviewed_by: str,
        decided_at: datetime,
    ) -> Optional[Reservation]:
        async with _translate_errors():
            row = await self._conn.fetchrow(
                f"""
                update appointments
                set status = $3,
                    pending_action = null,
                    pending_payload = null,
                    approved_at = case when $4 then $6 else approved_at end,
                    cancelled_at = case when $3 = 'cancelled' then $6 else cancelled_at end,
                    confirmed_by = $5,
                    version = version + 1
                where id = $1::uuid
                  and version = $2
                returning {_RESERVATION_COLUMNS}
                """,
                reservation_id, expected_version, status.value, approved, reviewed_by, decided_at,
            )
        return _row_to_reservation(row) if row is not None else None


class PostgresReservationStore:
    """Reservation store over an asyncpg pool.

    The ``appointments_no_overlap`` exclusion constraint is the final word
    on overlapping active reservations; violations surface as
    ``ConstraintViolated`` outcomes. Writes that may violate it run in a
    savepoint so the enclosing transaction stays usable.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @classmethod
    async def connect(cls, config: DatabaseConfig) -> "PostgresReservationStore":
        if not config.url:
            raise ValueError("DATABASE_URL/SUPABASE_DB_URL is not set")
        connect_kwargs: dict[str, Any] = {
            "dsn": config.url,
            "min_size": config.min_pool_size,
            "max_size": config.max_pool_size,
        }
        if config.ssl == "disable":
            connect_kwargs["ssl"] = False
        elif config.ssl:
            connect_kwargs["ssl"] = config.ssl
        pool = await asyncpg.create_pool(**connect_kwargs)
        logger.info("Connected reservation store pool (max=%d)", config.max_pool_size)
        return cls(pool)

    async def close(self) -> None:
        await self._pool.close()

    async def apply_schema(self) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Reservation schema applied")

    async def find_conflict(
        self, interval: Interval, exclude_id: Optional[str] = None
    ) -> Optional[Reservation]:
        exclude_id = _exclusion_param(exclude_id)
        async with _translate_errors():
            row = await self._pool.fetchrow(
                _ACTIVE_OVERLAP_SQL + " limit 1", interval.start, interval.end, exclude_id
            )
        return _row_to_reservation(row) if row is not None else None

    async def list_active_between(
        self, start: datetime, end: datetime, exclude_id: Optional[str] = None
    ) -> list[Reservation]:
        exclude_id = _exclusion_param(exclude_id)
        async with _translate_errors():
            rows = await self._pool.fetch(_ACTIVE_OVERLAP_SQL, start, end, exclude_id)
        return [_row_to_reservation(row) for row in rows]

    async def list_overrides(self, from_day: date, to_day: date) -> list[AvailabilityOverride]:
        async with _translate_errors():
            rows = await self._pool.fetch(
                """
                select override_date, is_blocked, custom_start_time, custom_end_time
                from availability_overrides
                where override_date between $1 and $2
                order by override_date asc
                """,
                from_day, to_day,
            )
        return [AvailabilityOverride(**dict(row)) for row in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgresTransaction]:
        async with _translate_errors():
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield _PostgresTransaction(conn)
