"""
Two-phase reservation processor.

Agent commands (book, cancel, modify) never take effect directly: each one
moves the reservation into ``pending_approval`` with a typed description
of the change, and a later human decision resolves it. Mutations of an
existing reservation hold its row lock for the whole transaction, and the
approval decision is additionally gated on the caller's expected version.

Usage:
    processor = ReservationProcessor(store, scanner, retry_policy, push, webhooks)
    result = await processor.dispatch(command)
    resolved = await processor.approve(appointment_id, expected_version=1, approved=True)
"""

from datetime import datetime, timezone
from typing import Callable, Optional, Union

from sentinel.errors import (
    InvalidPayloadError,
    InvalidStateError,
    OptimisticLockError,
    WebhookDeliveryError,
)
from sentinel.logging_context import get_request_logger
from sentinel.notifications.push import ApprovalNotification, PushGateway
from sentinel.notifications.webhook import WebhookClient
from sentinel.retry import RetryPolicy
from sentinel.schemas.commands import BookCommand, CancelCommand, ModifyCommand
from sentinel.schemas.reservation import (
    BookChange,
    CancelChange,
    Interval,
    ModifyChange,
    PendingActionType,
    Reservation,
    ReservationStatus,
    utcnow,
)
from sentinel.schemas.results import (
    AlreadyCancelledResult,
    ApprovalResolvedResult,
    ConflictResult,
    PendingApprovalResult,
)
from sentinel.services.availability import AvailabilityScanner
from sentinel.storage.base import ConstraintViolated, NewReservation, ReservationStore
from sentinel.utils import isoformat_z

logger = get_request_logger(__name__)

AgentCommand = Union[BookCommand, CancelCommand, ModifyCommand]
AgentResult = Union[PendingApprovalResult, ConflictResult, AlreadyCancelledResult]

REQUESTED_BY_CHANNEL = "ai_agent"

# (pending action, approved) -> resulting status. A rejected modify keeps
# the already-applied interval and only reverts the status.
APPROVAL_TRANSITIONS: dict[tuple[PendingActionType, bool], ReservationStatus] = {
    (PendingActionType.BOOK, True): ReservationStatus.CONFIRMED,
    (PendingActionType.BOOK, False): ReservationStatus.REJECTED,
    (PendingActionType.CANCEL, True): ReservationStatus.CANCELLED,
    (PendingActionType.CANCEL, False): ReservationStatus.CONFIRMED,
    (PendingActionType.MODIFY, True): ReservationStatus.CONFIRMED,
    (PendingActionType.MODIFY, False): ReservationStatus.CONFIRMED,
}


def resolve_transition(action: PendingActionType, approved: bool) -> ReservationStatus:
    return APPROVAL_TRANSITIONS[(action, approved)]


class ReservationProcessor:
    """Turns validated commands into committed, versioned reservation rows."""

    def __init__(
        self,
        store: ReservationStore,
        scanner: AvailabilityScanner,
        retry_policy: RetryPolicy,
        push_gateway: PushGateway,
        webhook_client: WebhookClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._scanner = scanner
        self._retry = retry_policy
        self._push = push_gateway
        self._webhooks = webhook_client
        self._clock = clock

    async def dispatch(self, command: AgentCommand) -> AgentResult:
        if isinstance(command, BookCommand):
            return await self.book(command)
        if isinstance(command, CancelCommand):
            return await self.cancel(command)
        if isinstance(command, ModifyCommand):
            return await self.modify(command)
        raise InvalidPayloadError("Unsupported action", code="invalid_action")

    # --- agent commands ---

    async def book(self, command: BookCommand) -> Union[PendingApprovalResult, ConflictResult]:
        start = command.requested_start.astimezone(timezone.utc)
        interval = Interval.from_duration(start, command.duration_minutes)

        if await self._find_conflict(interval) is not None:
            return await self._conflict_response(
                PendingActionType.BOOK, start, command.duration_minutes
            )

        async with self._store.transaction() as tx:
            client = await tx.upsert_client(
                command.client.phone_number, command.client.name, command.client.email
            )
            outcome = await tx.insert_reservation(
                NewReservation(
                    client_id=client.id,
                    interval=interval,
                    pending_change=BookChange(
                        requested_by=REQUESTED_BY_CHANNEL,
                        duration_minutes=command.duration_minutes,
                        client_phone_number=command.client.phone_number,
                    ),
                    audit_tier=command.audit_tier,
                    agent_request_id=command.agent_request_id,
                    confirmation_webhook_url=command.confirmation_webhook_url,
                    notes=command.notes,
                )
            )

        if isinstance(outcome, ConstraintViolated):
            logger.info("Booking lost a race for %s (%s)", isoformat_z(start), outcome.constraint)
            return await self._conflict_response(
                PendingActionType.BOOK, start, command.duration_minutes
            )

        reservation = outcome.reservation
        logger.info(
            "Booking %s recorded for %s, awaiting approval",
            reservation.id, isoformat_z(reservation.interval.start),
        )
        await self._notify_pending(reservation, PendingActionType.BOOK)
        return self._pending_result(reservation, PendingActionType.BOOK, with_interval=True)

    async def cancel(self, command: CancelCommand) -> Union[PendingApprovalResult, AlreadyCancelledResult]:
        async with self._store.transaction() as tx:
            existing = await tx.lock_reservation(command.appointment_id)
            if existing.status == ReservationStatus.CANCELLED:
                logger.info("Cancel of %s ignored: already cancelled", existing.id)
                return AlreadyCancelledResult(appointment_id=existing.id)
            if existing.status == ReservationStatus.REJECTED:
                raise InvalidStateError("Cannot cancel a rejected appointment")

            change = CancelChange(
                requested_reason=command.reason or command.notes,
                previous_status=existing.status,
            )
            outcome = await tx.update_reservation(
                self._stage_pending(existing, command, PendingActionType.CANCEL, change)
            )
            if isinstance(outcome, ConstraintViolated):
                raise InvalidStateError("Appointment overlaps an active reservation")

        reservation = outcome.reservation
        logger.info("Cancellation of %s awaiting approval (v%d)", reservation.id, reservation.version)
        await self._notify_pending(reservation, PendingActionType.CANCEL)
        return self._pending_result(reservation, PendingActionType.CANCEL, with_interval=False)

    async def modify(self, command: ModifyCommand) -> Union[PendingApprovalResult, ConflictResult]:
        start = command.requested_start.astimezone(timezone.utc)
        interval = Interval.from_duration(start, command.duration_minutes)

        if await self._find_conflict(interval, exclude_id=command.appointment_id) is not None:
            return await self._conflict_response(
                PendingActionType.MODIFY, start, command.duration_minutes, command.appointment_id
            )

        async with self._store.transaction() as tx:
            existing = await tx.lock_reservation(command.appointment_id)
            if existing.status == ReservationStatus.CANCELLED:
                raise InvalidStateError("Cannot modify a cancelled appointment")
            if existing.status == ReservationStatus.REJECTED:
                raise InvalidStateError("Cannot modify a rejected appointment")

            change = ModifyChange(
                previous_start=existing.interval.start,
                previous_end=existing.interval.end,
                previous_status=existing.status,
                requested_duration_minutes=command.duration_minutes,
            )
            staged = self._stage_pending(existing, command, PendingActionType.MODIFY, change)
            outcome = await tx.update_reservation(staged.model_copy(update={"interval": interval}))

        if isinstance(outcome, ConstraintViolated):
            logger.info("Modify of %s lost a race (%s)", command.appointment_id, outcome.constraint)
            return await self._conflict_response(
                PendingActionType.MODIFY, start, command.duration_minutes, command.appointment_id
            )

        reservation = outcome.reservation
        logger.info(
            "Move of %s to %s awaiting approval (v%d)",
            reservation.id, isoformat_z(reservation.interval.start), reservation.version,
        )
        await self._notify_pending(reservation, PendingActionType.MODIFY)
        return self._pending_result(reservation, PendingActionType.MODIFY, with_interval=True)

    # --- approval ---

    async def approve(
        self,
        appointment_id: str,
        expected_version: int,
        approved: bool,
        reviewed_by: str = "toney",
    ) -> ApprovalResolvedResult:
        """Resolve a pending change.

        Raises:
            NotFoundError: No reservation has this id.
            InvalidStateError: The reservation is not awaiting approval.
            OptimisticLockError: ``expected_version`` is stale; nothing changed.
        """
        async with self._store.transaction() as tx:
            existing = await tx.lock_reservation(appointment_id)
            if existing.status != ReservationStatus.PENDING_APPROVAL or existing.pending_action is None:
                raise InvalidStateError("Appointment is not awaiting approval")

            next_status = resolve_transition(existing.pending_action, approved)
            resolved = await tx.resolve_approval(
                appointment_id,
                expected_version,
                next_status,
                approved,
                reviewed_by,
                self._clock(),
            )
            if resolved is None:
                logger.warning(
                    "Stale approval for %s: expected v%d, stored v%d",
                    appointment_id, expected_version, existing.version,
                )
                raise OptimisticLockError("Approval version conflict")

        logger.info(
            "Approval for %s resolved: %s -> %s by %s (v%d)",
            resolved.id, existing.pending_action.value, resolved.status.value,
            reviewed_by, resolved.version,
        )

        webhook_delivered = False
        if resolved.confirmation_webhook_url:
            webhook_delivered = await self._deliver_webhook(
                resolved.confirmation_webhook_url,
                {
                    "appointmentId": resolved.id,
                    "status": resolved.status.value,
                    "approved": approved,
                    "reviewedBy": reviewed_by,
                    "startTime": isoformat_z(resolved.interval.start),
                    "endTime": isoformat_z(resolved.interval.end),
                    "version": resolved.version,
                },
            )

        return ApprovalResolvedResult(
            appointment_id=resolved.id,
            appointment_status=resolved.status,
            version=resolved.version,
            webhook_delivered=webhook_delivered,
        )

    # --- helpers ---

    async def _find_conflict(
        self, interval: Interval, exclude_id: Optional[str] = None
    ) -> Optional[Reservation]:
        return await self._retry.run(
            lambda: self._store.find_conflict(interval, exclude_id),
            description="conflict check",
        )

    async def _conflict_response(
        self,
        action: PendingActionType,
        requested_start: datetime,
        duration_minutes: int,
        exclude_id: Optional[str] = None,
    ) -> ConflictResult:
        proposed = await self._scanner.get_next_available(
            requested_start, duration_minutes, exclude_id=exclude_id
        )
        return ConflictResult(
            action=action,
            requested_time=isoformat_z(requested_start),
            proposed_time=isoformat_z(proposed) if proposed else None,
        )

    def _stage_pending(
        self,
        existing: Reservation,
        command: Union[CancelCommand, ModifyCommand],
        action: PendingActionType,
        change: Union[CancelChange, ModifyChange],
    ) -> Reservation:
        return existing.model_copy(
            update={
                "status": ReservationStatus.PENDING_APPROVAL,
                "pending_action": action,
                "pending_change": change,
                "approval_requested_at": self._clock(),
                "notes": command.notes if command.notes is not None else existing.notes,
                "agent_request_id": command.agent_request_id or existing.agent_request_id,
                "audit_tier": command.audit_tier,
                "confirmation_webhook_url": (
                    command.confirmation_webhook_url or existing.confirmation_webhook_url
                ),
                "version": existing.version + 1,
            }
        )

    @staticmethod
    def _pending_result(
        reservation: Reservation, action: PendingActionType, with_interval: bool
    ) -> PendingApprovalResult:
        return PendingApprovalResult(
            action=action,
            appointment_id=reservation.id,
            version=reservation.version,
            start_time=isoformat_z(reservation.interval.start) if with_interval else None,
            end_time=isoformat_z(reservation.interval.end) if with_interval else None,
        )

    async def _notify_pending(self, reservation: Reservation, action: PendingActionType) -> None:
        notification = ApprovalNotification(
            appointment_id=reservation.id,
            action=action,
            start_time=reservation.interval.start,
            end_time=reservation.interval.end,
            version=reservation.version,
        )
        try:
            await self._push.send_pending_approval(notification)
        except Exception:
            logger.warning("Approval push for %s failed", reservation.id, exc_info=True)

    async def _deliver_webhook(self, url: str, payload: dict) -> bool:
        try:
            await self._retry.run(
                lambda: self._webhooks.post_confirmation(url, payload),
                description="confirmation webhook",
                retry_on=(WebhookDeliveryError,),
            )
        except WebhookDeliveryError as exc:
            logger.error("Confirmation webhook failed for %s: %s", payload["appointmentId"], exc)
            return False
        except Exception:
            logger.exception("Confirmation webhook for %s raised unexpectedly", payload["appointmentId"])
            return False
        return True
