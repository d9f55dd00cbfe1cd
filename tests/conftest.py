"""Shared test fixtures and helpers."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from sentinel.config import RetryConfig, SchedulingConfig, WebhookConfig
from sentinel.errors import WebhookDeliveryError
from sentinel.notifications.push import ApprovalNotification
from sentinel.retry import RetryPolicy
from sentinel.schemas.commands import BookCommand, CancelCommand, ModifyCommand
from sentinel.schemas.reservation import (
    BookChange,
    Interval,
    PendingActionType,
    Reservation,
    ReservationStatus,
)
from sentinel.services.availability import AvailabilityScanner
from sentinel.services.reservations import ReservationProcessor
from sentinel.storage.memory import InMemoryReservationStore


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


async def no_sleep(_: float) -> None:
    return None


class RecordingPush:
    """Push gateway that records notifications instead of sending them."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[ApprovalNotification] = []
        self.fail = fail

    async def send_pending_approval(self, notification: ApprovalNotification) -> None:
        if self.fail:
            raise RuntimeError("push provider down")
        self.sent.append(notification)


class RecordingWebhook:
    """Webhook client that fails the first ``failures`` calls."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def post_confirmation(self, url: str, payload: dict, headers: Optional[dict] = None) -> None:
        self.calls.append((url, dict(payload)))
        if len(self.calls) <= self.failures:
            raise WebhookDeliveryError("Webhook failed (503): unavailable", status_code=503)


class BrokenWebhook:
    """Webhook client whose call fails with an error outside the delivery taxonomy."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def post_confirmation(self, url: str, payload: dict, headers: Optional[dict] = None) -> None:
        self.calls.append(url)
        raise ValueError(f"cannot post to {url}")


def make_reservation(
    start: datetime,
    minutes: int = 60,
    status: ReservationStatus = ReservationStatus.CONFIRMED,
    version: int = 1,
    pending_action: Optional[PendingActionType] = None,
    webhook_url: Optional[str] = None,
    reservation_id: Optional[str] = None,
) -> Reservation:
    """Build a committed reservation row for seeding the store."""
    pending_change = None
    if pending_action == PendingActionType.BOOK:
        pending_change = BookChange(duration_minutes=minutes, client_phone_number="+15550000000")
    return Reservation(
        id=reservation_id or str(uuid.uuid4()),
        client_id="client-1",
        interval=Interval.from_duration(start, minutes),
        status=status,
        pending_action=pending_action,
        pending_change=pending_change,
        version=version,
        audit_tier="tier2",
        confirmation_webhook_url=webhook_url,
    )


def book_command(start: str = "2026-03-01T13:00:00.000Z", minutes: int = 60, **overrides) -> BookCommand:
    body = {
        "action": "book",
        "auditTier": "tier2",
        "client": {"name": "Jordan", "phoneNumber": "+15551234567"},
        "requestedTime": start,
        "durationMinutes": minutes,
        **overrides,
    }
    return BookCommand.model_validate(body)


def cancel_command(appointment_id: str, **overrides) -> CancelCommand:
    return CancelCommand.model_validate(
        {"action": "cancel", "auditTier": "tier2", "appointmentId": appointment_id, **overrides}
    )


def modify_command(appointment_id: str, start: str, minutes: int = 60, **overrides) -> ModifyCommand:
    return ModifyCommand.model_validate(
        {
            "action": "modify",
            "auditTier": "tier2",
            "appointmentId": appointment_id,
            "requestedTime": start,
            "durationMinutes": minutes,
            **overrides,
        }
    )


@pytest.fixture
def scheduling_config():
    return SchedulingConfig()


@pytest.fixture
def store():
    return InMemoryReservationStore()


@pytest.fixture
def push():
    return RecordingPush()


@pytest.fixture
def webhook():
    return RecordingWebhook()


@pytest.fixture
def retry_policy():
    return RetryPolicy(RetryConfig(retries=2, base_delay_sec=0.0), sleep=no_sleep)


@pytest.fixture
def scanner(store, scheduling_config):
    return AvailabilityScanner(store, scheduling_config)


@pytest.fixture
def processor(store, scanner, retry_policy, push, webhook):
    return ReservationProcessor(
        store=store,
        scanner=scanner,
        retry_policy=retry_policy,
        push_gateway=push,
        webhook_client=webhook,
    )


@pytest.fixture
def webhook_config():
    return WebhookConfig(timeout_sec=1.0)
