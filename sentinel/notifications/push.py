"""
Approval-channel push notifications.

In production this would hand off to FCM/APNs for the approver's device.
The default gateway only logs the queued notification, which keeps local
development and tests free of network calls.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sentinel.schemas.reservation import PendingActionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalNotification:
    """A change waiting for the approver's decision."""
    appointment_id: str
    action: PendingActionType
    start_time: datetime
    end_time: datetime
    version: int


class PushGateway:
    """Best-effort delivery of pending-approval alerts."""

    async def send_pending_approval(self, notification: ApprovalNotification) -> None:
        logger.info(
            "Push queued for approver device: %s %s at %s (v%d)",
            notification.action.value,
            notification.appointment_id,
            notification.start_time.isoformat(),
            notification.version,
        )
