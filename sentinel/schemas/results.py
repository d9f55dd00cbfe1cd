"""Processor results returned to the agent or the approval surface."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from sentinel.schemas.reservation import PendingActionType, ReservationStatus

PENDING_STATUS = "pending_toney_approval"


class _Result(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @property
    def is_pending(self) -> bool:
        return False

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class PendingApprovalResult(_Result):
    """A change was recorded and now waits for a human decision."""
    status: Literal["pending_toney_approval"] = PENDING_STATUS
    action: PendingActionType
    appointment_id: str
    version: int
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return True

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class ConflictResult(_Result):
    """The requested interval is taken; ``proposed_time`` is the next free slot."""
    status: Literal["conflict"] = "conflict"
    action: PendingActionType
    requested_time: str
    proposed_time: Optional[str] = None


class AlreadyCancelledResult(_Result):
    status: Literal["already_cancelled"] = "already_cancelled"
    appointment_id: str


class ApprovalResolvedResult(_Result):
    status: Literal["approval_resolved"] = "approval_resolved"
    appointment_id: str
    appointment_status: ReservationStatus
    version: int
    webhook_delivered: bool = False
