"""
Validated agent commands.

Inbound bodies are bounded and typed here before they reach the
reservation processor. Field names follow the agent's camelCase wire
format; attribute names stay snake_case.
"""

import json
import re
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from sentinel.errors import InvalidPayloadError, PayloadTooLargeError
from sentinel.utils import normalize_phone

MAX_BODY_BYTES = 8 * 1024
ALLOWED_ACTIONS = ("book", "cancel", "modify")
PHONE_PATTERN = re.compile(r"^[+0-9()\-.\s]+$")
DEFAULT_REVIEWER = "toney"


def _bounded(min_length: int, max_length: int) -> Any:
    return Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=min_length, max_length=max_length)
    ]


ClientName = _bounded(1, 120)
Email = _bounded(0, 200)
AuditTier = _bounded(4, 20)
RequestId = _bounded(0, 120)
WebhookUrl = _bounded(0, 500)
Notes = _bounded(0, 500)
AppointmentId = _bounded(8, 60)
Reason = _bounded(0, 300)
ApprovalId = _bounded(1, 60)


DurationMinutes = Annotated[int, Field(ge=15, le=240, multiple_of=15)]


class _Command(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True
    )


class ClientInfo(_Command):
    """The person a booking is made for."""
    name: ClientName
    phone_number: str = Field(validation_alias=AliasChoices("phoneNumber", "phone_number"))
    email: Optional[Email] = None

    @field_validator("phone_number", mode="before")
    @classmethod
    def _normalize_phone(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("client.phoneNumber must be a string")
        trimmed = value.strip()
        if not 7 <= len(trimmed) <= 20:
            raise ValueError("client.phoneNumber length is invalid")
        if not PHONE_PATTERN.match(trimmed):
            raise ValueError("client.phoneNumber format is invalid")
        return normalize_phone(trimmed)


class _AgentCommand(_Command):
    audit_tier: AuditTier = "tier2"
    agent_request_id: Optional[RequestId] = None
    confirmation_webhook_url: Optional[WebhookUrl] = None
    notes: Optional[Notes] = None


class BookCommand(_AgentCommand):
    action: Literal["book"] = "book"
    client: ClientInfo
    requested_start: AwareDatetime = Field(
        validation_alias=AliasChoices("requestedTime", "requestedStart", "requested_start")
    )
    duration_minutes: DurationMinutes = 60


class CancelCommand(_AgentCommand):
    action: Literal["cancel"] = "cancel"
    appointment_id: AppointmentId
    reason: Optional[Reason] = None


class ModifyCommand(_AgentCommand):
    action: Literal["modify"] = "modify"
    appointment_id: AppointmentId
    requested_start: AwareDatetime = Field(
        validation_alias=AliasChoices("requestedTime", "requestedStart", "requested_start")
    )
    duration_minutes: DurationMinutes = 60


AgentCommand = Annotated[
    Union[BookCommand, CancelCommand, ModifyCommand],
    Field(discriminator="action"),
]

_agent_command_adapter: TypeAdapter[AgentCommand] = TypeAdapter(AgentCommand)


class ApproveCommand(_Command):
    """A human approval decision on a pending reservation change."""
    appointment_id: ApprovalId
    expected_version: Annotated[int, Field(ge=1)]
    approved: bool
    reviewed_by: str = DEFAULT_REVIEWER

    @field_validator("approved", mode="before")
    @classmethod
    def _parse_approved(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "true":
                return True
            if normalized == "false":
                return False
        raise ValueError("approved must be a boolean")

    @field_validator("reviewed_by", mode="before")
    @classmethod
    def _truncate_reviewer(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_REVIEWER
        return str(value)[:120]


def _describe(error: ValidationError, tag: Optional[str] = None) -> str:
    first = error.errors()[0]
    parts = [str(part) for part in first["loc"] if not isinstance(part, int)]
    if tag and parts and parts[0] == tag:
        parts = parts[1:]
    location = ".".join(parts)
    message = first["msg"].removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


def _check_size(body: dict, max_bytes: int) -> None:
    raw = json.dumps(body, separators=(",", ":"), default=str)
    if len(raw.encode("utf-8")) > max_bytes:
        raise PayloadTooLargeError("payload too large")


def parse_agent_command(
    body: Any, max_bytes: int = MAX_BODY_BYTES
) -> Union[BookCommand, CancelCommand, ModifyCommand]:
    """Validate a decoded agent request body into a typed command.

    Raises:
        InvalidPayloadError: Shape, action or field validation failed.
        PayloadTooLargeError: The body exceeds ``max_bytes`` once serialized.
    """
    if not isinstance(body, dict):
        raise InvalidPayloadError("request body must be a JSON object")

    _check_size(body, max_bytes)

    action = body.get("action")
    if not isinstance(action, str):
        raise InvalidPayloadError("action must be a string")
    action = action.strip().lower()
    if action not in ALLOWED_ACTIONS:
        raise InvalidPayloadError("action must be one of book, cancel, modify")

    try:
        return _agent_command_adapter.validate_python({**body, "action": action})
    except ValidationError as exc:
        raise InvalidPayloadError(_describe(exc, tag=action)) from None


def parse_approve_command(body: Any) -> ApproveCommand:
    """Validate an approval decision body."""
    if not isinstance(body, dict):
        raise InvalidPayloadError("request body must be a JSON object")
    try:
        return ApproveCommand.model_validate(body)
    except ValidationError as exc:
        raise InvalidPayloadError(_describe(exc)) from None
