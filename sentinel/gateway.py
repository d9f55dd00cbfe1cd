"""
Request handling for the agent and approval routes.

Framework-neutral: a transport adapter builds an ``AgentRequest`` from
whatever HTTP server it runs in and writes back the ``GatewayResponse``.
Every classified error maps to its status code; anything else is logged
in full and answered with a generic fault body.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from sentinel.config import AppConfig
from sentinel.errors import (
    AuditTierMismatchError,
    InvalidPayloadError,
    PayloadTooLargeError,
    SignatureError,
    to_error_body,
)
from sentinel.logging_context import get_request_logger, set_request_id
from sentinel.notifications.push import PushGateway
from sentinel.notifications.webhook import WebhookClient
from sentinel.retry import RetryPolicy
from sentinel.schemas.commands import parse_agent_command, parse_approve_command
from sentinel.security.signature import SignatureVerifier, SignedRequest
from sentinel.services.availability import AvailabilityScanner
from sentinel.services.reservations import ReservationProcessor
from sentinel.storage.base import ReservationStore

logger = get_request_logger(__name__)


@dataclass(frozen=True)
class AgentRequest:
    """An inbound HTTP request as received, body unparsed."""
    method: str
    path: str
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    body: dict[str, Any]


def _decode_json(raw: bytes) -> Any:
    try:
        return json.loads(raw.decode("utf-8")) if raw else {}
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise InvalidPayloadError("request body must be valid JSON") from None


class SentinelGateway:
    """Verifies, validates and dispatches agent and approval requests."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        processor: ReservationProcessor,
        max_body_bytes: int = 8 * 1024,
        default_reviewer: str = "toney",
    ) -> None:
        self._verifier = verifier
        self._processor = processor
        self._max_body_bytes = max_body_bytes
        self._default_reviewer = default_reviewer

    async def handle_agent_request(self, request: AgentRequest) -> GatewayResponse:
        set_request_id()
        try:
            verification = self._verifier.verify(
                SignedRequest(request.method, request.path, request.body, request.headers)
            )
            if not verification.ok:
                raise SignatureError(
                    "Unauthorized AI Agent request",
                    code=verification.reason or "invalid_signature",
                )

            if len(request.body) > self._max_body_bytes:
                raise PayloadTooLargeError("payload too large")
            command = parse_agent_command(_decode_json(request.body), self._max_body_bytes)
            if command.agent_request_id:
                set_request_id(command.agent_request_id)

            if command.audit_tier != verification.audit_tier:
                raise AuditTierMismatchError("Audit tier mismatch")

            logger.info("Agent %s command (tier=%s)", command.action, command.audit_tier)
            result = await self._processor.dispatch(command)
            return GatewayResponse(202 if result.is_pending else 200, result.to_response())
        except Exception as exc:
            return self._error_response(exc)

    async def handle_approval(self, body: Any) -> GatewayResponse:
        set_request_id()
        try:
            if isinstance(body, (bytes, str)):
                body = _decode_json(body.encode("utf-8") if isinstance(body, str) else body)
            if isinstance(body, dict) and body.get("reviewedBy") is None:
                body = {**body, "reviewedBy": self._default_reviewer}
            command = parse_approve_command(body)
            result = await self._processor.approve(
                command.appointment_id,
                command.expected_version,
                command.approved,
                command.reviewed_by,
            )
            return GatewayResponse(200, result.to_response())
        except Exception as exc:
            return self._error_response(exc)

    @staticmethod
    def _error_response(exc: Exception) -> GatewayResponse:
        status_code, body = to_error_body(exc)
        if status_code >= 500:
            logger.exception("Sentinel fault: %s", exc)
        else:
            logger.info("Request rejected: %s (%s)", body["code"], body["error"])
        return GatewayResponse(status_code, body)


def build_gateway(
    config: AppConfig,
    store: ReservationStore,
    push_gateway: Optional[PushGateway] = None,
    webhook_client: Optional[WebhookClient] = None,
) -> SentinelGateway:
    """Wire verifier, scanner, retry policy and processor from ``config``."""
    processor = ReservationProcessor(
        store=store,
        scanner=AvailabilityScanner(store, config.scheduling),
        retry_policy=RetryPolicy(config.retry),
        push_gateway=push_gateway or PushGateway(),
        webhook_client=webhook_client or WebhookClient(config.webhook),
    )
    return SentinelGateway(
        verifier=SignatureVerifier(config.signature),
        processor=processor,
        max_body_bytes=config.max_body_bytes,
        default_reviewer=config.default_reviewer,
    )
