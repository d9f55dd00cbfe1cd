"""
Offline console demo: drives signed agent requests through the full core.

Uses the real signature verifier, availability scanner and reservation
processor against the in-memory store. No database, no push provider,
no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario race
"""

import argparse
import asyncio
import json
import time
from typing import Any, Optional

from sentinel.config import AppConfig, SignatureConfig
from sentinel.gateway import AgentRequest, GatewayResponse, SentinelGateway, build_gateway
from sentinel.security.signature import compute_signature
from sentinel.storage.memory import InMemoryReservationStore

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_TIER = "tier2"
DEMO_SECRET = "demo-tier2-secret"
AGENT_PATH = "/sentinel/agent"


class ConsoleSession:
    """Plays scripted agent/approver exchanges and prints each step."""

    def __init__(self) -> None:
        config = AppConfig(
            signature=SignatureConfig(tier_secrets={DEMO_TIER: DEMO_SECRET}),
        )
        self.store = InMemoryReservationStore()
        self.gateway: SentinelGateway = build_gateway(config, self.store)

    def signed_request(self, body: dict[str, Any]) -> AgentRequest:
        raw = json.dumps(body).encode("utf-8")
        timestamp_ms = int(time.time() * 1000)
        signature = compute_signature(DEMO_SECRET, "POST", AGENT_PATH, timestamp_ms, DEMO_TIER, raw)
        return AgentRequest(
            method="POST",
            path=AGENT_PATH,
            body=raw,
            headers={
                "X-Sentinel-Timestamp": str(timestamp_ms),
                "X-Sentinel-Signature": signature,
                "X-Audit-Tier": DEMO_TIER,
            },
        )

    def show(self, label: str, response: GatewayResponse) -> None:
        color = GREEN if response.status_code < 300 else YELLOW if response.status_code < 500 else RED
        print(f"{BLUE}{BOLD}[{label}]{RESET} {color}{response.status_code}{RESET}")
        print(f"{DIM}  {json.dumps(response.body)}{RESET}")

    async def agent(self, label: str, body: dict[str, Any]) -> GatewayResponse:
        response = await self.gateway.handle_agent_request(self.signed_request(body))
        self.show(f"Agent {label}", response)
        return response

    async def approver(
        self, label: str, appointment_id: str, version: int, approved: bool
    ) -> GatewayResponse:
        response = await self.gateway.handle_approval(
            {"appointmentId": appointment_id, "expectedVersion": version, "approved": approved}
        )
        self.show(f"Approver {label}", response)
        return response

    async def run(self) -> None:
        self._banner("Approval lifecycle")
        booking = {
            "action": "book",
            "auditTier": DEMO_TIER,
            "agentRequestId": "demo-001",
            "client": {"name": "Jordan", "phoneNumber": "+1 555 123 4567"},
            "requestedTime": "2026-03-02T13:00:00.000Z",
            "durationMinutes": 60,
        }
        booked = await self.agent("book", booking)
        appointment_id = booked.body["appointmentId"]

        await self.agent("book same slot", {**booking, "agentRequestId": "demo-002"})
        approved = await self.approver("approve booking", appointment_id, booked.body["version"], True)
        await self.approver("replay stale approval", appointment_id, booked.body["version"], True)

        cancel = {"action": "cancel", "auditTier": DEMO_TIER, "appointmentId": appointment_id,
                  "reason": "Client called to cancel"}
        pending_cancel = await self.agent("cancel", cancel)
        await self.approver("approve cancel", appointment_id, pending_cancel.body["version"], True)
        await self.agent("cancel again", cancel)
        self._footer(approved.body.get("version"))

    async def run_race(self) -> None:
        self._banner("Concurrent bookings for one slot")
        body = {
            "action": "book",
            "auditTier": DEMO_TIER,
            "client": {"name": "Sam", "phoneNumber": "+1 555 000 1111"},
            "requestedTime": "2026-03-03T10:00:00.000Z",
            "durationMinutes": 60,
        }
        first, second = await asyncio.gather(
            self.gateway.handle_agent_request(self.signed_request(body)),
            self.gateway.handle_agent_request(self.signed_request(body)),
        )
        self.show("Agent A", first)
        self.show("Agent B", second)
        self._footer(None)

    def _banner(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  SENTINEL - {title}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    def _footer(self, version: Optional[int]) -> None:
        active = self.store.active_reservations()
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{DIM}  Active reservations: {len(active)}{RESET}")
        if version is not None:
            print(f"{DIM}  Version after first approval: {version}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=["lifecycle", "race"],
        default="lifecycle",
        help="Which scripted exchange to play",
    )
    args = parser.parse_args()

    session = ConsoleSession()
    if args.scenario == "race":
        asyncio.run(session.run_race())
    else:
        asyncio.run(session.run())


if __name__ == "__main__":
    main()
