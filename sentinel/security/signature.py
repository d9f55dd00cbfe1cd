"""
Tiered, replay-resistant request signature verification.

Each agent request carries three headers: an epoch-millisecond timestamp,
a hex HMAC-SHA256 signature, and the audit tier whose secret signed it.
The signature covers a canonical string built from the HTTP method, the
request path, the timestamp, the tier and the raw body bytes exactly as
received, so a re-serialized but semantically equal JSON body does not
verify.
"""

import hashlib
import hmac
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Union

from sentinel.config import SignatureConfig

logger = logging.getLogger(__name__)

TIMESTAMP_HEADER = "x-sentinel-timestamp"
SIGNATURE_HEADER = "x-sentinel-signature"
AUDIT_TIER_HEADER = "x-audit-tier"

HEX_PATTERN = re.compile(r"^[a-fA-F0-9]+$")


@dataclass(frozen=True)
class SignedRequest:
    """The parts of an inbound request that the signature covers."""
    method: str
    path: str
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a signature check."""
    ok: bool
    reason: Optional[str] = None
    audit_tier: Optional[str] = None
    timestamp_ms: Optional[int] = None


def _as_bytes(body: Union[bytes, str]) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else bytes(body)


def canonical_string(
    method: str, path: str, timestamp_ms: int, audit_tier: str, body: Union[bytes, str]
) -> bytes:
    """Newline-joined signing input: METHOD, path, timestamp, tier, raw body."""
    prefix = "\n".join([method.upper(), path, str(timestamp_ms), audit_tier])
    return prefix.encode("utf-8") + b"\n" + _as_bytes(body)


def compute_signature(
    secret: str,
    method: str,
    path: str,
    timestamp_ms: int,
    audit_tier: str,
    body: Union[bytes, str],
) -> str:
    """Hex HMAC-SHA256 of the canonical string under ``secret``."""
    message = canonical_string(method, path, timestamp_ms, audit_tier, body)
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _parse_timestamp(raw: str) -> Optional[int]:
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    if not math.isfinite(value) or not value.is_integer():
        return None
    return int(value)


class SignatureVerifier:
    """Validates an agent request's authenticity and freshness.

    Args:
        config: Secrets per tier and the allowed clock skew.
        clock: Returns the current time in seconds; injectable for tests.
    """

    def __init__(
        self, config: SignatureConfig, clock: Callable[[], float] = time.time
    ) -> None:
        self._config = config
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def verify(self, request: SignedRequest) -> VerificationResult:
        headers = {str(k).lower(): v for k, v in request.headers.items()}
        timestamp_raw = headers.get(TIMESTAMP_HEADER)
        signature = headers.get(SIGNATURE_HEADER)
        audit_tier = headers.get(AUDIT_TIER_HEADER)

        if not timestamp_raw or not signature or not audit_tier:
            return VerificationResult(ok=False, reason="missing_signature_headers")

        timestamp_ms = _parse_timestamp(timestamp_raw)
        if timestamp_ms is None:
            return VerificationResult(ok=False, reason="invalid_timestamp")

        skew_ms = abs(self._now_ms() - timestamp_ms)
        if skew_ms > self._config.max_skew_ms:
            logger.warning(
                "Rejected request outside freshness window (skew=%dms, tier=%s)",
                skew_ms, audit_tier,
            )
            return VerificationResult(
                ok=False, reason="timestamp_out_of_window",
                audit_tier=audit_tier, timestamp_ms=timestamp_ms,
            )

        secret = self._config.secret_for(audit_tier)
        if not secret:
            logger.error("No signing secret configured for tier '%s'", audit_tier)
            return VerificationResult(
                ok=False, reason="missing_server_secret",
                audit_tier=audit_tier, timestamp_ms=timestamp_ms,
            )

        expected = compute_signature(
            secret, request.method, request.path, timestamp_ms, audit_tier, request.body
        )
        # Structurally invalid signatures never reach the comparator.
        valid = (
            len(signature) == len(expected)
            and HEX_PATTERN.match(signature) is not None
            and hmac.compare_digest(bytes.fromhex(signature), bytes.fromhex(expected))
        )
        if not valid:
            logger.warning("Signature mismatch for %s %s (tier=%s)", request.method, request.path, audit_tier)

        return VerificationResult(
            ok=valid,
            reason=None if valid else "signature_mismatch",
            audit_tier=audit_tier,
            timestamp_ms=timestamp_ms,
        )
