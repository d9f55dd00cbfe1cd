"""Tests for tiered request signature verification."""

import hashlib
import hmac

import pytest

from sentinel.config import SignatureConfig
from sentinel.security.signature import (
    SignatureVerifier,
    SignedRequest,
    canonical_string,
    compute_signature,
)

NOW_MS = 1_772_000_000_000
BODY = b'{"action":"book","auditTier":"tier2"}'
PATH = "/sentinel/agent"


def _request(body=BODY, tier="tier2", secret="tier2-secret", timestamp_ms=NOW_MS, **header_overrides):
    headers = {
        "X-Sentinel-Timestamp": str(timestamp_ms),
        "X-Sentinel-Signature": compute_signature(secret, "POST", PATH, timestamp_ms, tier, body),
        "X-Audit-Tier": tier,
    }
    headers.update(header_overrides)
    return SignedRequest(method="POST", path=PATH, body=body, headers=headers)


class TestCanonicalString:
    def test_layout(self):
        assert canonical_string("post", PATH, 123, "tier1", b"{}") == b"POST\n/sentinel/agent\n123\ntier1\n{}"

    def test_signature_is_hmac_sha256_hex(self):
        expected = hmac.new(
            b"s", b"POST\n/p\n1\ntier1\nbody", hashlib.sha256
        ).hexdigest()
        assert compute_signature("s", "POST", "/p", 1, "tier1", b"body") == expected
        assert compute_signature("s", "POST", "/p", 1, "tier1", "body") == expected


class TestSignatureVerifier:
    def setup_method(self):
        self.config = SignatureConfig(
            default_secret="fallback-secret",
            tier_secrets={"tier2": "tier2-secret"},
        )
        self.verifier = SignatureVerifier(self.config, clock=lambda: NOW_MS / 1000)

    def test_valid_request(self):
        result = self.verifier.verify(_request())
        assert result.ok
        assert result.reason is None
        assert result.audit_tier == "tier2"
        assert result.timestamp_ms == NOW_MS

    def test_headers_are_case_insensitive(self):
        request = _request()
        lowered = SignedRequest(
            method=request.method, path=request.path, body=request.body,
            headers={k.lower(): v for k, v in request.headers.items()},
        )
        assert self.verifier.verify(lowered).ok

    @pytest.mark.parametrize("missing", ["X-Sentinel-Timestamp", "X-Sentinel-Signature", "X-Audit-Tier"])
    def test_missing_header(self, missing):
        request = _request()
        headers = {k: v for k, v in request.headers.items() if k != missing}
        result = self.verifier.verify(SignedRequest("POST", PATH, BODY, headers))
        assert not result.ok
        assert result.reason == "missing_signature_headers"

    @pytest.mark.parametrize("raw", ["not-a-number", "nan", "inf", ""])
    def test_invalid_timestamp(self, raw):
        result = self.verifier.verify(_request(**{"X-Sentinel-Timestamp": raw}))
        assert not result.ok
        assert result.reason in ("invalid_timestamp", "missing_signature_headers")
        if raw:
            assert result.reason == "invalid_timestamp"

    def test_fractional_timestamp_is_rejected(self):
        result = self.verifier.verify(_request(**{"X-Sentinel-Timestamp": f"{NOW_MS}.5"}))
        assert not result.ok
        assert result.reason == "invalid_timestamp"

    def test_integral_decimal_timestamp_is_accepted(self):
        assert self.verifier.verify(_request(**{"X-Sentinel-Timestamp": f"{NOW_MS}.0"})).ok

    @pytest.mark.parametrize("offset_ms", [300_001, -300_001, 3_600_000])
    def test_stale_or_future_timestamp(self, offset_ms):
        result = self.verifier.verify(_request(timestamp_ms=NOW_MS + offset_ms))
        assert not result.ok
        assert result.reason == "timestamp_out_of_window"

    def test_skew_boundary_is_inclusive(self):
        assert self.verifier.verify(_request(timestamp_ms=NOW_MS - 300_000)).ok

    def test_unknown_tier_falls_back_to_default_secret(self):
        assert self.verifier.verify(_request(tier="tier9", secret="fallback-secret")).ok

    def test_no_secret_for_tier(self):
        verifier = SignatureVerifier(
            SignatureConfig(tier_secrets={"tier2": "tier2-secret"}), clock=lambda: NOW_MS / 1000
        )
        result = verifier.verify(_request(tier="tier1", secret="anything"))
        assert not result.ok
        assert result.reason == "missing_server_secret"

    def test_tier_header_lookup_is_case_insensitive(self):
        assert self.verifier.verify(_request(tier="TIER2")).ok

    def test_wrong_secret(self):
        result = self.verifier.verify(_request(secret="other-secret"))
        assert not result.ok
        assert result.reason == "signature_mismatch"

    def test_tier_is_bound_into_signature(self):
        request = _request(tier="tier2")
        swapped = dict(request.headers)
        swapped["X-Audit-Tier"] = "tier9"
        result = self.verifier.verify(SignedRequest("POST", PATH, BODY, swapped))
        assert result.reason == "signature_mismatch"

    def test_reserialized_body_does_not_verify(self):
        request = _request()
        reformatted = b'{"action": "book", "auditTier": "tier2"}'
        result = self.verifier.verify(SignedRequest("POST", PATH, reformatted, request.headers))
        assert result.reason == "signature_mismatch"

    def test_path_and_method_are_covered(self):
        request = _request()
        assert self.verifier.verify(SignedRequest("PUT", PATH, BODY, request.headers)).reason == "signature_mismatch"
        assert self.verifier.verify(SignedRequest("POST", "/other", BODY, request.headers)).reason == "signature_mismatch"

    @pytest.mark.parametrize("signature", ["abc", "z" * 64, "0" * 63 + "g", ""])
    def test_malformed_signature(self, signature):
        result = self.verifier.verify(_request(**{"X-Sentinel-Signature": signature}))
        assert not result.ok
        assert result.reason in ("signature_mismatch", "missing_signature_headers")

    def test_uppercase_hex_signature_accepted(self):
        request = _request()
        headers = dict(request.headers)
        headers["X-Sentinel-Signature"] = headers["X-Sentinel-Signature"].upper()
        assert self.verifier.verify(SignedRequest("POST", PATH, BODY, headers)).ok
