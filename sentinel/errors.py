"""
Classified errors for the sentinel core.

Every caller-visible failure is a SentinelError carrying a stable ``code``
and the HTTP status it maps to. Anything else reaching the gateway is an
unclassified fault and is reported generically.
"""

from typing import Any, Optional

FAULT_MESSAGE = "System fault. Active recovery initiated."
FAULT_CODE = "sentinel_fault"


class SentinelError(Exception):
    """Base class for classified, caller-safe errors."""

    status_code: int = 500
    code: str = "http_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class InvalidPayloadError(SentinelError):
    status_code = 400
    code = "invalid_payload"


class PayloadTooLargeError(SentinelError):
    status_code = 413
    code = "payload_too_large"


class SignatureError(SentinelError):
    """Signature verification failed; ``code`` is the verifier's reason."""

    status_code = 403
    code = "invalid_signature"


class AuditTierMismatchError(SentinelError):
    status_code = 403
    code = "audit_tier_mismatch"


class NotFoundError(SentinelError):
    status_code = 404
    code = "not_found"


class InvalidStateError(SentinelError):
    status_code = 409
    code = "invalid_state"


class OptimisticLockError(SentinelError):
    status_code = 409
    code = "optimistic_lock_conflict"


class TransientStoreError(Exception):
    """A retryable infrastructure fault raised by a store adapter."""


class WebhookDeliveryError(Exception):
    """The confirmation webhook could not be delivered."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def to_error_body(exc: BaseException) -> tuple[int, dict[str, str]]:
    """Map an exception to ``(status_code, body)`` without leaking internals."""
    if isinstance(exc, SentinelError):
        return exc.status_code, {"error": exc.message, "code": exc.code}
    return 500, {"error": FAULT_MESSAGE, "code": FAULT_CODE}
