# paygate/x402/errors.py
"""
Error taxonomy for the x402 payment flow.

Each error carries the HTTP status it maps to and the fixed message that is
safe to return to the client. The exception's own text (``str(exc)``) holds
internal detail and is only ever logged or written to the audit trail.
"""
from typing import Any, Optional


PAYMENT_EXECUTION_FAILED = "Payment execution failed"


class PaymentError(Exception):
    """Base class for all payment errors surfaced by the resource gate."""

    status_code: int = 500
    public_message: str = PAYMENT_EXECUTION_FAILED
    stage: str = "payment"

    def __init__(self, detail: str = "", attempt: Optional[Any] = None):
        super().__init__(detail or self.public_message)
        self.detail = detail
        self.attempt = attempt

    @property
    def batch_id(self) -> Optional[str]:
        return getattr(self.attempt, "batch_id", None)

    def to_response_body(self) -> dict:
        return {"error": self.public_message}


class MalformedHeader(PaymentError):
    """X-PAYMENT is not base64-encoded UTF-8 JSON."""
    status_code = 400
    public_message = "Invalid payment header format"
    stage = "decode"


class InvalidPaymentStructure(PaymentError):
    """Decoded payload lacks a signature/authorization or has unusable fields."""
    status_code = 400
    public_message = "Invalid payment data structure"
    stage = "validate"


class InvalidSignature(PaymentError):
    """Optional local fast-fail: the signature does not recover to the payer."""
    status_code = 400
    public_message = "Invalid payment signature"
    stage = "validate"


class SubmissionFailed(PaymentError):
    stage = "submit"


class SettlementFailed(PaymentError):
    stage = "settle"


class SettlementTimedOut(PaymentError):
    stage = "settle"
