# paygate/x402/middleware.py
"""
FastAPI middleware for x402 payment gating.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Returns 402 Payment Required when no X-PAYMENT header is sent
3. Decodes the X-PAYMENT header and settles it on-chain via the relay
4. Only calls the protected route once settlement is confirmed
5. Adds an X-PAYMENT-RESPONSE header describing the settlement

The route reads the confirmed SettlementAttempt from ``request.state.settlement``.
"""
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from x402.http import encode_payment_response_header
from x402.schemas import SettleResponse

from paygate.core.config import settings
from paygate.x402.errors import PaymentError
from paygate.x402.gate import ResourceGate, error_response, get_client_ip
from paygate.x402.settlement import SettlementAttempt

logger = logging.getLogger(__name__)

X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

# These endpoints require x402 payment when X402_ENABLED=true
PROTECTED_ENDPOINTS = [
    ("GET", "/api/self/fortune"),
]


def is_protected_endpoint(method: str, path: str) -> bool:
    """Check if the request matches a protected endpoint."""
    for protected_method, protected_path in PROTECTED_ENDPOINTS:
        if method == protected_method and path.rstrip("/") == protected_path.rstrip("/"):
            return True
    return False


def encode_payment_response(attempt: SettlementAttempt) -> str:
    """Base64 JSON settlement summary for the X-PAYMENT-RESPONSE header."""
    settle_response = SettleResponse(
        success=True,
        payer=attempt.payer,
        transaction=attempt.transaction_hash or "",
        network=settings.X402_NETWORK,
    )
    return encode_payment_response_header(settle_response)


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate middleware for FastAPI.

    The gate is normally built in the application lifespan around the shared
    relay client and read from ``app.state.resource_gate``; tests may inject
    one directly.
    """

    def __init__(self, app, gate: Optional[ResourceGate] = None):
        super().__init__(app)
        self._gate = gate

    def get_gate(self, request: Request) -> Optional[ResourceGate]:
        if self._gate is not None:
            return self._gate
        return getattr(request.app.state, "resource_gate", None)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        # Skip if x402 is disabled
        if not settings.X402_ENABLED:
            return await call_next(request)

        # Skip if not a protected endpoint
        if not is_protected_endpoint(request.method, request.url.path):
            return await call_next(request)

        gate = self.get_gate(request)
        if gate is None:
            logger.error("x402: No resource gate configured, refusing protected request")
            return error_response(PaymentError("resource gate not configured"))

        logger.info(
            f"x402: Processing protected request from {get_client_ip(request)}: "
            f"{request.method} {request.url.path}"
        )
        decision = await gate.process(request)
        if not decision.released:
            return decision.response

        request.state.settlement = decision.attempt
        response = await call_next(request)
        if 200 <= response.status_code < 300:
            response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(decision.attempt)
        return response
