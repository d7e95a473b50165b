# paygate/x402/gate.py
"""
Resource gate: per-request orchestration of the x402 flow.

    no X-PAYMENT          -> 402 + payment requirements
    undecodable header    -> 400 (fixed message per error category)
    valid structure       -> submit -> wait for terminal status
        confirmed         -> release the resource (caller adds the content)
        failed/timed out  -> 500 "Payment execution failed"

The server does not independently verify amount, recipient or asset before
submission. The token contract is the only party that can reject an
authorization, so an under-paying authorization that the contract accepts
is settled as-is (see DESIGN.md on amount matching).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from starlette.responses import JSONResponse

from paygate.core.config import settings
from paygate.services.relay import RelayClient
from paygate.x402 import audit
from paygate.x402.codec import decode_payment_header, verify_authorization_signature
from paygate.x402.errors import PaymentError
from paygate.x402.models import PaymentHeaderPayload
from paygate.x402.requirements import create_402_response, create_payment_requirements
from paygate.x402.settlement import SettlementAttempt, SettlementSubmitter
from paygate.x402.watcher import SettlementWatcher

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


@dataclass
class GateDecision:
    """Either a response to send as-is, or a confirmed settlement to release content for."""
    response: Optional[JSONResponse] = None
    attempt: Optional[SettlementAttempt] = None

    @property
    def released(self) -> bool:
        return self.response is None and self.attempt is not None


def error_response(error: PaymentError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_response_body())


class ResourceGate:
    """Single entry point deciding challenge, rejection, or release for a request."""

    def __init__(
        self,
        submitter: SettlementSubmitter,
        watcher: SettlementWatcher,
        local_signature_check: Optional[bool] = None
    ):
        self.submitter = submitter
        self.watcher = watcher
        self.local_signature_check = (
            settings.X402_LOCAL_SIGNATURE_CHECK if local_signature_check is None
            else local_signature_check
        )

    @classmethod
    def from_relay(cls, relay: RelayClient) -> "ResourceGate":
        """Build a gate from settings around a shared relay client."""
        return cls(SettlementSubmitter(relay), SettlementWatcher(relay))

    async def process(self, request: Request) -> GateDecision:
        client_ip = get_client_ip(request)
        request_id = audit.generate_request_id()
        payment_header = request.headers.get(X_PAYMENT_HEADER)

        if not payment_header or not payment_header.strip():
            requirements = create_payment_requirements(request)
            logger.info(f"x402: No X-PAYMENT header from {client_ip}, returning 402 for {requirements.resource}")
            audit.log_payment_required_sent(
                client_ip=client_ip,
                amount=requirements.max_amount_required,
                asset=requirements.asset,
                network=requirements.network,
                pay_to=requirements.pay_to,
                resource=requirements.resource,
                request_id=request_id,
            )
            return GateDecision(response=create_402_response(requirements))

        try:
            payment = decode_payment_header(payment_header)
            if self.local_signature_check:
                verify_authorization_signature(payment)
        except PaymentError as e:
            logger.warning(f"x402: Rejected X-PAYMENT header from {client_ip}: {type(e).__name__}: {e}")
            audit.log_payment_rejected(
                client_ip=client_ip,
                error_type=type(e).__name__,
                reason=str(e),
                request_id=request_id,
            )
            return GateDecision(response=error_response(e))

        logger.info(
            f"x402: Payment received from {payment.payer} "
            f"(value {payment.payload.authorization.value}) via {client_ip}"
        )
        audit.log_payment_received(
            client_ip=client_ip,
            payer=payment.payer,
            value=payment.payload.authorization.value,
            network=payment.network,
            request_id=request_id,
        )

        # Settlement is irrevocable once submitted: let it finish even if the
        # client goes away, so the audit trail records the real outcome.
        task = asyncio.ensure_future(self.settle(payment, client_ip, request_id))
        try:
            attempt = await asyncio.shield(task)
        except PaymentError as e:
            return GateDecision(response=error_response(e))
        except Exception as e:
            logger.exception(f"x402: Unexpected settlement error [{request_id}]")
            audit.log_error(
                client_ip=client_ip,
                error_type=type(e).__name__,
                error_message=str(e),
                context={"stage": "settle"},
                request_id=request_id,
            )
            return GateDecision(response=error_response(PaymentError(str(e))))
        except asyncio.CancelledError:
            logger.warning(f"x402: Client {client_ip} disconnected during settlement [{request_id}]")
            task.add_done_callback(_discard_settlement_result)
            raise

        return GateDecision(attempt=attempt)

    async def settle(
        self,
        payment: PaymentHeaderPayload,
        client_ip: str,
        request_id: Optional[str] = None
    ) -> SettlementAttempt:
        """
        Submit and watch one settlement attempt.

        Raises:
            SubmissionFailed, SettlementFailed, SettlementTimedOut
        """
        try:
            attempt = await self.submitter.submit(payment)
            audit.log_payment_submitted(
                client_ip=client_ip,
                payer=attempt.payer,
                attempt_id=attempt.attempt_id,
                batch_id=attempt.batch_id,
                request_id=request_id,
            )
            await self.watcher.wait(attempt)
        except PaymentError as e:
            logger.error(f"x402: Payment execution failed at {e.stage}: {type(e).__name__}: {e}")
            audit.log_payment_failed(
                client_ip=client_ip,
                error_type=type(e).__name__,
                reason=str(e),
                stage=e.stage,
                batch_id=e.batch_id,
                wallet_address=payment.payer,
                request_id=request_id,
            )
            raise

        audit.log_payment_settled(
            client_ip=client_ip,
            payer=attempt.payer,
            attempt_id=attempt.attempt_id,
            batch_id=attempt.batch_id,
            transaction_hash=attempt.transaction_hash,
            network=settings.X402_NETWORK,
            request_id=request_id,
        )
        return attempt


def _discard_settlement_result(task: "asyncio.Future") -> None:
    """Consume the outcome of a settlement whose client already left."""
    if task.cancelled():
        return
    error = task.exception()
    if error is None:
        attempt = task.result()
        logger.info(
            f"x402: Settlement {attempt.attempt_id} finished after disconnect "
            f"(tx {attempt.transaction_hash}); result discarded"
        )
    else:
        logger.info(f"x402: Settlement finished after disconnect with {type(error).__name__}; result discarded")
