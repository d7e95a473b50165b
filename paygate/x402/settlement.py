# paygate/x402/settlement.py
"""
Settlement submitter for EIP-3009 transfer authorizations.

A validated authorization is turned into a single ``transferWithAuthorization``
call on the token contract and submitted through the relay as a one-call
batch for the merchant account. The batch is signed with the custodial
merchant key and pays its fee in the settlement asset itself, so payers
never need native gas.

Submission is attempted exactly once. A failed authorization cannot be
resubmitted safely by the server: the client must sign a fresh one.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from paygate.core.config import settings
from paygate.services.relay import Call, RelayClient, RelayError
from paygate.x402.errors import SubmissionFailed
from paygate.x402.models import PaymentHeaderPayload

logger = logging.getLogger(__name__)

# EIP-3009 entry point taking a packed (r, s, v) or contract-wallet signature
TRANSFER_WITH_AUTHORIZATION_ABI = [
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "validAfter", "type": "uint256"},
            {"name": "validBefore", "type": "uint256"},
            {"name": "nonce", "type": "bytes32"},
            {"name": "signature", "type": "bytes"},
        ],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class SettlementState(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = {SettlementState.CONFIRMED, SettlementState.FAILED, SettlementState.TIMED_OUT}

ALLOWED_TRANSITIONS = {
    SettlementState.PENDING: {SettlementState.SUBMITTED, SettlementState.FAILED},
    SettlementState.SUBMITTED: TERMINAL_STATES,
}


@dataclass
class SettlementAttempt:
    """
    One settlement attempt, owned by the request that carried the payment.

    Never stored beyond the request; two requests with the same header get
    two independent attempts.
    """
    payer: str
    value: int
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: SettlementState = SettlementState.PENDING
    batch_id: Optional[str] = None
    status_code: Optional[int] = None
    transaction_hash: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    history: List[SettlementState] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: SettlementState, reason: Optional[str] = None) -> None:
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Illegal settlement transition {self.state.value} -> {new_state.value}")
        self.history.append(self.state)
        self.state = new_state
        if reason:
            self.failure_reason = reason

    def mark_submitted(self, batch_id: str) -> None:
        self.batch_id = batch_id
        self.transition(SettlementState.SUBMITTED)

    def mark_confirmed(self, status_code: int, transaction_hash: Optional[str]) -> None:
        self.status_code = status_code
        self.transaction_hash = transaction_hash
        self.transition(SettlementState.CONFIRMED)

    def mark_failed(self, reason: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        self.transition(SettlementState.FAILED, reason)

    def mark_timed_out(self, reason: str) -> None:
        self.transition(SettlementState.TIMED_OUT, reason)


@lru_cache()
def _token_contract():
    return Web3().eth.contract(abi=TRANSFER_WITH_AUTHORIZATION_ABI)


def encode_transfer_with_authorization(payment: PaymentHeaderPayload) -> str:
    """ABI-encode the transferWithAuthorization call for a payment payload."""
    authorization = payment.payload.authorization
    return _token_contract().encode_abi(
        "transferWithAuthorization",
        args=[
            Web3.to_checksum_address(authorization.from_address),
            Web3.to_checksum_address(authorization.to),
            authorization.value,
            authorization.valid_after,
            authorization.valid_before,
            bytes.fromhex(authorization.nonce[2:]),
            payment.payload.signature_bytes,
        ],
    )


def relay_key(account: LocalAccount) -> Dict[str, Any]:
    """Relay descriptor of the custodial secp256k1 key."""
    return {"type": "secp256k1", "publicKey": account.address, "prehash": False}


class SettlementSubmitter:
    """Submits authorizations as one-call batches through the relay."""

    def __init__(
        self,
        relay: RelayClient,
        merchant_private_key: Optional[str] = None,
        merchant_address: Optional[str] = None,
        asset: Optional[str] = None,
        chain_id: Optional[int] = None
    ):
        self.relay = relay
        private_key = merchant_private_key or settings.MERCHANT_PRIVATE_KEY
        self._key: Optional[LocalAccount] = Account.from_key(private_key) if private_key else None
        self.merchant_address = merchant_address or settings.MERCHANT_ADDRESS or (
            self._key.address if self._key else None
        )
        self.asset = asset or settings.X402_ASSET_ADDRESS
        self.chain_id = chain_id or settings.X402_CHAIN_ID

        if self._key is None:
            logger.warning("MERCHANT_PRIVATE_KEY not configured - payments cannot be settled")

    def sign_digest(self, digest: str) -> str:
        signed = self._key.unsafe_sign_hash(bytes.fromhex(digest[2:]))
        return "0x" + bytes(signed.signature).hex()

    async def submit(self, payment: PaymentHeaderPayload) -> SettlementAttempt:
        """
        Submit a payment for settlement.

        Returns:
            SettlementAttempt in state SUBMITTED carrying the batch id

        Raises:
            SubmissionFailed: missing key, encoding failure, or relay error
        """
        authorization = payment.payload.authorization
        attempt = SettlementAttempt(payer=authorization.from_address, value=authorization.value)

        if self._key is None:
            attempt.mark_failed("merchant key not configured")
            raise SubmissionFailed("merchant key not configured", attempt=attempt)

        try:
            data = encode_transfer_with_authorization(payment)
        except Exception as e:
            attempt.mark_failed(f"encoding failed: {e}")
            raise SubmissionFailed(f"failed to encode transferWithAuthorization: {e}", attempt=attempt)

        key = relay_key(self._key)
        call = Call(to=self.asset, data=data, value="0x0")
        try:
            prepared = await self.relay.prepare_calls(
                account=self.merchant_address,
                calls=[call],
                chain_id=self.chain_id,
                fee_token=self.asset,
                key=key,
            )
        except RelayError as e:
            attempt.mark_failed(str(e))
            raise SubmissionFailed(str(e), attempt=attempt)

        try:
            signature = self.sign_digest(prepared.digest)
        except Exception as e:
            attempt.mark_failed(f"signing failed: {e}")
            raise SubmissionFailed(f"failed to sign batch digest: {e}", attempt=attempt)

        try:
            submitted = await self.relay.send_prepared_calls(prepared, signature, key)
        except RelayError as e:
            attempt.mark_failed(str(e))
            raise SubmissionFailed(str(e), attempt=attempt)

        attempt.mark_submitted(submitted.id)
        logger.info(
            f"x402: Submitted settlement {attempt.attempt_id} as batch {submitted.id} "
            f"for payer {attempt.payer} (value {attempt.value})"
        )
        return attempt
