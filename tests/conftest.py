"""
Pytest configuration and shared fixtures
"""
import json
from base64 import b64encode
from unittest.mock import AsyncMock

import pytest
from eth_account import Account

from paygate.core.config import settings
from paygate.services.relay import CallsStatus, PreparedCalls, RelayClient, SubmittedCalls

MERCHANT_KEY = "0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef"
PAYER_KEY = "0xabcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890"
MERCHANT_ADDRESS = "0x9999999999999999999999999999999999999999"
PAYER_ADDRESS = Account.from_key(PAYER_KEY).address
PAY_TO_ADDRESS = "0x50F1d3b9F5811F333e7Ef77D14B470cEAA08e905"
BATCH_ID = "0x" + "be" * 32
TX_HASH = "0x" + "7a" * 32


def make_payment_dict(
    value="750",
    payer=PAYER_ADDRESS,
    pay_to=PAY_TO_ADDRESS,
    network="base-sepolia",
    signature="0x" + "ab" * 65,
    nonce="0x" + "01" * 32,
    valid_after="0",
    valid_before="9999999999",
):
    return {
        "x402Version": 1,
        "scheme": "exact",
        "network": network,
        "payload": {
            "signature": signature,
            "authorization": {
                "from": payer,
                "to": pay_to,
                "value": value,
                "validAfter": valid_after,
                "validBefore": valid_before,
                "nonce": nonce,
            },
        },
    }


def encode_header(payment: dict) -> str:
    return b64encode(json.dumps(payment).encode("utf-8")).decode("ascii")


def make_payment_header(**kwargs) -> str:
    """Base64-encoded X-PAYMENT header for a structurally valid payment."""
    return encode_header(make_payment_dict(**kwargs))


def calls_status(status: int, tx_hash: str = TX_HASH) -> CallsStatus:
    receipts = [{"transactionHash": tx_hash}] if status == 200 else []
    return CallsStatus.model_validate({"id": BATCH_ID, "status": status, "receipts": receipts})


def make_mock_relay(statuses=None) -> AsyncMock:
    """
    Relay double whose status poll returns ``statuses`` in order, repeating
    the last one. Defaults to an immediate confirmation.
    """
    relay = AsyncMock(spec=RelayClient)
    relay.prepare_calls.return_value = PreparedCalls(context={"quote": "q1"}, digest="0x" + "11" * 32)
    relay.send_prepared_calls.return_value = SubmittedCalls(id=BATCH_ID)

    sequence = list(statuses or [calls_status(200)])

    async def next_status(batch_id):
        if len(sequence) > 1:
            return sequence.pop(0)
        return sequence[0]

    relay.get_calls_status.side_effect = next_status
    return relay


@pytest.fixture
def merchant_account():
    return Account.from_key(MERCHANT_KEY)


@pytest.fixture
def payer_account():
    return Account.from_key(PAYER_KEY)


@pytest.fixture(autouse=True)
def isolated_audit_log(tmp_path, monkeypatch):
    """Keep audit events out of the working tree."""
    monkeypatch.setattr(settings, "X402_AUDIT_LOG_PATH", str(tmp_path / "audit" / "x402_audit.jsonl"))
    yield tmp_path / "audit" / "x402_audit.jsonl"
