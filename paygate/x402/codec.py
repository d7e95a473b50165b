# paygate/x402/codec.py
"""
Authorization codec for the X-PAYMENT header.

Decoding happens in three rejection points, all before any chain access:
1. base64 -> UTF-8 text           (MalformedHeader)
2. text -> JSON                   (MalformedHeader)
3. JSON -> object with signature + authorization (InvalidPaymentStructure)

Signature trust: the codec only guarantees shape. The token contract's
``transferWithAuthorization`` is the authoritative signature verifier, so
no cryptographic check is done here by default. ``verify_authorization_signature``
is an optional fast-fail that recovers the EIP-712 signer locally; it can
only reject plain 65-byte ECDSA signatures and passes smart-account
signatures through to the contract.
"""
import binascii
import json
import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from pydantic import ValidationError
from x402.http import safe_base64_decode

from paygate.core.config import settings
from paygate.x402.errors import InvalidPaymentStructure, InvalidSignature, MalformedHeader
from paygate.x402.models import PaymentHeaderPayload, TransferAuthorization

logger = logging.getLogger(__name__)

SIGNATURE_TRUST_MODE = "delegated-to-contract"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_WITH_AUTHORIZATION_TYPE = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

ECDSA_SIGNATURE_LENGTH = 65


def decode_payment_header(header_value: str) -> PaymentHeaderPayload:
    """
    Decode and structurally validate an X-PAYMENT header value.

    Args:
        header_value: Base64-encoded JSON payment envelope

    Returns:
        PaymentHeaderPayload with a typed authorization

    Raises:
        MalformedHeader: base64 or JSON decoding failed
        InvalidPaymentStructure: signature/authorization missing or unusable
    """
    try:
        decoded_str = safe_base64_decode(header_value.strip())
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise MalformedHeader(f"invalid base64: {e}")

    try:
        payment_data = json.loads(decoded_str)
    except json.JSONDecodeError as e:
        raise MalformedHeader(f"invalid JSON: {e}")

    if not isinstance(payment_data, dict):
        raise InvalidPaymentStructure("payment header is not a JSON object")

    payload = payment_data.get("payload")
    if not isinstance(payload, dict) or not payload.get("signature") or not payload.get("authorization"):
        raise InvalidPaymentStructure("payload.signature and payload.authorization are required")

    try:
        return PaymentHeaderPayload.model_validate(payment_data)
    except ValidationError as e:
        raise InvalidPaymentStructure(f"invalid authorization fields: {e.errors(include_url=False)}")


def build_typed_data(
    authorization: TransferAuthorization,
    asset: Optional[str] = None,
    chain_id: Optional[int] = None,
    name: Optional[str] = None,
    version: Optional[str] = None
) -> dict:
    """EIP-712 typed data the payer signed, bound to the token contract and chain."""
    message = authorization.message()
    message["nonce"] = bytes.fromhex(authorization.nonce[2:])
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION_TYPE,
        },
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": name or settings.X402_ASSET_NAME,
            "version": version or settings.X402_ASSET_VERSION,
            "chainId": chain_id or settings.X402_CHAIN_ID,
            "verifyingContract": asset or settings.X402_ASSET_ADDRESS,
        },
        "message": message,
    }


def verify_authorization_signature(payment: PaymentHeaderPayload) -> bool:
    """
    Locally recover the signer of a plain ECDSA authorization signature.

    Returns:
        True if the signer matches ``from``, False if the signature is not a
        65-byte ECDSA signature and must be left to the contract.

    Raises:
        InvalidSignature: the signature recovers to a different address
    """
    signature = payment.payload.signature_bytes
    if len(signature) != ECDSA_SIGNATURE_LENGTH:
        logger.debug(
            f"x402: {len(signature)}-byte signature is not plain ECDSA, deferring to contract"
        )
        return False

    signable = encode_typed_data(full_message=build_typed_data(payment.payload.authorization))
    try:
        recovered = Account.recover_message(signable, signature=signature)
    except Exception as e:
        raise InvalidSignature(f"signature recovery failed: {e}")

    if recovered.lower() != payment.payer.lower():
        raise InvalidSignature(f"signature recovers to {recovered}, expected {payment.payer}")
    return True
