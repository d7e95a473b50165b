# tests/test_x402_codec.py
"""
Unit tests for X-PAYMENT decoding and the optional local signature check.
"""
from base64 import b64encode

import pytest
from eth_account.messages import encode_typed_data

from paygate.x402.codec import (
    SIGNATURE_TRUST_MODE,
    build_typed_data,
    decode_payment_header,
    verify_authorization_signature,
)
from paygate.x402.errors import InvalidPaymentStructure, InvalidSignature, MalformedHeader

from conftest import PAYER_ADDRESS, encode_header, make_payment_dict, make_payment_header


class TestDecodeValidHeader:
    """Test decoding of well-formed headers."""

    def test_decode_valid_header(self):
        result = decode_payment_header(make_payment_header(value="750"))

        assert result.x402_version == 1
        assert result.scheme == "exact"
        assert result.network == "base-sepolia"
        assert result.payer == PAYER_ADDRESS
        authorization = result.payload.authorization
        assert authorization.value == 750
        assert authorization.valid_after == 0
        assert authorization.valid_before == 9999999999
        assert authorization.nonce == "0x" + "01" * 32
        assert len(result.payload.signature_bytes) == 65

    def test_numeric_fields_accepted_as_numbers(self):
        """Wallets may send integers instead of decimal strings."""
        payment = make_payment_dict(value=750, valid_after=0, valid_before=2000000000)
        result = decode_payment_header(encode_header(payment))
        assert result.payload.authorization.value == 750
        assert result.payload.authorization.valid_before == 2000000000

    def test_envelope_fields_optional(self):
        """Only payload.signature and payload.authorization are required."""
        payment = make_payment_dict()
        del payment["x402Version"], payment["scheme"], payment["network"]
        result = decode_payment_header(encode_header(payment))
        assert result.network is None

    def test_surrounding_whitespace_ignored(self):
        result = decode_payment_header("  " + make_payment_header() + "\n")
        assert result.payer == PAYER_ADDRESS


class TestMalformedHeader:
    """Base64 and JSON failures are MalformedHeader."""

    def test_invalid_base64(self):
        with pytest.raises(MalformedHeader):
            decode_payment_header("not-valid-base64!!!")

    def test_invalid_utf8(self):
        with pytest.raises(MalformedHeader):
            decode_payment_header(b64encode(b"\xff\xfe\xfd\xfc").decode())

    def test_invalid_json(self):
        with pytest.raises(MalformedHeader):
            decode_payment_header(b64encode(b"not json").decode())

    def test_public_message(self):
        assert MalformedHeader.public_message == "Invalid payment header format"
        assert MalformedHeader.status_code == 400


class TestInvalidStructure:
    """Missing or unusable signature/authorization is InvalidPaymentStructure."""

    @pytest.mark.parametrize("document", [b"[1, 2, 3]", b"\"pay\"", b"42", b"null"])
    def test_json_that_is_not_an_object(self, document):
        """The JSON parsed, so a non-object is a structure error, not a format error."""
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(b64encode(document).decode())

    def test_missing_payload(self):
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(encode_header({"x402Version": 1, "scheme": "exact"}))

    def test_missing_signature(self):
        payment = make_payment_dict()
        del payment["payload"]["signature"]
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(encode_header(payment))

    def test_null_authorization(self):
        payment = make_payment_dict()
        payment["payload"]["authorization"] = None
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(encode_header(payment))

    def test_non_numeric_value(self):
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(make_payment_header(value="lots"))

    def test_negative_value(self):
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(make_payment_header(value=-1))

    def test_bad_address(self):
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(make_payment_header(payer="0xpayer"))

    def test_short_nonce(self):
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(make_payment_header(nonce="0x123"))

    def test_inverted_validity_window(self):
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(make_payment_header(valid_after="200", valid_before="100"))

    def test_non_hex_signature(self):
        with pytest.raises(InvalidPaymentStructure):
            decode_payment_header(make_payment_header(signature="signed-by-me"))


def sign_authorization(account, payment: dict) -> str:
    """Sign the payment's authorization the way a wallet would."""
    unsigned = decode_payment_header(encode_header(payment))
    typed_data = build_typed_data(unsigned.payload.authorization)
    signed = account.sign_message(encode_typed_data(full_message=typed_data))
    return "0x" + bytes(signed.signature).hex()


class TestLocalSignatureCheck:
    """Optional fast-fail EIP-712 signer recovery."""

    def test_trust_is_delegated_by_default(self):
        assert SIGNATURE_TRUST_MODE == "delegated-to-contract"

    def test_valid_signature(self, payer_account):
        payment = make_payment_dict(payer=payer_account.address)
        payment["payload"]["signature"] = sign_authorization(payer_account, payment)

        decoded = decode_payment_header(encode_header(payment))
        assert verify_authorization_signature(decoded) is True

    def test_signature_from_other_key(self, payer_account, merchant_account):
        payment = make_payment_dict(payer=payer_account.address)
        payment["payload"]["signature"] = sign_authorization(merchant_account, payment)

        decoded = decode_payment_header(encode_header(payment))
        with pytest.raises(InvalidSignature):
            verify_authorization_signature(decoded)

    def test_tampered_value(self, payer_account):
        """Changing the value after signing breaks recovery."""
        payment = make_payment_dict(payer=payer_account.address, value="750")
        payment["payload"]["signature"] = sign_authorization(payer_account, payment)
        payment["payload"]["authorization"]["value"] = "1"

        decoded = decode_payment_header(encode_header(payment))
        with pytest.raises(InvalidSignature):
            verify_authorization_signature(decoded)

    def test_smart_account_signature_deferred(self):
        """Non-65-byte signatures are left to the token contract."""
        decoded = decode_payment_header(make_payment_header(signature="0x" + "cd" * 120))
        assert verify_authorization_signature(decoded) is False
