# paygate/x402/models.py
"""Typed shapes of the client-supplied X-PAYMENT envelope."""
import re
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
NONCE_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
SIGNATURE_PATTERN = re.compile(r"^0x(?:[0-9a-fA-F]{2})+$")

UINT256_MAX = 2 ** 256 - 1


class TransferAuthorization(BaseModel):
    """
    EIP-3009 TransferWithAuthorization message signed by the payer.

    Integer fields accept JSON numbers or decimal strings, as wallets emit
    either form.
    """
    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(alias="from")
    to: str
    value: int
    valid_after: int = Field(alias="validAfter")
    valid_before: int = Field(alias="validBefore")
    nonce: str

    @field_validator("from_address", "to")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not isinstance(v, str) or not ADDRESS_PATTERN.match(v):
            raise ValueError("must be a 20-byte hex address")
        return v

    @field_validator("value", "valid_after", "valid_before", mode="before")
    @classmethod
    def parse_uint(cls, v: Any) -> int:
        if isinstance(v, bool):
            raise ValueError("must be an unsigned integer")
        if isinstance(v, str):
            if not v.isdigit():
                raise ValueError("must be a decimal integer string")
            v = int(v)
        if not isinstance(v, int) or v < 0 or v > UINT256_MAX:
            raise ValueError("must be a uint256")
        return v

    @field_validator("nonce")
    @classmethod
    def validate_nonce(cls, v: str) -> str:
        if not NONCE_PATTERN.match(v):
            raise ValueError("nonce must be 32 bytes of hex")
        return v

    @model_validator(mode="after")
    def check_window(self) -> "TransferAuthorization":
        if self.valid_after >= self.valid_before:
            raise ValueError("validAfter must be earlier than validBefore")
        return self

    def message(self) -> dict:
        """The EIP-712 message fields in contract argument order."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }


class ExactPayload(BaseModel):
    signature: str
    authorization: TransferAuthorization

    @field_validator("signature")
    @classmethod
    def validate_signature(cls, v: str) -> str:
        if not SIGNATURE_PATTERN.match(v):
            raise ValueError("signature must be 0x-prefixed hex")
        return v

    @property
    def signature_bytes(self) -> bytes:
        return bytes.fromhex(self.signature[2:])


class PaymentHeaderPayload(BaseModel):
    """Versioned X-PAYMENT envelope. Version, scheme and network are informational."""
    model_config = ConfigDict(populate_by_name=True)

    x402_version: Optional[Union[int, str]] = Field(default=None, alias="x402Version")
    scheme: Optional[str] = None
    network: Optional[str] = None
    payload: ExactPayload

    @property
    def payer(self) -> str:
        return self.payload.authorization.from_address
