# paygate/core/config.py
import re
from decimal import Decimal, ROUND_DOWN
from functools import lru_cache
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings

# Load .env file if it exists
load_dotenv()

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def atomic_units(amount: Decimal, decimals: int) -> int:
    """Whole smallest units of an asset amount, truncating any remainder."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Fortune Gate"

    # x402 payment requirements
    X402_ENABLED: bool = True
    X402_NETWORK: str = "base-sepolia"
    X402_CHAIN_ID: int = 84532
    X402_ASSET_ADDRESS: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"  # USDC on Base Sepolia
    X402_ASSET_NAME: str = "USDC"
    X402_ASSET_VERSION: str = "2"
    X402_ASSET_DECIMALS: int = 6
    X402_PAY_TO_ADDRESS: str = "0x50F1d3b9F5811F333e7Ef77D14B470cEAA08e905"
    X402_PRICE_USD: Decimal = Decimal("0.00075")
    X402_MAX_TIMEOUT_SECONDS: int = 60
    X402_RESOURCE_DESCRIPTION: str = "Access to fortune"
    X402_DEFAULT_HOST: str = "localhost:8787"

    # Settlement
    X402_SETTLEMENT_TIMEOUT_SECONDS: float = 20.0
    X402_SETTLEMENT_POLL_INTERVAL_SECONDS: float = 1.0
    X402_LOCAL_SIGNATURE_CHECK: bool = False

    # Audit trail (JSON lines)
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    # Relay (merchant account + meta-transaction service)
    RELAY_RPC_URL: AnyHttpUrl = "https://base-sepolia.rpc.ithaca.xyz"
    RELAY_TRANSPORTS: Dict[int, AnyHttpUrl] = {}
    RELAY_HTTP_TIMEOUT_SECONDS: float = 10.0
    MERCHANT_ADDRESS: Optional[str] = None
    MERCHANT_PRIVATE_KEY: Optional[str] = None

    CORS_ALLOWED_ORIGINS: List[str] = [
        "http://localhost:5173",
        "https://localhost:5173",
        "https://stg.id.porto.sh",
        "https://porto.blainemalone.com",
        "http://porto.blainemalone.com",
    ]

    @field_validator("X402_ASSET_ADDRESS", "X402_PAY_TO_ADDRESS")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not ADDRESS_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a 20-byte hex address")
        return v

    @field_validator("MERCHANT_ADDRESS")
    @classmethod
    def validate_optional_address(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not ADDRESS_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a 20-byte hex address")
        return v

    @field_validator("X402_PRICE_USD")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("X402_PRICE_USD must be positive")
        return v

    @field_validator(
        "X402_MAX_TIMEOUT_SECONDS",
        "X402_SETTLEMENT_TIMEOUT_SECONDS",
        "X402_SETTLEMENT_POLL_INTERVAL_SECONDS",
    )
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("timeouts and intervals must be greater than zero")
        return v

    @model_validator(mode="after")
    def validate_price_in_smallest_units(self) -> "Settings":
        if atomic_units(self.X402_PRICE_USD, self.X402_ASSET_DECIMALS) < 1:
            raise ValueError(
                f"X402_PRICE_USD {self.X402_PRICE_USD} is below one smallest unit "
                f"of a {self.X402_ASSET_DECIMALS}-decimal asset"
            )
        return self

    def relay_url_for_chain(self, chain_id: int) -> Optional[str]:
        """Relay transport for a chain id; the configured chain always maps to RELAY_RPC_URL."""
        if chain_id in self.RELAY_TRANSPORTS:
            return str(self.RELAY_TRANSPORTS[chain_id])
        if chain_id == self.X402_CHAIN_ID:
            return str(self.RELAY_RPC_URL)
        return None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
