# paygate/x402/requirements.py
"""
Payment requirements issuer.

Builds the x402 "exact" scheme challenge for a protected resource and wraps
it in an HTTP 402 response. The challenge is derived from the inbound
request every time; the resource URL is never cached.
"""
import logging
from decimal import Decimal
from typing import Optional, Union

from fastapi import Request
from starlette.responses import JSONResponse
from x402.schemas import PaymentRequirementsV1

from paygate.core.config import atomic_units, settings

logger = logging.getLogger(__name__)

EXACT_SCHEME = "exact"
JSON_MIME_TYPE = "application/json"


def usd_to_atomic(price_usd: Union[Decimal, str, float], decimals: Optional[int] = None) -> str:
    """
    Convert a USD price into the asset's smallest unit as a decimal string.

    USDC has 6 decimals, so $1.00 = 1,000,000 and $0.00075 = 750.
    Fractions below one smallest unit are truncated.
    """
    if decimals is None:
        decimals = settings.X402_ASSET_DECIMALS
    return str(atomic_units(Decimal(str(price_usd)), decimals))


def build_resource_url(request: Request) -> str:
    """Absolute URL (scheme + host + path) of the endpoint handling this request."""
    host = request.headers.get("host") or settings.X402_DEFAULT_HOST
    scheme = "https" if request.url.scheme == "https" else "http"
    return f"{scheme}://{host}{request.url.path}"


def create_payment_requirements(
    request: Request,
    price_usd: Optional[Decimal] = None,
    description: Optional[str] = None
) -> PaymentRequirementsV1:
    """
    Create the PaymentRequirements challenge for a request.

    Args:
        request: The incoming request (source of the resource URL)
        price_usd: Price in USD; defaults to X402_PRICE_USD
        description: Human description; defaults to X402_RESOURCE_DESCRIPTION

    Returns:
        PaymentRequirementsV1 for the 402 body
    """
    if price_usd is None:
        price_usd = settings.X402_PRICE_USD

    return PaymentRequirementsV1(
        scheme=EXACT_SCHEME,
        network=settings.X402_NETWORK,
        max_amount_required=usd_to_atomic(price_usd),
        resource=build_resource_url(request),
        description=description or settings.X402_RESOURCE_DESCRIPTION,
        mime_type=JSON_MIME_TYPE,
        pay_to=settings.X402_PAY_TO_ADDRESS,
        max_timeout_seconds=settings.X402_MAX_TIMEOUT_SECONDS,
        asset=settings.X402_ASSET_ADDRESS,
        extra={
            "name": settings.X402_ASSET_NAME,
            "version": settings.X402_ASSET_VERSION,
        },
    )


def create_402_response(payment_requirements: PaymentRequirementsV1) -> JSONResponse:
    """HTTP 402 whose body is exactly the payment requirements (camelCase)."""
    return JSONResponse(
        status_code=402,
        content=payment_requirements.model_dump(by_alias=True, exclude_none=True),
    )
