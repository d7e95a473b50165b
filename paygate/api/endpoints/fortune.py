# paygate/api/endpoints/fortune.py
import logging
import random
from typing import Optional

from fastapi import APIRouter, Request

from paygate.api.models.fortune import FortuneResponse
from paygate.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

FORTUNES = [
    "A great adventure awaits you in the digital realm.",
    "Your blockchain investments will flourish like a digital garden.",
    "The stars align for your next smart contract deployment.",
    "Fortune favors the bold - mint your destiny today.",
    "Your wallet will overflow with unexpected tokens.",
    "A mysterious NFT will bring you great joy.",
    "The oracle speaks: hodl strong, prosperity comes.",
    "Your next transaction will unlock hidden treasures.",
    "The cryptographic winds blow in your favor.",
    "A decentralized future awaits your participation.",
    "Your private keys will unlock doors to abundance.",
    "The blockchain remembers your good deeds - rewards follow.",
    "A wise trader you shall become, young padawan.",
    "Your digital footprint leads to golden opportunities.",
    "The metaverse calls your name - answer with courage.",
]

CATEGORIES = ["Love", "Wealth", "Health", "Career", "Adventure", "Wisdom", "Luck", "Success"]


def draw_fortune(transaction_hash: Optional[str] = None) -> FortuneResponse:
    return FortuneResponse(
        fortune=random.choice(FORTUNES),
        category=random.choice(CATEGORIES),
        luckyNumber=random.randint(1, 100),
        price=float(settings.X402_PRICE_USD),
        transactionHash=transaction_hash,
    )


@router.get("/fortune", response_model=FortuneResponse)
async def get_fortune(request: Request) -> FortuneResponse:
    """
    Return a random fortune.

    Only reached after the x402 middleware has confirmed settlement; the
    settlement transaction hash is echoed back when the relay reported one.
    """
    attempt = getattr(request.state, "settlement", None)
    transaction_hash = attempt.transaction_hash if attempt else None
    logger.info(f"Fortune endpoint accessed (settlement tx: {transaction_hash})")
    return draw_fortune(transaction_hash)
