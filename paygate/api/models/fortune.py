from typing import Optional

from pydantic import BaseModel


class FortuneResponse(BaseModel):
    """
    Response model for the paid fortune endpoint.
    """
    fortune: str
    category: str
    luckyNumber: int
    price: float
    transactionHash: Optional[str] = None
