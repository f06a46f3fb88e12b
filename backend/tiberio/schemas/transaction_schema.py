from typing import List, Optional

from pydantic import BaseModel, Field


class TransactionItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    discount: float = Field(0, ge=0)


class CreateTransactionIn(BaseModel):
    patient_id: Optional[int] = None
    receipt_number: str
    items: List[TransactionItemIn]
    discount_percent: float = Field(0, ge=0, le=100)
