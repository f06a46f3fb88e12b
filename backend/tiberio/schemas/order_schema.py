from typing import Any, List, Optional

from pydantic import BaseModel, Field


class OrderItemIn(BaseModel):
    item_id: int
    qty: int = Field(..., gt=0)
    unit_price: float = Field(0, ge=0)


class CreateOrderIn(BaseModel):
    supplier_id: int
    items: List[OrderItemIn]
    description: Optional[str] = None
    receipt_number: Optional[str] = None


class StatusIn(BaseModel):
    status: str


class ReturnItemIn(BaseModel):
    # validated by the return ledger so bad values map to its error messages
    returned_quantity: Any = None
    refund_reason: Optional[str] = None
