from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List


class CartItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=100)
    quantity: int = 1


class CartItemUpdate(BaseModel):
    quantity: int


class CartItemResponse(BaseModel):
    product_id: str
    title: str
    unit_price: Decimal
    quantity: int
    line_subtotal: Decimal

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    subtotal: Decimal
    total_items: int
