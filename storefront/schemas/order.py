from decimal import Decimal
from typing import List, Optional
from datetime import datetime

import bleach
from pydantic import BaseModel, Field, field_validator


def _sanitize(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return bleach.clean(value, tags=[], attributes={}, strip=True).strip()


class CustomerInfo(BaseModel):
    name: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=255)
    address: str = Field(default="", max_length=500)
    phone: Optional[str] = Field(default=None, max_length=20)

    @field_validator("name", "email", "address", "phone")
    @classmethod
    def strip_markup(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize(value)


class OrderCreate(BaseModel):
    customer_info: CustomerInfo
    idempotency_key: Optional[str] = Field(default=None, min_length=8, max_length=100)


class OrderItemResponse(BaseModel):
    product_id: str
    title: str
    unit_price: Decimal
    quantity: int
    line_subtotal: Decimal

    class Config:
        from_attributes = True


class PaymentReceiptResponse(BaseModel):
    method: str
    masked_last4: str
    transaction_id: str
    amount: Decimal
    processed_at: datetime

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: int
    status: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total_amount: Decimal
    customer_info: CustomerInfo
    items: List[OrderItemResponse]
    payment_details: Optional[PaymentReceiptResponse] = None
    created_at: datetime
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, value):
        return getattr(value, "value", value)

    class Config:
        from_attributes = True


class CheckoutResponse(BaseModel):
    order: OrderResponse
    checkout_token: Optional[str] = None
    checkout_expires_at: Optional[datetime] = None
