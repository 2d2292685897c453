from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum
import re


class PaymentMethod(str, Enum):
    PAY_ONLINE = "Pay Online"
    PAY_LATER = "Pay Later"
    CASH = "Cash"
    CARD = "Card"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELED = "Canceled"


class OrderItem(BaseModel):
    product_id: str = Field(alias="productId")
    product_name: str = Field(alias="productName", min_length=1, max_length=200)
    quantity: int = Field(gt=0)
    price: float = Field(ge=0)

    class Config:
        populate_by_name = True


class OrderCreate(BaseModel):
    contact: str
    payment_method: PaymentMethod = Field(alias="paymentMethod")
    items: List[OrderItem] = Field(min_length=1)

    class Config:
        populate_by_name = True

    @field_validator("contact")
    @classmethod
    def validate_contact(cls, value: str) -> str:
        value = value.strip()
        if not re.fullmatch(r"\d{10}", value):
            raise ValueError("Contact must be a 10 digit phone number")
        return value


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    contact: str
    payment_method: str
    items: List[dict]
    total_amount: float
    status: str
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    message: str
    order: OrderResponse
    payment_id: Optional[str] = None


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    page: int
    limit: int
    total: int
