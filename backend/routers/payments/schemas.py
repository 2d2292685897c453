from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"


class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    SLIP = "slip"


class PaymentResponse(BaseModel):
    id: str
    payment_ref: str
    payment_name: str
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    supplier_id: Optional[str] = None
    method: str
    payment_status: str
    amount: Optional[float] = None
    currency: str
    customer_email: Optional[str] = None
    description: Optional[str] = None
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    receipt_url: Optional[str] = None
    slip_url: Optional[str] = None
    slip_original_name: Optional[str] = None
    slip_uploaded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]
    page: int
    limit: int
    total: int


class PaymentUpdate(BaseModel):
    payment_status: Optional[PaymentStatus] = Field(None, alias="paymentStatus")
    amount: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=500)
    customer_email: Optional[str] = Field(None, alias="customerEmail", max_length=255)

    class Config:
        populate_by_name = True


class SlipPaymentCreate(BaseModel):
    order_id: str = Field(alias="orderId")
    amount: float = Field(gt=0, description="Amount in major currency units")
    currency: Optional[str] = None
    slip_url: str = Field(alias="slipUrl", min_length=1, max_length=500, description="Reference returned by the file store")
    slip_original_name: Optional[str] = Field(None, alias="slipOriginalName", max_length=255)
    payment_name: Optional[str] = Field(None, alias="paymentName", max_length=255)

    class Config:
        populate_by_name = True


class StripeIntentCreate(BaseModel):
    amount: int = Field(gt=0, description="Amount in Stripe minor units")
    currency: Optional[str] = None
    order_id: str = Field(alias="orderId")
    payment_name: str = Field(alias="paymentName", min_length=1, max_length=255)

    class Config:
        populate_by_name = True


class StripeIntentResponse(BaseModel):
    client_secret: Optional[str] = Field(None, description="Client secret used by Stripe.js")
    payment: PaymentResponse


class StripeStatusUpdate(BaseModel):
    payment_intent_id: str = Field(alias="paymentIntentId", min_length=1)
    status: PaymentStatus

    class Config:
        populate_by_name = True


class PaymentStatusSummary(BaseModel):
    id: str
    order_id: Optional[str] = None
    payment_ref: str
    status: str


class StripeStatusUpdateResponse(BaseModel):
    message: str
    payment: PaymentStatusSummary


class SyncOrdersResponse(BaseModel):
    message: str
    scanned: int
    repaired: int
