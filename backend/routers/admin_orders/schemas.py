from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class AdminOrderStatus(str, Enum):
    PENDING = "Pending"
    ORDERED = "Ordered"
    DECLINED = "Declined"
    CANCELLED = "Cancelled"


class SupplierStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"


class AdminOrderItemCreate(BaseModel):
    product_id: Optional[str] = Field(None, alias="productId")
    supplier_id: Optional[str] = Field(None, alias="supplierId")
    name: str = Field(default="Item", max_length=200)
    quantity: int
    price: float = Field(description="Unit price before discounts")

    class Config:
        populate_by_name = True


class AdminOrderCreate(BaseModel):
    items: List[AdminOrderItemCreate]
    contact: str = Field(min_length=1, max_length=255)
    payment_method: Optional[str] = Field("Cash Payment", alias="paymentMethod")
    slip_url: Optional[str] = Field(None, alias="slipUrl", description="Reference to an already uploaded slip")
    notes: Optional[str] = None

    class Config:
        populate_by_name = True


class SupplierResponseRequest(BaseModel):
    action: str = Field(description="'accept' or 'decline'")


class AdminOrderItemResponse(BaseModel):
    id: str
    position: int
    product_id: str
    name: str
    supplier_id: str
    unit_price: float
    quantity: int
    line_subtotal: float
    discount_percent: float
    discount_value: float
    line_total: float
    applied_discount_id: Optional[str] = None
    supplier_status: str


class AdminOrderResponse(BaseModel):
    id: str
    items: List[AdminOrderItemResponse]
    total_cost: float
    discount_total: float
    contact: str
    payment_method: str
    slip_url: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class OrderPaymentSummary(BaseModel):
    id: str
    payment_ref: str
    supplier_id: Optional[str] = None
    method: str
    payment_status: str
    amount: Optional[float] = None
    currency: str


class AdminOrderCreateResponse(BaseModel):
    message: str
    order: AdminOrderResponse
    payment: Optional[OrderPaymentSummary] = None
    payments: List[OrderPaymentSummary] = []


class SupplierResponseResponse(BaseModel):
    message: str
    order: AdminOrderResponse
    supplier_id: str
    action: str
    supplier_total: float
    payments: List[OrderPaymentSummary] = []


class AdminOrderListResponse(BaseModel):
    orders: List[AdminOrderResponse]
    page: int
    limit: int
    total: int


class CancelledOrderResponse(BaseModel):
    id: str
    original_order_id: Optional[str] = None
    supplier_label: str
    supplier_ids: Optional[List[str]] = None
    items: List[dict]
    total_cost: float
    discount_total: float
    payment_method: str
    contact: str
    notes: Optional[str] = None
    status: str
    reason: str
    cancelled_at: datetime
    cancelled_by: Optional[str] = None
    cancelled_by_name: Optional[str] = None

    class Config:
        from_attributes = True


class CancelledOrderListResponse(BaseModel):
    orders: List[CancelledOrderResponse]
    total: int


class ArchiveOrderResponse(BaseModel):
    message: str
    cancelled_order: CancelledOrderResponse
