from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class SupplierDiscountCreate(BaseModel):
    product_id: str
    min_quantity: int = Field(ge=1, description="Quantity at which the offer starts to apply")
    discount_percent: float = Field(gt=0, le=100, description="Percentage taken off the line subtotal")
    note: Optional[str] = Field(None, max_length=400)


class SupplierDiscountUpdate(BaseModel):
    min_quantity: Optional[int] = Field(None, ge=1)
    discount_percent: Optional[float] = Field(None, gt=0, le=100)
    note: Optional[str] = Field(None, max_length=400)
    is_active: Optional[bool] = None


class SupplierDiscountResponse(BaseModel):
    id: str
    supplier_id: str
    product_id: str
    min_quantity: int
    discount_percent: float
    note: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SupplierDiscountListResponse(BaseModel):
    discounts: List[SupplierDiscountResponse]
    total: int


class DiscountPreviewResponse(BaseModel):
    product_id: str
    quantity: int
    discount: Optional[SupplierDiscountResponse] = None
    discount_percent: float = 0.0
