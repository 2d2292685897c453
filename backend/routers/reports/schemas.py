from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class SalesBucket(BaseModel):
    key: str
    start: datetime
    end: datetime
    total_sales: float
    units_sold: int


class WeeklyReportResponse(BaseModel):
    success: bool = True
    weeks: List[SalesBucket]


class MonthlyReportResponse(BaseModel):
    success: bool = True
    months: List[SalesBucket]


class RecentSale(BaseModel):
    id: str
    payment_ref: str
    order_id: Optional[str] = None
    amount: float
    raw_amount: float
    currency: str
    method: str
    units: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RealtimeReportResponse(BaseModel):
    success: bool = True
    since: datetime
    days: int
    total_sales: float
    units_sold: int
    recent: List[RecentSale]
