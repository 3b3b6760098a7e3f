from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime
from .common import gen_id, utcnow

class RevenueEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    user_id: str
    invoice_id: Optional[str] = None
    client_id: Optional[str] = None
    amount_inr: Optional[float] = None
    amount_usd: Optional[float] = None
    payment_date: date
    payment_method: Optional[str] = None  # bank_transfer, cash, cheque, upi, other
    payment_reference: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

class MonthlyRevenue(BaseModel):
    period: str  # YYYY-MM
    amount_inr: float = 0.0
    amount_usd: float = 0.0
    total: float = 0.0

class MonthlyRevenueReport(BaseModel):
    total: float = 0.0
    inr: float = 0.0
    usd: float = 0.0
    history: List[MonthlyRevenue] = Field(default_factory=list)

class ClientRevenue(BaseModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    amount_inr: float = 0.0
    amount_usd: float = 0.0
    total: float = 0.0
    percentage: float = 0.0

class ClientRevenueReport(BaseModel):
    data: List[ClientRevenue] = Field(default_factory=list)
    total: float = 0.0
