from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import date, datetime
from .common import TimeStamped, gen_id, utcnow

Currency = Literal["INR", "USD"]
EngagementKind = Literal["service", "retainership", "project", "milestone"]
InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "partially_paid"]
HistoryAction = Literal["created", "updated", "status_changed", "payment_recorded"]

class InvoiceItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    invoice_id: str
    description: Optional[str] = None
    quantity: float = 1.0
    rate: float = 0.0
    amount: float = 0.0
    milestone_name: Optional[str] = None  # milestone rows only
    retainer_period: Optional[str] = None
    project_description: Optional[str] = None

class Invoice(TimeStamped):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    user_id: str
    client_id: str
    invoice_number: str = ""

    issue_date: Optional[date] = Field(default_factory=date.today)
    due_date: Optional[date] = None
    status: InvoiceStatus = "draft"

    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    currency: Currency = "INR"
    tax_percentage: float = 0.0
    reverse_calculation: bool = False
    engagement_type: EngagementKind = "service"
    retainer_period: Optional[str] = None
    project_description: Optional[str] = None
    notes: Optional[str] = None

    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    is_partially_paid: bool = False
    partially_paid_amount: Optional[float] = None

    next_reminder_date: Optional[date] = None
    last_reminder_sent: Optional[date] = None

    # bumped on every write, checked by callers that pass expected_version
    version: int = 1

class InvoiceHistoryEvent(BaseModel):
    id: str = Field(default_factory=gen_id)
    invoice_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    action: HistoryAction
    details: Dict[str, Any] = Field(default_factory=dict)

class InvoiceDraft(BaseModel):
    """Invoice fields plus the submitted rows, as kept in a recurring template."""
    model_config = ConfigDict(extra="ignore")

    invoice: Dict[str, Any] = Field(default_factory=dict)
    items: List[Dict[str, Any]] = Field(default_factory=list)
