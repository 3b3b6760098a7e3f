from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from .common import gen_id, utcnow
from .invoice import Currency, InvoiceDraft

Frequency = Literal["weekly", "monthly", "quarterly", "yearly"]

DEFAULT_USD_TO_INR_RATE = 85.0

class CurrencySettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    preferred_currency: Currency = "INR"
    usd_to_inr_rate: float = DEFAULT_USD_TO_INR_RATE

class ReminderSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    user_id: str
    days_before_due: List[int] = Field(default_factory=lambda: [3])
    days_after_due: List[int] = Field(default_factory=lambda: [1, 7])
    reminder_subject: str = "Reminder: Invoice {invoice_number} is {status}"
    reminder_message: str = (
        "This is a reminder that invoice {invoice_number} for {amount} "
        "due on {due_date} is {status}."
    )
    enabled: bool = True

class RecurringInvoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    user_id: str
    client_id: str
    title: str
    frequency: Frequency = "monthly"
    start_date: date
    end_date: Optional[date] = None
    next_issue_date: date
    last_generated: Optional[date] = None
    status: Literal["active", "inactive"] = "active"
    template: InvoiceDraft = Field(default_factory=InvoiceDraft)
    auto_send: bool = False
    created_at: datetime = Field(default_factory=utcnow)
