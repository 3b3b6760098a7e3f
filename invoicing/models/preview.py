"""Render-ready invoice shape handed to the document renderer.

Every field has a default so that a preview can be built from partial rows;
numeric fields go through ``to_number`` before validation so that stray
strings coming from forms or old JSON never fail the model.
"""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional

from .invoice import Currency, EngagementKind, InvoiceStatus
from invoicing.services.currency import to_number

DEFAULT_BUSINESS_NAME = "Your Business"
DEFAULT_FOOTER_TEXT = "Thank you for your business!"
DEFAULT_PRIMARY_COLOR = "#3B82F6"
DEFAULT_SECONDARY_COLOR = "#0EA5E9"


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = ""
    quantity: float = 0.0
    rate: float = 0.0
    amount: float = 0.0  # stored as given, never recomputed here

    @field_validator("description", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)

    @field_validator("quantity", "rate", mode="before")
    @classmethod
    def _non_negative(cls, v):
        return max(0.0, to_number(v))

    @field_validator("amount", mode="before")
    @classmethod
    def _number(cls, v):
        return to_number(v)


class Milestone(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    amount: float = 0.0

    @field_validator("name", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _non_negative(cls, v):
        return max(0.0, to_number(v))


class Issuer(BaseModel):
    business_name: str = DEFAULT_BUSINESS_NAME
    address: str = ""
    pan_number: Optional[str] = None
    phone: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: str = DEFAULT_PRIMARY_COLOR
    secondary_color: str = DEFAULT_SECONDARY_COLOR
    footer_text: str = DEFAULT_FOOTER_TEXT


class ClientInfo(BaseModel):
    name: str = ""
    company_name: Optional[str] = None
    billing_address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    gst_number: Optional[str] = None


class Banking(BaseModel):
    account_holder: str = ""
    account_number: str = ""
    ifsc_code: str = ""
    bank_name: str = ""
    branch: Optional[str] = None


class InvoiceDetails(BaseModel):
    invoice_number: str = ""
    issue_date: str = ""
    due_date: str = ""
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    notes: Optional[str] = None
    currency: Currency = "INR"
    tax_percentage: float = 0.0
    engagement_type: EngagementKind = "service"
    items: List[LineItem] = Field(default_factory=list)
    milestones: List[Milestone] = Field(default_factory=list)
    status: InvoiceStatus = "draft"
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    is_partially_paid: bool = False
    partially_paid_amount: Optional[float] = None


class InvoicePreviewData(BaseModel):
    issuer: Issuer = Field(default_factory=Issuer)
    client: ClientInfo = Field(default_factory=ClientInfo)
    banking: Optional[Banking] = None
    invoice: InvoiceDetails = Field(default_factory=InvoiceDetails)
