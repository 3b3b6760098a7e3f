from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, Literal, Optional
from datetime import date

PaymentMethod = Literal["bank_transfer", "cash", "cheque", "upi", "other"]

PAYMENT_METHODS = [
    ("bank_transfer", "Bank Transfer"),
    ("cash", "Cash"),
    ("cheque", "Cheque"),
    ("upi", "UPI"),
    ("other", "Other"),
]


class ErrorKind(str, Enum):
    MISSING_DATE = "missing_date"
    FUTURE_DATE = "future_date"
    INVALID_AMOUNT = "invalid_amount"
    AMOUNT_EXCEEDS_TOTAL = "amount_exceeds_total"  # soft, asks for confirmation
    MISSING_CONVERSION = "missing_conversion"
    ALREADY_PAID = "already_paid"
    STORE_FAILURE = "store_failure"


class PaymentSubmission(BaseModel):
    payment_date: Optional[date] = None
    payment_method: PaymentMethod = "bank_transfer"
    payment_reference: Optional[str] = None
    amount: float = 0.0
    is_partially_paid: bool = False
    # USD invoices only: one of the two, the other is derived
    exchange_rate: Optional[float] = None
    inr_amount_received: Optional[float] = None

    @field_validator("payment_date", "payment_reference", "exchange_rate", "inr_amount_received", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def _blank_amount(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return 0.0
        return v


class Conversion(BaseModel):
    usd_amount: float
    exchange_rate: Optional[float] = None
    inr_amount_received: Optional[float] = None


class PaymentOutcome(BaseModel):
    updates: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[ErrorKind] = None
    conversion: Optional[Conversion] = None
    # full-payment version of the submission, offered on AMOUNT_EXCEEDS_TOTAL
    suggested: Optional[PaymentSubmission] = None
    amount_payable: float = 0.0
    balance: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None
