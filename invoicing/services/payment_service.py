"""
Payment recording and invoice status rules.

``record_payment`` is pure: it validates a submission against an invoice
snapshot and returns the field updates to persist, or a tagged error. The
invoice store applies the updates; nothing here touches storage.

Status graph::

    draft -> sent -> {overdue, paid, partially_paid}
    partially_paid -> {partially_paid, paid, overdue}
    overdue -> {paid, partially_paid}
    paid (terminal)

``overdue`` is derived: ``refresh_overdue`` recomputes it from ``due_date``
each time invoices are listed.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from invoicing.errors import InvalidTransition
from invoicing.models.payment import Conversion, ErrorKind, PaymentOutcome, PaymentSubmission
from invoicing.services.currency import round_money, to_number

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "draft": frozenset({"sent"}),
    "sent": frozenset({"overdue", "paid", "partially_paid"}),
    "partially_paid": frozenset({"partially_paid", "paid", "overdue"}),
    "overdue": frozenset({"paid", "partially_paid"}),
    "paid": frozenset(),
}

# partially_paid -> overdue keeps is_partially_paid and the paid amount, so the
# balance still shows on an overdue invoice
OVERDUE_ELIGIBLE = frozenset({"sent", "partially_paid"})

ERROR_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.MISSING_DATE: "Please select a payment date",
    ErrorKind.FUTURE_DATE: "Payment date cannot be in the future",
    ErrorKind.INVALID_AMOUNT: "Please enter a valid payment amount",
    ErrorKind.AMOUNT_EXCEEDS_TOTAL: (
        "The amount you entered is equal to or greater than the total amount. "
        "Would you like to mark this as fully paid instead?"
    ),
    ErrorKind.MISSING_CONVERSION: "Enter the exchange rate or the INR amount received",
    ErrorKind.ALREADY_PAID: "This invoice has already been paid",
    ErrorKind.STORE_FAILURE: "Failed to record payment. Please try again.",
}


# ---------- Helpers ---------- #

def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _as_date(v: Any) -> Optional[date]:
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str) and v:
        try:
            return date.fromisoformat(v[:10])
        except ValueError:
            return None
    return None


def paid_so_far(invoice: Any) -> float:
    if _field(invoice, "status") == "paid":
        return to_number(_field(invoice, "total"))
    if _field(invoice, "is_partially_paid"):
        return to_number(_field(invoice, "partially_paid_amount"))
    return 0.0


def remaining_balance(invoice: Any) -> float:
    return round_money(max(0.0, to_number(_field(invoice, "total")) - paid_so_far(invoice)))


def amount_payable(invoice: Any, submission: PaymentSubmission) -> float:
    """Money covered by this payment event (partial amounts are cumulative)."""
    if submission.is_partially_paid:
        return round_money(max(0.0, to_number(submission.amount) - paid_so_far(invoice)))
    return remaining_balance(invoice)


# ---------- Status machine ---------- #

def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def refresh_overdue(invoice: Any, today: Optional[date] = None) -> str:
    """Status the invoice should show today. Idempotent."""
    status = _field(invoice, "status") or "draft"
    if status not in OVERDUE_ELIGIBLE:
        return status
    due = _as_date(_field(invoice, "due_date"))
    if due is not None and due < (today or date.today()):
        return "overdue"
    return status


def apply_overdue(invoices: Iterable[Any], today: Optional[date] = None) -> List[Any]:
    out = []
    for inv in invoices:
        status = refresh_overdue(inv, today)
        if status == _field(inv, "status"):
            out.append(inv)
        elif isinstance(inv, Mapping):
            out.append({**inv, "status": status})
        else:
            out.append(inv.model_copy(update={"status": status}))
    return out


# ---------- Recording ---------- #

def _convert(amount: float, submission: PaymentSubmission) -> Optional[Conversion]:
    rate = to_number(submission.exchange_rate) or None
    inr = to_number(submission.inr_amount_received) or None
    if inr:
        # the cash actually received wins over a typed rate
        if amount > 0:
            rate = round(inr / amount, 4)
        return Conversion(usd_amount=amount, exchange_rate=rate, inr_amount_received=round_money(inr))
    if rate:
        return Conversion(usd_amount=amount, exchange_rate=rate, inr_amount_received=round_money(amount * rate))
    return None


def record_payment(
    invoice: Any,
    submission: PaymentSubmission | Mapping[str, Any],
    today: Optional[date] = None,
) -> PaymentOutcome:
    """
    Validate ``submission`` against ``invoice`` and compute the updates.

    Checks, in order: already paid, date present and not in the future,
    partial amount > 0, partial amount < total (soft: ``suggested`` holds the
    full-payment version), and for USD invoices a rate or INR amount.

    A partial payment stores ``amount`` as the new partially paid figure; it
    replaces the previous one, so callers pass the cumulative amount. The USD
    conversion is worked out on ``amount_payable``, the part of the invoice
    this payment settles.
    """
    sub = submission if isinstance(submission, PaymentSubmission) else PaymentSubmission.model_validate(submission)
    today = today or date.today()
    total = to_number(_field(invoice, "total"))

    if _field(invoice, "status") == "paid":
        return PaymentOutcome(error=ErrorKind.ALREADY_PAID)
    if sub.payment_date is None:
        return PaymentOutcome(error=ErrorKind.MISSING_DATE)
    if sub.payment_date > today:
        return PaymentOutcome(error=ErrorKind.FUTURE_DATE)

    amount = to_number(sub.amount)
    if sub.is_partially_paid:
        if amount <= 0:
            return PaymentOutcome(error=ErrorKind.INVALID_AMOUNT)
        if amount >= total:
            return PaymentOutcome(
                error=ErrorKind.AMOUNT_EXCEEDS_TOTAL,
                suggested=sub.model_copy(update={"is_partially_paid": False, "amount": total}),
            )
    elif amount <= 0:
        amount = total

    payable = amount_payable(invoice, sub)
    conversion = None
    if _field(invoice, "currency") == "USD":
        # the INR received pays for this increment only
        conversion = _convert(payable, sub)
        if conversion is None:
            return PaymentOutcome(error=ErrorKind.MISSING_CONVERSION)

    updates: Dict[str, Any] = {
        "payment_date": sub.payment_date,
        "payment_method": sub.payment_method,
        "payment_reference": sub.payment_reference,
    }
    if sub.is_partially_paid:
        updates.update(status="partially_paid", is_partially_paid=True, partially_paid_amount=amount)
        balance = round_money(total - amount)
    else:
        updates.update(status="paid", is_partially_paid=False, partially_paid_amount=None)
        balance = 0.0

    return PaymentOutcome(
        updates=updates,
        conversion=conversion,
        amount_payable=payable,
        balance=balance,
    )
