"""
Defaulting of partial invoice-preview records.

Preview data reaches the renderer from several loaders (stored rows, the
invoice form, recurring templates), each of them filling a different subset
of fields. ``normalize_invoice_data`` turns any of those into a complete
``InvoicePreviewData``: it never raises and running it twice gives the same
result as running it once.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, get_args

from invoicing.models.invoice import Currency, EngagementKind, InvoiceStatus
from invoicing.models.preview import (
    DEFAULT_BUSINESS_NAME,
    DEFAULT_FOOTER_TEXT,
    DEFAULT_PRIMARY_COLOR,
    DEFAULT_SECONDARY_COLOR,
    Banking,
    ClientInfo,
    InvoiceDetails,
    InvoicePreviewData,
    Issuer,
    LineItem,
    Milestone,
)
from invoicing.services.currency import to_number

_CURRENCIES = set(get_args(Currency))
_ENGAGEMENTS = set(get_args(EngagementKind))
_STATUSES = set(get_args(InvoiceStatus))


# ---------- Helpers ---------- #

def _to_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, Mapping):
        return dict(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return {}


def _text(v: Any, default: str = "") -> str:
    if v is None or v == "":
        return default
    if isinstance(v, (date, datetime)):
        return v.isoformat()[:10]
    return str(v)


def _opt_text(v: Any) -> Optional[str]:
    if v is None:
        return None
    return _text(v)


def _choice(v: Any, allowed: set, default: str) -> str:
    return v if isinstance(v, str) and v in allowed else default


def _rows(v: Any) -> list:
    return list(v) if isinstance(v, (list, tuple)) else []


def _flag(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("true", "1", "yes", "y", "on")
    if isinstance(v, (bool, int, float)):
        return bool(v)
    return False


def _items(rows: Any) -> List[LineItem]:
    out: List[LineItem] = []
    for r in _rows(rows):
        if isinstance(r, LineItem):
            out.append(r)
        elif isinstance(r, Mapping) or hasattr(r, "model_dump"):
            out.append(LineItem.model_validate(_to_dict(r)))
    return out


def _milestones(rows: Any) -> List[Milestone]:
    out: List[Milestone] = []
    for r in _rows(rows):
        if isinstance(r, Milestone):
            out.append(r)
            continue
        d = _to_dict(r)
        if not d and not isinstance(r, Mapping):
            continue
        # stored rows carry the name as milestone_name
        if d.get("name") in (None, "") and d.get("milestone_name"):
            d["name"] = d["milestone_name"]
        out.append(Milestone.model_validate(d))
    return out


def _banking(raw: Any) -> Optional[Banking]:
    d = _to_dict(raw)
    if not any(v not in (None, "") for v in d.values()):
        return None
    return Banking(
        account_holder=_text(d.get("account_holder")),
        account_number=_text(d.get("account_number")),
        ifsc_code=_text(d.get("ifsc_code")),
        bank_name=_text(d.get("bank_name")),
        branch=_opt_text(d.get("branch")),
    )


# ---------- Normalisation ---------- #

def normalize_invoice_data(partial: Any = None, today: Optional[date] = None) -> InvoicePreviewData:
    raw = _to_dict(partial)
    issuer = _to_dict(raw.get("issuer"))
    client = _to_dict(raw.get("client"))
    inv = _to_dict(raw.get("invoice"))

    paid_amount = inv.get("partially_paid_amount")

    return InvoicePreviewData(
        issuer=Issuer(
            business_name=_text(issuer.get("business_name"), DEFAULT_BUSINESS_NAME),
            address=_text(issuer.get("address")),
            pan_number=_opt_text(issuer.get("pan_number")),
            phone=_opt_text(issuer.get("phone")),
            logo_url=_opt_text(issuer.get("logo_url")),
            primary_color=_text(issuer.get("primary_color"), DEFAULT_PRIMARY_COLOR),
            secondary_color=_text(issuer.get("secondary_color"), DEFAULT_SECONDARY_COLOR),
            footer_text=_text(issuer.get("footer_text"), DEFAULT_FOOTER_TEXT),
        ),
        client=ClientInfo(
            name=_text(client.get("name")),
            company_name=_opt_text(client.get("company_name")),
            billing_address=_opt_text(client.get("billing_address")),
            email=_opt_text(client.get("email")),
            phone=_opt_text(client.get("phone")),
            gst_number=_opt_text(client.get("gst_number")),
        ),
        banking=_banking(raw.get("banking")),
        invoice=InvoiceDetails(
            invoice_number=_text(inv.get("invoice_number")),
            issue_date=_text(inv.get("issue_date"), (today or date.today()).isoformat()),
            due_date=_text(inv.get("due_date")),
            subtotal=to_number(inv.get("subtotal")),
            tax=to_number(inv.get("tax")),
            total=to_number(inv.get("total")),
            notes=_opt_text(inv.get("notes")),
            currency=_choice(inv.get("currency"), _CURRENCIES, "INR"),
            tax_percentage=to_number(inv.get("tax_percentage")),
            engagement_type=_choice(inv.get("engagement_type"), _ENGAGEMENTS, "service"),
            items=_items(inv.get("items")),
            milestones=_milestones(inv.get("milestones")),
            status=_choice(inv.get("status"), _STATUSES, "draft"),
            payment_date=_opt_text(inv.get("payment_date")),
            payment_method=_opt_text(inv.get("payment_method")),
            payment_reference=_opt_text(inv.get("payment_reference")),
            is_partially_paid=_flag(inv.get("is_partially_paid")),
            partially_paid_amount=None if paid_amount is None else to_number(paid_amount),
        ),
    )
