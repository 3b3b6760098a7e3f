"""
Engagement-type transformation.

Each engagement model prints differently:

- service: itemized rows, passed through with numeric coercion
- retainership / project: one lump-sum row
- milestone: one row per named milestone, read from ``milestones``

``transform_invoice_data`` expects normalized data (see ``normalizer``) and
dispatches on ``invoice.engagement_type`` through ``_HANDLERS``. It never
raises; the worst case is a single zero-amount synthetic row.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, get_args

from invoicing.models.invoice import EngagementKind, InvoiceItem
from invoicing.models.preview import InvoicePreviewData, LineItem, Milestone
from invoicing.services.currency import to_number
from invoicing.services.normalizer import normalize_invoice_data

RETAINER_DESCRIPTION = "Monthly Retainer Fee"
PROJECT_DESCRIPTION = "Project Fee"
MILESTONE_PLACEHOLDER = "Project Milestone"
MILESTONE_NAME = "Milestone"

Handler = Callable[[InvoicePreviewData], InvoicePreviewData]


def _with_invoice(data: InvoicePreviewData, **changes: Any) -> InvoicePreviewData:
    return data.model_copy(update={"invoice": data.invoice.model_copy(update=changes)})


# ---------- Handlers ---------- #

def _transform_service(data: InvoicePreviewData) -> InvoicePreviewData:
    items = [
        LineItem(
            description=it.description,
            quantity=to_number(it.quantity),
            rate=to_number(it.rate),
            amount=to_number(it.amount),
        )
        for it in data.invoice.items
    ]
    return _with_invoice(data, items=items)


def _single_charge(default_description: str) -> Handler:
    """Retainership and project invoices carry exactly one row."""

    def handler(data: InvoicePreviewData) -> InvoicePreviewData:
        subtotal = to_number(data.invoice.subtotal)
        if not data.invoice.items:
            item = LineItem(description=default_description, quantity=1, rate=subtotal, amount=subtotal)
        else:
            first = data.invoice.items[0]
            item = LineItem(
                description=first.description or default_description,
                quantity=1,
                rate=to_number(first.rate) or subtotal,
                amount=to_number(first.amount) or subtotal,
            )
        return _with_invoice(data, items=[item])

    return handler


def _transform_milestones(data: InvoicePreviewData) -> InvoicePreviewData:
    if not data.invoice.milestones:
        milestones = [Milestone(name=MILESTONE_PLACEHOLDER, amount=to_number(data.invoice.subtotal))]
    else:
        milestones = [
            Milestone(name=m.name or MILESTONE_NAME, amount=to_number(m.amount))
            for m in data.invoice.milestones
        ]
    return _with_invoice(data, milestones=milestones)


_HANDLERS: Dict[str, Handler] = {
    "service": _transform_service,
    "retainership": _single_charge(RETAINER_DESCRIPTION),
    "project": _single_charge(PROJECT_DESCRIPTION),
    "milestone": _transform_milestones,
}

_missing = set(get_args(EngagementKind)) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"No engagement handler for: {sorted(_missing)}")


def transform_invoice_data(data: Any) -> InvoicePreviewData:
    if not isinstance(data, InvoicePreviewData):
        data = normalize_invoice_data(data)
    handler = _HANDLERS.get(data.invoice.engagement_type, _transform_service)
    return handler(data)


def prepare_preview(raw: Any) -> InvoicePreviewData:
    """Normalize then transform: the only shape handed to the renderer."""
    return transform_invoice_data(normalize_invoice_data(raw))


# ---------- Stored rows ---------- #

def _entry_dict(entry: Any) -> Dict[str, Any]:
    if isinstance(entry, Mapping):
        return dict(entry)
    if hasattr(entry, "model_dump"):
        return entry.model_dump()
    return {}


def format_items_for_storage(
    engagement_type: str,
    entries: Iterable[Any],
    invoice_id: str,
    retainer_period: Optional[str] = None,
    project_description: Optional[str] = None,
) -> List[InvoiceItem]:
    """
    Shape submitted rows into ``invoice_items`` rows.

    Milestones become rows with ``milestone_name`` and quantity 1; retainership
    and project invoices keep only the first submitted row.
    """
    rows = [_entry_dict(e) for e in entries or []]

    if engagement_type == "milestone":
        out = []
        for m in rows:
            name = m.get("name") if isinstance(m.get("name"), str) else None
            amount = to_number(m.get("amount"))
            out.append(InvoiceItem(
                invoice_id=invoice_id,
                milestone_name=name or m.get("milestone_name") or MILESTONE_NAME,
                description=None,
                quantity=1,
                rate=amount,
                amount=amount,
            ))
        return out

    if engagement_type in ("retainership", "project"):
        first = rows[0] if rows else {}
        default = PROJECT_DESCRIPTION if engagement_type == "project" else RETAINER_DESCRIPTION
        return [InvoiceItem(
            invoice_id=invoice_id,
            description=first.get("description") or default,
            quantity=1,
            rate=to_number(first.get("rate")),
            amount=to_number(first.get("amount")),
            retainer_period=retainer_period if engagement_type == "retainership" else None,
            project_description=project_description if engagement_type == "project" else None,
        )]

    return [
        InvoiceItem(
            invoice_id=invoice_id,
            description=r.get("description"),
            quantity=to_number(r.get("quantity")),
            rate=to_number(r.get("rate")),
            amount=to_number(r.get("amount")),
        )
        for r in rows
    ]


def split_stored_items(
    engagement_type: str, rows: Iterable[InvoiceItem]
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Stored rows -> (items, milestones) for building a preview."""
    rows = list(rows or [])
    if engagement_type == "milestone":
        return [], [{"name": r.milestone_name or MILESTONE_NAME, "amount": r.amount} for r in rows]
    items = [
        {"description": r.description or "", "quantity": r.quantity, "rate": r.rate, "amount": r.amount}
        for r in rows
    ]
    return items, []
