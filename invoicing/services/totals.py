"""
Recomputation of invoice totals from rows.

Nothing in the normalize/transform pipeline calls these: subtotal, tax and
total are stored as the invoice form computed them. Callers that want to
check or rebuild them do it explicitly.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping

from pydantic import BaseModel

from invoicing.models.preview import InvoicePreviewData
from invoicing.services.currency import round_money, to_number


class Totals(BaseModel):
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0


def _get(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def row_value(row: Any) -> float:
    """quantity x rate for itemized rows, the amount itself for milestones."""
    qty, rate = _get(row, "quantity"), _get(row, "rate")
    if qty is None and rate is None:
        return to_number(_get(row, "amount"))
    return to_number(qty) * to_number(rate)


def calculate_totals(rows: Iterable[Any], tax_percentage: Any = 0, reverse: bool = False) -> Totals:
    """
    Forward: rows are pre-tax, tax is added on top.
    Reverse: rows already include tax, which is carved out of their sum.
    """
    line_sum = sum(row_value(r) for r in rows or [])
    pct = to_number(tax_percentage)
    if reverse:
        total = line_sum
        subtotal = total / (1 + pct / 100) if pct else total
        tax = total - subtotal
    else:
        subtotal = line_sum
        tax = subtotal * pct / 100
        total = subtotal + tax
    return Totals(subtotal=round_money(subtotal), tax=round_money(tax), total=round_money(total))


def line_amount_mismatches(rows: Iterable[Any], tolerance: float = 0.01) -> List[int]:
    """Indexes of itemized rows whose stored amount differs from quantity x rate."""
    out = []
    for i, r in enumerate(rows or []):
        if _get(r, "quantity") is None:
            continue
        if abs(to_number(_get(r, "amount")) - row_value(r)) > tolerance:
            out.append(i)
    return out


def totals_consistent(data: InvoicePreviewData, tolerance: float = 0.01) -> bool:
    inv = data.invoice
    rows = inv.milestones if inv.engagement_type == "milestone" else inv.items
    rows_sum = sum(to_number(r.amount) for r in rows)
    if abs(inv.total - (inv.subtotal + inv.tax)) > tolerance:
        return False
    return abs(inv.subtotal - rows_sum) <= tolerance
