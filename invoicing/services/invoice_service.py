# invoicing/services/invoice_service.py
from __future__ import annotations
import logging
import os
import re
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from invoicing import config
from invoicing.errors import (
    ConcurrentModificationError,
    InvalidTransition,
    InvoiceNotFound,
    PaymentValidationError,
    StoreError,
)
from invoicing.models.client import BankAccount, BusinessProfile, Client
from invoicing.models.common import utcnow
from invoicing.models.invoice import Invoice, InvoiceHistoryEvent, InvoiceItem
from invoicing.models.payment import PaymentOutcome, PaymentSubmission
from invoicing.models.preview import InvoicePreviewData
from invoicing.models.revenue import RevenueEntry
from invoicing.services import payment_service
from invoicing.services.engagement import format_items_for_storage, prepare_preview, split_stored_items
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^INV-(\d{4})-(\d{2})-(\d+)$")

# fields a caller may not overwrite through update_invoice
_PROTECTED = {"id", "user_id", "created_at", "version"}
# set by record_payment only
_PAYMENT_STATE = {"is_partially_paid", "partially_paid_amount"}


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


def _as_mapping(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return dict(obj)
    return obj.model_dump()


class InvoiceService:
    """
    Invoice aggregate store: invoices, their item rows, payment revenue
    entries and the history of each invoice, kept as JSON tables under
    ``data_dir``.

    All tables share one lock; every multi-table operation (upsert with item
    replacement, cascade delete) runs under it, and reads take it too, so a
    reader never sees items from two versions of the same invoice.

    Invoice numbers are unique per user and act as an overwrite key:
    ``create_invoice`` with a number the user already has replaces that
    invoice's fields and items instead of adding a second invoice.
    """

    def __init__(self, data_dir: Optional[os.PathLike | str] = None):
        base = Path(data_dir) if data_dir else config.data_dir()
        self.data_dir = base
        self._lock = threading.RLock()
        self.invoices = JsonRepository(base / "invoices.json", entity_name="invoice", lock=self._lock)
        self.items = JsonRepository(base / "invoice_items.json", entity_name="invoice_item", lock=self._lock)
        self.revenue = JsonRepository(base / "revenue_entries.json", entity_name="revenue_entry", lock=self._lock)
        self.history = JsonRepository(
            base / "invoice_history.json", entity_name="invoice_history", lock=self._lock, backup_enabled=False
        )

    # ----------- fetch -----------
    def fetch_invoice(self, invoice_id: str) -> Invoice:
        row = self.invoices.get_by_id(invoice_id)
        if row is None:
            raise InvoiceNotFound(invoice_id)
        try:
            return Invoice(**row)
        except ValidationError as e:
            raise StoreError(f"Stored invoice {invoice_id} is invalid") from e

    def fetch_items(self, invoice_id: str) -> List[InvoiceItem]:
        out: List[InvoiceItem] = []
        for d in self.items.find(lambda x: x.get("invoice_id") == invoice_id):
            try:
                out.append(InvoiceItem(**d))
            except ValidationError:
                logger.warning("Skipping invalid item row %s of invoice %s", d.get("id"), invoice_id)
        return out

    def fetch_invoices(self, user_id: str, today: Optional[date] = None) -> List[Invoice]:
        """The user's invoices, newest first, with ``overdue`` recomputed and saved."""
        with self._lock:
            out: List[Invoice] = []
            for d in self.invoices.find(lambda x: x.get("user_id") == user_id):
                try:
                    out.append(Invoice(**d))
                except ValidationError:
                    logger.warning("Skipping invalid invoice row %s", d.get("id"))
            out.sort(key=lambda inv: inv.created_at, reverse=True)

            result: List[Invoice] = []
            for before, after in zip(out, payment_service.apply_overdue(out, today)):
                if after.status != before.status:
                    after = self._save(after)
                    self._log_event(after.id, "status_changed", {"status": after.status, "derived": True})
                result.append(after)
            return result

    def fetch_history(self, invoice_id: str) -> List[InvoiceHistoryEvent]:
        rows = self.history.find(lambda x: x.get("invoice_id") == invoice_id)
        events = [InvoiceHistoryEvent(**r) for r in rows]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events

    # ----------- write -----------
    def create_invoice(self, invoice: Invoice | Mapping[str, Any], items: Iterable[Any] = ()) -> Invoice:
        inv = invoice if isinstance(invoice, Invoice) else Invoice.model_validate(invoice)
        with self._lock:
            if not inv.invoice_number:
                inv = inv.model_copy(update={"invoice_number": self.next_invoice_number(inv.user_id)})

            existing = self.invoices.find_one(
                lambda x: x.get("user_id") == inv.user_id and x.get("invoice_number") == inv.invoice_number
            )
            if existing:
                logger.warning(
                    "Invoice number %s already exists for user %s: replacing invoice %s",
                    inv.invoice_number, inv.user_id, existing.get("id"),
                )
                previous = Invoice(**existing)
                inv = inv.model_copy(update={
                    "id": previous.id,
                    "created_at": previous.created_at,
                    "updated_at": utcnow(),
                    "version": previous.version + 1,
                })
                self.invoices.replace_where(lambda x: x.get("id") == previous.id, [_dump(inv)])
                action = "updated"
            else:
                self.invoices.add(_dump(inv))
                action = "created"

            self._replace_items(inv, items)
            self._log_event(inv.id, action, {"status": inv.status, "invoice_number": inv.invoice_number})
        return inv

    def update_invoice(
        self,
        invoice_id: str,
        changes: Mapping[str, Any],
        items: Optional[Iterable[Any]] = None,
        expected_version: Optional[int] = None,
    ) -> Invoice:
        """
        Apply a partial edit. A ``status`` change follows the same rules as
        ``update_status``; partial-payment fields only change through
        ``record_payment`` and are dropped here.
        """
        with self._lock:
            current = self.fetch_invoice(invoice_id)
            self._check_version(current, expected_version)
            fields = {k: v for k, v in _as_mapping(changes).items() if k not in _PROTECTED}
            dropped = sorted(k for k in fields if k in _PAYMENT_STATE)
            if dropped:
                logger.warning("Ignoring payment fields %s on invoice %s", dropped, current.invoice_number)
                fields = {k: v for k, v in fields.items() if k not in _PAYMENT_STATE}
            status = fields.pop("status", current.status)
            if status != current.status:
                fields.update(self._status_changes(current, status, date.today()))
            data = current.model_dump()
            data.update(fields)
            updated = self._save(Invoice.model_validate(data))
            if items is not None:
                self._replace_items(updated, items)
            self._log_event(updated.id, "updated", {"fields": sorted(fields)})
        return updated

    def delete_invoice(self, invoice_id: str) -> bool:
        with self._lock:
            self.items.delete_where(lambda x: x.get("invoice_id") == invoice_id)
            deleted = self.invoices.delete(invoice_id)
            self.history.delete_where(lambda x: x.get("invoice_id") == invoice_id)
        return deleted

    def update_status(self, invoice_id: str, status: str, today: Optional[date] = None) -> Invoice:
        with self._lock:
            current = self.fetch_invoice(invoice_id)
            changes = self._status_changes(current, status, today or date.today())
            updated = self._save(current.model_copy(update=changes))
            self._log_event(updated.id, "status_changed", {"status": status})
        return updated

    def record_payment(
        self,
        invoice_id: str,
        submission: PaymentSubmission | Mapping[str, Any],
        today: Optional[date] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[Invoice, PaymentOutcome]:
        """
        Validate and persist a payment. Validation errors raise
        ``PaymentValidationError`` before anything is written; store errors
        propagate unchanged.
        """
        sub = submission if isinstance(submission, PaymentSubmission) else PaymentSubmission.model_validate(submission)
        with self._lock:
            current = self.fetch_invoice(invoice_id)
            self._check_version(current, expected_version)
            outcome = payment_service.record_payment(current, sub, today)
            if not outcome.ok:
                raise PaymentValidationError(outcome.error, outcome)
            if current.status == "draft":
                logger.info("Recording payment against draft invoice %s", current.invoice_number)

            updated = self._save(current.model_copy(update=outcome.updates))
            self._record_revenue(updated, sub, outcome)
            self._log_event(updated.id, "payment_recorded", {
                "payment_date": sub.payment_date.isoformat(),
                "payment_method": sub.payment_method,
                "amount": sub.amount,
                "is_partially_paid": updated.is_partially_paid,
                "amount_payable": outcome.amount_payable,
                "exchange_rate": outcome.conversion.exchange_rate if outcome.conversion else None,
                "inr_amount": outcome.conversion.inr_amount_received if outcome.conversion else None,
            })
        return updated, outcome

    # ----------- numbering -----------
    def next_invoice_number(self, user_id: str, today: Optional[date] = None) -> str:
        """INV-YYYY-MM-NNN, sequence restarting every month."""
        today = today or date.today()
        year, month = f"{today.year:04d}", f"{today.month:02d}"
        seq = 0
        for row in self.invoices.find(lambda x: x.get("user_id") == user_id):
            m = _NUMBER_RE.match(str(row.get("invoice_number") or ""))
            if m and m.group(1) == year and m.group(2) == month:
                seq = max(seq, int(m.group(3)))
        return f"INV-{year}-{month}-{seq + 1:03d}"

    # ----------- preview -----------
    def build_preview(
        self,
        invoice_id: str,
        issuer: BusinessProfile | Mapping[str, Any] | None = None,
        client: Client | Mapping[str, Any] | None = None,
        banking: BankAccount | Mapping[str, Any] | None = None,
    ) -> InvoicePreviewData:
        with self._lock:
            inv = self.fetch_invoice(invoice_id)
            rows = self.fetch_items(invoice_id)
        items, milestones = split_stored_items(inv.engagement_type, rows)
        invoice_data = inv.model_dump()
        invoice_data.update(items=items, milestones=milestones)
        return prepare_preview({
            "issuer": _as_mapping(issuer),
            "client": _as_mapping(client),
            "banking": _as_mapping(banking),
            "invoice": invoice_data,
        })

    # ----------- internals -----------
    def _check_version(self, current: Invoice, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != current.version:
            raise ConcurrentModificationError(current.id, expected_version, current.version)

    def _status_changes(self, current: Invoice, status: str, today: date) -> Dict[str, Any]:
        # partially_paid needs an amount, so only record_payment reaches it
        if status == "partially_paid":
            raise InvalidTransition(current.status, status)
        payment_service.ensure_transition(current.status, status)
        changes: Dict[str, Any] = {"status": status}
        if status == "paid":
            changes.update(is_partially_paid=False, partially_paid_amount=None)
            if not current.payment_date:
                changes["payment_date"] = today
        if status == "sent" and current.status == "draft" and not current.issue_date:
            changes["issue_date"] = today
        return changes

    def _save(self, inv: Invoice) -> Invoice:
        inv = inv.model_copy(update={"version": inv.version + 1, "updated_at": utcnow()})
        self.invoices.update(_dump(inv))
        return inv

    def _replace_items(self, inv: Invoice, entries: Iterable[Any]) -> None:
        rows = format_items_for_storage(
            inv.engagement_type, entries, inv.id,
            retainer_period=inv.retainer_period,
            project_description=inv.project_description,
        )
        self.items.replace_where(lambda x: x.get("invoice_id") == inv.id, [_dump(r) for r in rows])

    def _record_revenue(self, inv: Invoice, sub: PaymentSubmission, outcome: PaymentOutcome) -> None:
        received = outcome.amount_payable
        if inv.currency == "USD":
            # INR as it landed in the bank, not re-derived from the rate
            amount_usd = received
            amount_inr = outcome.conversion.inr_amount_received if outcome.conversion else None
        else:
            amount_usd, amount_inr = None, received
        entry = RevenueEntry(
            user_id=inv.user_id,
            invoice_id=inv.id,
            client_id=inv.client_id,
            amount_inr=amount_inr,
            amount_usd=amount_usd,
            payment_date=sub.payment_date,
            payment_method=sub.payment_method,
            payment_reference=sub.payment_reference,
        )
        try:
            self.revenue.add(_dump(entry))
        except StoreError:
            # the payment itself is already saved
            logger.exception("Could not create revenue entry for invoice %s", inv.invoice_number)

    def _log_event(self, invoice_id: str, action: str, details: Dict[str, Any]) -> None:
        self.history.add(_dump(InvoiceHistoryEvent(invoice_id=invoice_id, action=action, details=details)))
