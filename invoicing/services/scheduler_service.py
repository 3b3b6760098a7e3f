"""
Scheduled tasks: generating invoices from recurring templates and computing
payment reminders.

Both tasks are meant to run once a day. Each template or invoice is handled
on its own; a failure is logged and reported in the summary, the rest of the
batch still runs. Reminders are only computed and tracked, not delivered.
"""
from __future__ import annotations
import calendar
import logging
import os
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from invoicing import config
from invoicing.models.invoice import Invoice
from invoicing.models.settings import Frequency, RecurringInvoice, ReminderSettings
from invoicing.services.client_service import ClientService
from invoicing.services.currency import format_currency
from invoicing.services.invoice_service import InvoiceService
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)

REMINDER_STATUSES = frozenset({"sent", "partially_paid", "overdue"})

# keys a template may carry that belong to the generated invoice, not the template
_TEMPLATE_SKIP = {"id", "invoice_number", "issue_date", "due_date", "status", "created_at", "updated_at", "version"}


def _add_months(d: date, months: int) -> date:
    month0 = d.month - 1 + months
    year, month = d.year + month0 // 12, month0 % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_issue_date(current: date, frequency: Frequency) -> date:
    """Next issue date; month-based steps clamp to the end of shorter months."""
    if frequency == "weekly":
        return current + timedelta(days=7)
    if frequency == "monthly":
        return _add_months(current, 1)
    if frequency == "quarterly":
        return _add_months(current, 3)
    if frequency == "yearly":
        return _add_months(current, 12)
    raise ValueError(f"Unknown frequency: {frequency!r}")


def next_reminder_date(due_date: date, settings: ReminderSettings, days_difference: int) -> Optional[date]:
    """
    Date of the reminder after the one sent ``days_difference`` days from
    ``due_date`` (negative: before it). None when no reminder is left.
    """
    if days_difference < 0:
        ahead = -days_difference
        for days in sorted(settings.days_before_due, reverse=True):
            if days < ahead:
                return due_date - timedelta(days=days)
        if settings.days_after_due:
            return due_date + timedelta(days=min(settings.days_after_due))
        return None
    for days in sorted(settings.days_after_due):
        if days > days_difference:
            return due_date + timedelta(days=days)
    return None


def reminder_status(days_difference: int) -> str:
    if days_difference < 0:
        return f"due in {-days_difference} days"
    if days_difference == 0:
        return "due today"
    return f"overdue by {days_difference} days"


def _long_date(d: Optional[date]) -> str:
    return f"{d:%B} {d.day}, {d.year}" if d else ""


def fill_template(template: str, values: Dict[str, str]) -> str:
    out = template or ""
    for key, value in values.items():
        out = out.replace("{" + key + "}", value)
    return out


def _summary(details: List[Dict[str, Any]], *outcomes: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {"processed": len(details)}
    for name in outcomes:
        out[name] = sum(1 for d in details if d["result"] == name)
    out["details"] = details
    return out


class SchedulerService:
    def __init__(
        self,
        invoices: InvoiceService,
        data_dir: Optional[os.PathLike | str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        base = Path(data_dir) if data_dir else invoices.data_dir
        self.invoices = invoices
        self.clients = ClientService(base)
        self.settings = settings
        self.recurring = JsonRepository(base / "recurring_invoices.json", entity_name="recurring_invoice")
        self.reminders = JsonRepository(base / "invoice_reminders.json", entity_name="invoice_reminder")

    # ----------- recurring templates -----------
    def add_recurring(self, r: RecurringInvoice) -> RecurringInvoice:
        self.recurring.add(r.model_dump(mode="json"))
        return r

    def list_recurring(self, user_id: Optional[str] = None) -> List[RecurringInvoice]:
        out: List[RecurringInvoice] = []
        for d in self.recurring.list_all():
            if user_id is not None and d.get("user_id") != user_id:
                continue
            try:
                out.append(RecurringInvoice(**d))
            except ValidationError:
                logger.warning("Skipping invalid recurring invoice %s", d.get("id"))
        return out

    def generate_from_template(self, r: RecurringInvoice, today: date) -> Invoice:
        fields = {k: v for k, v in r.template.invoice.items() if k not in _TEMPLATE_SKIP}
        fields.update(
            user_id=r.user_id,
            client_id=r.client_id,
            invoice_number=self.invoices.next_invoice_number(r.user_id, today),
            issue_date=today,
            due_date=today + timedelta(days=config.due_days(self.settings)),
            status="sent" if r.auto_send else "draft",
        )
        return self.invoices.create_invoice(Invoice.model_validate(fields), r.template.items)

    def process_recurring(self, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or date.today()
        due = [r for r in self.list_recurring() if r.status == "active" and r.next_issue_date <= today]
        details: List[Dict[str, Any]] = []
        for r in due:
            try:
                if r.end_date and r.end_date < today:
                    self.recurring.update({"id": r.id, "status": "inactive"})
                    details.append({"id": r.id, "result": "deactivated", "reason": "End date reached"})
                    continue
                inv = self.generate_from_template(r, today)
                nxt = next_issue_date(r.next_issue_date, r.frequency)
                self.recurring.update({
                    "id": r.id,
                    "next_issue_date": nxt.isoformat(),
                    "last_generated": today.isoformat(),
                })
                logger.info("Generated invoice %s from recurring %s", inv.invoice_number, r.title)
                details.append({"id": r.id, "result": "success", "invoice_id": inv.id, "next_date": nxt})
            except Exception as e:
                logger.exception("Error processing recurring invoice %s", r.id)
                details.append({"id": r.id, "result": "error", "error": str(e)})
        return _summary(details, "success", "deactivated", "error")

    # ----------- reminders -----------
    def save_reminder_settings(self, s: ReminderSettings) -> ReminderSettings:
        self.reminders.delete_where(lambda x: x.get("user_id") == s.user_id)
        self.reminders.add(s.model_dump(mode="json"))
        return s

    def reminder_settings(self, user_id: str) -> Optional[ReminderSettings]:
        d = self.reminders.find_one(lambda x: x.get("user_id") == user_id)
        if d is None:
            return None
        try:
            return ReminderSettings(**d)
        except ValidationError:
            logger.warning("Invalid reminder settings for user %s", user_id)
            return None

    def compose_reminder(self, inv: Invoice, s: ReminderSettings, today: date) -> Dict[str, str]:
        days_difference = (today - inv.due_date).days if inv.due_date else 0
        values = {
            "invoice_number": inv.invoice_number,
            "amount": format_currency(inv.total, inv.currency),
            "due_date": _long_date(inv.due_date),
            "status": reminder_status(days_difference),
        }
        return {
            "subject": fill_template(s.reminder_subject, values),
            "message": fill_template(s.reminder_message, values),
        }

    def process_reminders(self, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or date.today()
        due: List[Invoice] = []
        for d in self.invoices.invoices.find(
            lambda x: x.get("status") in REMINDER_STATUSES and x.get("next_reminder_date")
        ):
            try:
                inv = Invoice(**d)
            except ValidationError:
                logger.warning("Skipping invalid invoice row %s", d.get("id"))
                continue
            if inv.next_reminder_date and inv.next_reminder_date <= today:
                due.append(inv)

        details: List[Dict[str, Any]] = []
        for inv in due:
            s = self.reminder_settings(inv.user_id)
            if s is None or not s.enabled:
                details.append({"id": inv.id, "result": "skipped", "reason": "No reminder settings for user"})
                continue
            try:
                days_difference = (today - inv.due_date).days if inv.due_date else 0
                content = self.compose_reminder(inv, s, today)
                nxt = next_reminder_date(inv.due_date, s, days_difference) if inv.due_date else None
                self.invoices.update_invoice(inv.id, {"last_reminder_sent": today, "next_reminder_date": nxt})
                client = self.clients.get_client(inv.client_id)
                details.append({
                    "id": inv.id,
                    "result": "success",
                    "type": "before" if days_difference < 0 else "after",
                    "sent_to": client.email if client else None,
                    **content,
                })
            except Exception as e:
                logger.exception("Error processing reminder for invoice %s", inv.id)
                details.append({"id": inv.id, "result": "error", "error": str(e)})
        return _summary(details, "success", "skipped", "error")
