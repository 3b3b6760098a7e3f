from __future__ import annotations
import logging
from datetime import date
from typing import Any, Callable, Optional

from PySide6.QtCore import QDate
from PySide6.QtWidgets import (
    QButtonGroup, QComboBox, QDateEdit, QDialog, QDialogButtonBox, QDoubleSpinBox,
    QFormLayout, QHBoxLayout, QLabel, QLineEdit, QMessageBox, QRadioButton, QVBoxLayout, QWidget,
)

from invoicing.errors import PaymentValidationError, StoreError
from invoicing.models.invoice import Invoice
from invoicing.models.payment import PAYMENT_METHODS, ErrorKind, PaymentOutcome, PaymentSubmission
from invoicing.services import payment_service
from invoicing.services.currency import format_currency

logger = logging.getLogger(__name__)

SaveCallback = Callable[[PaymentSubmission], Any]
Confirm = Callable[[str], bool]
Navigate = Callable[[str], None]


def _qdate(d: date) -> QDate:
    return QDate(d.year, d.month, d.day)


class PaymentDialog(QDialog):
    """
    Records a payment against one invoice.

    ``on_save`` persists the submission (usually ``InvoiceService.record_payment``
    bound to the invoice id) and ``navigate`` is called with the invoice route
    once it succeeds. ``confirm`` answers the "mark as fully paid instead?"
    question; it defaults to a message box.
    """

    def __init__(
        self,
        invoice: Invoice,
        on_save: SaveCallback,
        navigate: Optional[Navigate] = None,
        confirm: Optional[Confirm] = None,
        parent=None,
        today: Optional[date] = None,
    ):
        super().__init__(parent)
        self.invoice = invoice
        self.on_save = on_save
        self.navigate = navigate
        self.confirm = confirm or self._ask
        self.today = today or date.today()
        self.result_value: Any = None

        self.setWindowTitle(f"Record Payment - {invoice.invoice_number}")
        self.setModal(True)

        self.rb_full = QRadioButton("Full payment")
        self.rb_partial = QRadioButton("Partial payment")
        self.rb_full.setChecked(True)
        group = QButtonGroup(self)
        group.addButton(self.rb_full)
        group.addButton(self.rb_partial)
        self.rb_partial.toggled.connect(lambda _checked: self._sync_amount())
        kind = QHBoxLayout()
        kind.addWidget(self.rb_full)
        kind.addWidget(self.rb_partial)

        self.sp_amount = QDoubleSpinBox()
        self.sp_amount.setRange(0, 1e12)
        self.sp_amount.setDecimals(2)

        self.dt_paid = QDateEdit()
        self.dt_paid.setCalendarPopup(True)
        self.dt_paid.setMaximumDate(_qdate(self.today))
        self.dt_paid.setDate(_qdate(self.today))

        self.cb_method = QComboBox()
        for code, label in PAYMENT_METHODS:
            self.cb_method.addItem(label, code)

        self.ed_reference = QLineEdit()
        self.ed_reference.setPlaceholderText("Transaction ID, cheque number...")

        # USD invoices: one of the two, the other is derived
        self.sp_rate = QDoubleSpinBox()
        self.sp_rate.setRange(0, 1e6)
        self.sp_rate.setDecimals(4)
        self.sp_inr = QDoubleSpinBox()
        self.sp_inr.setRange(0, 1e12)
        self.sp_inr.setDecimals(2)
        usd_form = QFormLayout()
        usd_form.addRow("Exchange rate (USD → INR)", self.sp_rate)
        usd_form.addRow("INR amount received", self.sp_inr)
        self.usd_box = QWidget()
        self.usd_box.setLayout(usd_form)
        self.usd_box.setVisible(invoice.currency == "USD")

        self.lbl_error = QLabel()
        self.lbl_error.setStyleSheet("color: #dc2626;")
        self.lbl_error.setWordWrap(True)
        self.lbl_error.hide()

        form = QFormLayout()
        form.addRow("Invoice total", QLabel(format_currency(invoice.total, invoice.currency)))
        form.addRow("Payment type", kind)
        form.addRow(f"Amount paid ({invoice.currency})", self.sp_amount)
        form.addRow("Payment date", self.dt_paid)
        form.addRow("Payment method", self.cb_method)
        form.addRow("Reference", self.ed_reference)

        btns = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        btns.accepted.connect(self.submit)
        btns.rejected.connect(self.reject)

        lay = QVBoxLayout(self)
        lay.addLayout(form)
        lay.addWidget(self.usd_box)
        lay.addWidget(self.lbl_error)
        lay.addWidget(btns)

        self._sync_amount()

    # ----------- form state -----------
    def _sync_amount(self) -> None:
        partial = self.rb_partial.isChecked()
        self.sp_amount.setEnabled(partial)
        if not partial:
            self.sp_amount.setValue(self.invoice.total)

    def set_partial(self, partial: bool) -> None:
        (self.rb_partial if partial else self.rb_full).setChecked(True)
        self._sync_amount()

    def submission(self) -> PaymentSubmission:
        usd = self.invoice.currency == "USD"
        return PaymentSubmission(
            payment_date=self.dt_paid.date().toPython(),
            payment_method=self.cb_method.currentData(),
            payment_reference=self.ed_reference.text(),
            amount=self.sp_amount.value(),
            is_partially_paid=self.rb_partial.isChecked(),
            exchange_rate=(self.sp_rate.value() or None) if usd else None,
            inr_amount_received=(self.sp_inr.value() or None) if usd else None,
        )

    def show_error(self, message: str) -> None:
        self.lbl_error.setText(message)
        self.lbl_error.show()

    def clear_error(self) -> None:
        self.lbl_error.clear()
        self.lbl_error.hide()

    # ----------- submit -----------
    def validate(self, sub: Optional[PaymentSubmission] = None) -> PaymentOutcome:
        return payment_service.record_payment(self.invoice, sub or self.submission(), self.today)

    def _ask(self, message: str) -> bool:
        return QMessageBox.question(self, "Record Payment", message) == QMessageBox.Yes

    def submit(self) -> bool:
        """Validate, save and navigate. False when the dialog stays open."""
        self.clear_error()
        sub = self.submission()
        outcome = self.validate(sub)

        if outcome.error == ErrorKind.AMOUNT_EXCEEDS_TOTAL:
            if not self.confirm(payment_service.ERROR_MESSAGES[outcome.error]):
                return False
            self.set_partial(False)
            sub = outcome.suggested
            outcome = self.validate(sub)

        if not outcome.ok:
            self.show_error(payment_service.ERROR_MESSAGES[outcome.error])
            return False

        try:
            self.result_value = self.on_save(sub)
        except PaymentValidationError as e:
            self.show_error(payment_service.ERROR_MESSAGES[e.kind])
            return False
        except StoreError:
            logger.exception("Failed to record payment for invoice %s", self.invoice.invoice_number)
            self.show_error(payment_service.ERROR_MESSAGES[ErrorKind.STORE_FAILURE])
            return False

        if self.navigate is not None:
            self.navigate(f"/invoices/{self.invoice.id}")
        self.accept()
        return True
