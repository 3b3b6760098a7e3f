from datetime import date

import pytest

from invoicing.errors import StoreError

TODAY = date(2026, 10, 16)


@pytest.fixture
def dialog_cls(qapp):
    from invoicing_ui.widgets.payment_dialog import PaymentDialog
    return PaymentDialog


@pytest.fixture
def saved_invoice(store, make_invoice):
    return store.create_invoice(make_invoice(total=1000))


def _dialog(dialog_cls, store, invoice, **kw):
    routes = []
    kw.setdefault("navigate", routes.append)
    dlg = dialog_cls(
        invoice,
        on_save=lambda sub: store.record_payment(invoice.id, sub, TODAY),
        today=TODAY,
        **kw,
    )
    return dlg, routes


def test_full_payment_saves_and_navigates(dialog_cls, store, saved_invoice):
    dlg, routes = _dialog(dialog_cls, store, saved_invoice)
    assert dlg.sp_amount.value() == 1000
    assert not dlg.sp_amount.isEnabled()

    assert dlg.submit() is True
    assert store.fetch_invoice(saved_invoice.id).status == "paid"
    assert routes == [f"/invoices/{saved_invoice.id}"]


def test_partial_payment(dialog_cls, store, saved_invoice):
    dlg, _ = _dialog(dialog_cls, store, saved_invoice)
    dlg.set_partial(True)
    dlg.sp_amount.setValue(250)
    dlg.ed_reference.setText("UTR123")

    assert dlg.submit() is True
    inv = store.fetch_invoice(saved_invoice.id)
    assert inv.status == "partially_paid"
    assert inv.partially_paid_amount == 250
    assert inv.payment_reference == "UTR123"


def test_invalid_amount_shown_inline(dialog_cls, store, saved_invoice):
    dlg, routes = _dialog(dialog_cls, store, saved_invoice)
    dlg.set_partial(True)
    dlg.sp_amount.setValue(0)

    assert dlg.submit() is False
    assert not dlg.lbl_error.isHidden()
    assert dlg.lbl_error.text() == "Please enter a valid payment amount"
    assert routes == []
    assert store.fetch_invoice(saved_invoice.id).status == "sent"


def test_overpayment_can_become_full_payment(dialog_cls, store, saved_invoice):
    asked = []
    dlg, _ = _dialog(dialog_cls, store, saved_invoice, confirm=lambda msg: asked.append(msg) or True)
    dlg.set_partial(True)
    dlg.sp_amount.setValue(1200)

    assert dlg.submit() is True
    assert len(asked) == 1
    assert dlg.rb_full.isChecked()
    assert store.fetch_invoice(saved_invoice.id).status == "paid"


def test_overpayment_declined(dialog_cls, store, saved_invoice):
    dlg, routes = _dialog(dialog_cls, store, saved_invoice, confirm=lambda msg: False)
    dlg.set_partial(True)
    dlg.sp_amount.setValue(1200)

    assert dlg.submit() is False
    assert routes == []
    assert store.fetch_invoice(saved_invoice.id).status == "sent"


def test_store_failure_message(dialog_cls, saved_invoice):
    def fail(sub):
        raise StoreError("offline")

    dlg = dialog_cls(saved_invoice, on_save=fail, today=TODAY)
    assert dlg.submit() is False
    assert dlg.lbl_error.text() == "Failed to record payment. Please try again."


def test_usd_fields(dialog_cls, store, make_invoice):
    inr = dialog_cls(make_invoice(), on_save=lambda s: None, today=TODAY)
    assert inr.usd_box.isHidden()

    usd_invoice = store.create_invoice(make_invoice(invoice_number="INV-2026-10-009", currency="USD", total=100))
    dlg, _ = _dialog(dialog_cls, store, usd_invoice)
    assert not dlg.usd_box.isHidden()

    assert dlg.submit() is False
    assert dlg.lbl_error.text() == "Enter the exchange rate or the INR amount received"

    dlg.sp_rate.setValue(83)
    assert dlg.submit() is True
    entry = store.revenue.list_all()[0]
    assert entry["amount_inr"] == 8300


def test_date_capped_at_today(dialog_cls, saved_invoice):
    dlg = dialog_cls(saved_invoice, on_save=lambda s: None, today=TODAY)
    assert dlg.dt_paid.maximumDate().toPython() == TODAY
    assert dlg.submission().payment_date == TODAY
    assert dlg.submission().payment_method == "bank_transfer"
