from datetime import date, timedelta

import pytest

from invoicing.errors import InvalidTransition
from invoicing.models.payment import ErrorKind, PaymentSubmission
from invoicing.services import payment_service as ps

TODAY = date(2026, 10, 16)


def _pay(invoice, **kw):
    data = {"payment_date": TODAY, "payment_method": "bank_transfer"}
    data.update(kw)
    return ps.record_payment(invoice, PaymentSubmission(**data), today=TODAY)


def test_partial_then_full(make_invoice):
    inv = make_invoice(total=1000)

    first = _pay(inv, amount=300, is_partially_paid=True)
    assert first.ok
    assert first.updates["status"] == "partially_paid"
    assert first.updates["is_partially_paid"] is True
    assert first.updates["partially_paid_amount"] == 300
    assert first.amount_payable == 300
    assert first.balance == 700

    inv = inv.model_copy(update=first.updates)
    second = _pay(inv)
    assert second.ok
    assert second.updates["status"] == "paid"
    assert second.updates["is_partially_paid"] is False
    assert second.updates["partially_paid_amount"] is None
    assert second.amount_payable == 700
    assert second.balance == 0


def test_partial_amount_replaces_previous(make_invoice):
    inv = make_invoice(total=1000, status="partially_paid", is_partially_paid=True, partially_paid_amount=300)
    out = _pay(inv, amount=500, is_partially_paid=True)
    assert out.updates["partially_paid_amount"] == 500
    assert out.amount_payable == 200


def test_usd_rate_gives_inr(make_invoice):
    inv = make_invoice(currency="USD", total=100)
    out = _pay(inv, amount=100, exchange_rate=83)
    assert out.ok
    assert out.conversion.inr_amount_received == 8300


def test_usd_inr_received_gives_rate(make_invoice):
    inv = make_invoice(currency="USD", total=100)
    out = _pay(inv, amount=100, inr_amount_received=8500)
    assert out.conversion.exchange_rate == 85


def test_usd_received_wins_over_rate(make_invoice):
    inv = make_invoice(currency="USD", total=100)
    out = _pay(inv, amount=100, exchange_rate=80, inr_amount_received=8400)
    assert out.conversion.exchange_rate == 84
    assert out.conversion.inr_amount_received == 8400


def test_usd_without_conversion(make_invoice):
    inv = make_invoice(currency="USD", total=100)
    assert _pay(inv, amount=100).error == ErrorKind.MISSING_CONVERSION


def test_partial_over_total_offers_full_payment(make_invoice):
    inv = make_invoice(total=1000)
    out = _pay(inv, amount=1200, is_partially_paid=True)
    assert out.error == ErrorKind.AMOUNT_EXCEEDS_TOTAL
    assert out.updates == {}
    assert out.suggested.is_partially_paid is False
    assert out.suggested.amount == 1000


def test_partial_equal_to_total_is_rejected(make_invoice):
    out = _pay(make_invoice(total=1000), amount=1000, is_partially_paid=True)
    assert out.error == ErrorKind.AMOUNT_EXCEEDS_TOTAL


@pytest.mark.parametrize(
    "kw,kind",
    [
        ({"payment_date": None}, ErrorKind.MISSING_DATE),
        ({"payment_date": ""}, ErrorKind.MISSING_DATE),
        ({"payment_date": TODAY + timedelta(days=1)}, ErrorKind.FUTURE_DATE),
        ({"amount": 0, "is_partially_paid": True}, ErrorKind.INVALID_AMOUNT),
        ({"amount": "", "is_partially_paid": True}, ErrorKind.INVALID_AMOUNT),
        ({"amount": -5, "is_partially_paid": True}, ErrorKind.INVALID_AMOUNT),
    ],
)
def test_validation_errors(make_invoice, kw, kind):
    out = _pay(make_invoice(), **kw)
    assert out.error == kind
    assert not out.ok
    assert out.updates == {}


def test_already_paid(make_invoice):
    assert _pay(make_invoice(status="paid")).error == ErrorKind.ALREADY_PAID


def test_full_payment_without_amount_uses_total(make_invoice):
    out = _pay(make_invoice(total=640), amount=0)
    assert out.updates["status"] == "paid"
    assert out.amount_payable == 640


def test_record_payment_accepts_dicts():
    invoice = {"status": "sent", "total": 100, "currency": "INR"}
    out = ps.record_payment(invoice, {"payment_date": "2026-10-01", "amount": "40", "is_partially_paid": True}, TODAY)
    assert out.updates["partially_paid_amount"] == 40
    assert out.updates["payment_date"] == date(2026, 10, 1)


# ---------- status machine ---------- #

def test_overdue_is_derived_and_idempotent(make_invoice):
    inv = make_invoice(status="sent", due_date=TODAY - timedelta(days=1))
    assert ps.refresh_overdue(inv, TODAY) == "overdue"
    again = inv.model_copy(update={"status": "overdue"})
    assert ps.refresh_overdue(again, TODAY) == "overdue"


@pytest.mark.parametrize(
    "status,due,expected",
    [
        ("sent", TODAY, "sent"),
        ("sent", None, "sent"),
        ("draft", TODAY - timedelta(days=30), "draft"),
        ("paid", TODAY - timedelta(days=30), "paid"),
        ("partially_paid", TODAY - timedelta(days=1), "overdue"),
    ],
)
def test_refresh_overdue(make_invoice, status, due, expected):
    assert ps.refresh_overdue(make_invoice(status=status, due_date=due), TODAY) == expected


def test_apply_overdue_keeps_unchanged_objects(make_invoice):
    fresh = make_invoice(due_date=TODAY + timedelta(days=3))
    late = make_invoice(due_date=TODAY - timedelta(days=3))
    out = ps.apply_overdue([fresh, late], TODAY)
    assert out[0] is fresh
    assert out[1].status == "overdue"
    assert late.status == "sent"


def test_transitions():
    assert ps.can_transition("draft", "sent")
    assert ps.can_transition("partially_paid", "partially_paid")
    assert ps.can_transition("overdue", "paid")
    assert not ps.can_transition("paid", "sent")
    assert not ps.can_transition("draft", "paid")
    with pytest.raises(InvalidTransition):
        ps.ensure_transition("paid", "overdue")


def test_remaining_balance(make_invoice):
    assert ps.remaining_balance(make_invoice(total=1000)) == 1000
    assert ps.remaining_balance(
        make_invoice(total=1000, is_partially_paid=True, partially_paid_amount=250)
    ) == 750
    assert ps.remaining_balance(make_invoice(total=1000, status="paid")) == 0


def test_usd_follow_up_converts_only_the_balance(make_invoice):
    inv = make_invoice(currency="USD", total=1000)
    first = _pay(inv, amount=300, is_partially_paid=True, inr_amount_received=24900)
    assert (first.conversion.usd_amount, first.conversion.exchange_rate) == (300, 83)

    inv = inv.model_copy(update=first.updates)
    second = _pay(inv, inr_amount_received=58100)
    assert second.amount_payable == 700
    assert second.conversion.usd_amount == 700
    assert second.conversion.exchange_rate == 83
    assert second.conversion.inr_amount_received == 58100

    by_rate = _pay(inv, exchange_rate=80)
    assert by_rate.conversion.inr_amount_received == 56000


def test_overdue_partial_keeps_paid_amount(make_invoice):
    inv = make_invoice(
        status="partially_paid", is_partially_paid=True, partially_paid_amount=300,
        due_date=TODAY - timedelta(days=1),
    )
    [out] = ps.apply_overdue([inv], TODAY)
    assert out.status == "overdue"
    assert out.is_partially_paid is True
    assert out.partially_paid_amount == 300
