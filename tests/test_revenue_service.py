from datetime import date

import pytest

from invoicing.models.revenue import RevenueEntry
from invoicing.models.settings import CurrencySettings
from invoicing.services.revenue_service import RevenueService, monthly_revenue, revenue_by_client

START, END = date(2026, 9, 1), date(2026, 10, 31)


@pytest.fixture
def entries():
    return [
        RevenueEntry(user_id="u1", client_id="a", amount_inr=1000, payment_date=date(2026, 9, 10)),
        RevenueEntry(user_id="u1", client_id="b", amount_usd=100, payment_date=date(2026, 10, 2)),
        RevenueEntry(user_id="u1", client_id="a", amount_inr=500, payment_date=date(2026, 10, 5)),
        RevenueEntry(user_id="u1", client_id="a", amount_inr=999, payment_date=date(2026, 6, 1)),
    ]


def test_monthly_revenue_in_inr(entries):
    report = monthly_revenue(entries, START, END, "INR", 85)
    assert (report.total, report.inr, report.usd) == (10000, 1500, 100)
    assert [m.period for m in report.history] == ["2026-10", "2026-09"]
    october = report.history[0]
    assert (october.amount_inr, october.amount_usd, october.total) == (500, 100, 9000)


def test_monthly_revenue_in_usd(entries):
    report = monthly_revenue(entries, START, END, "USD", 85)
    assert report.total == 117.65
    assert report.history[1].total == 11.76


def test_missing_range_is_rejected(entries):
    with pytest.raises(ValueError):
        monthly_revenue(entries, None, END)
    with pytest.raises(ValueError):
        revenue_by_client(entries, START, None)


def test_revenue_by_client(entries):
    report = revenue_by_client(entries, START, END, "INR", 85, client_names={"a": "Acme", "b": "Globex"})
    assert report.total == 10000
    assert [(c.client_name, c.total, c.percentage) for c in report.data] == [
        ("Globex", 8500, 85.0),
        ("Acme", 1500, 15.0),
    ]


def test_revenue_by_client_empty_period(entries):
    report = revenue_by_client(entries, date(2020, 1, 1), date(2020, 1, 31))
    assert report.data == [] and report.total == 0


def test_service_reads_store(tmp_path, entries):
    svc = RevenueService(tmp_path)
    for e in entries:
        svc.add_entry(e)
    svc.add_entry(RevenueEntry(user_id="u2", amount_inr=1, payment_date=date(2026, 10, 1)))

    settings = CurrencySettings(preferred_currency="INR", usd_to_inr_rate=80)
    report = svc.monthly("u1", START, END, settings)
    assert report.total == 1500 + 8000

    by_client = svc.by_client("u1", START, END, settings)
    assert len(by_client.data) == 2
