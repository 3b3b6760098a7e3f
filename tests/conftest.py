import os
from datetime import date

import pytest

from invoicing.models.invoice import Invoice
from invoicing.services.invoice_service import InvoiceService

# headless Qt for the dialog tests
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

TODAY = date(2026, 10, 16)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def store(tmp_path):
    return InvoiceService(tmp_path)


@pytest.fixture
def make_invoice():
    def _make(**kw):
        data = dict(
            user_id="u1",
            client_id="c1",
            invoice_number="INV-2026-10-001",
            issue_date=date(2026, 10, 1),
            due_date=date(2026, 10, 31),
            status="sent",
            subtotal=1000.0,
            total=1000.0,
        )
        data.update(kw)
        return Invoice(**data)

    return _make


@pytest.fixture
def qapp():
    widgets = pytest.importorskip("PySide6.QtWidgets")
    app = widgets.QApplication.instance() or widgets.QApplication([])
    yield app
