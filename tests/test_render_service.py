from pathlib import Path

import pytest

from invoicing.services import render_service
from invoicing.services.engagement import prepare_preview
from invoicing.services.render_service import InvoiceRenderer

RAW = {
    "issuer": {"business_name": "Studio Nine", "address": "12 MG Road"},
    "client": {"name": "Ravi", "company_name": "Acme Traders"},
    "banking": {"account_holder": "Studio Nine", "account_number": "0011", "ifsc_code": "HDFC0000001", "bank_name": "HDFC"},
    "invoice": {
        "invoice_number": "INV-2026-10-004",
        "issue_date": "2026-10-01",
        "engagement_type": "retainership",
        "subtotal": 100000,
        "total": 100000,
        "status": "partially_paid",
        "is_partially_paid": True,
        "partially_paid_amount": 40000,
    },
}


@pytest.fixture
def renderer(tmp_path):
    return InvoiceRenderer(exports_dir=tmp_path, settings={})


def test_render_html(renderer):
    html = renderer.render_html(RAW)
    assert "INV-2026-10-004" in html
    assert "Studio Nine" in html
    assert "Monthly Retainer Fee" in html
    assert "₹1,00,000.00" in html
    assert "Partially Paid" in html
    assert "₹60,000.00" in html  # balance due
    assert "HDFC0000001" in html


def test_render_milestones_in_usd(renderer):
    html = renderer.render_html({
        "invoice": {
            "engagement_type": "milestone",
            "currency": "USD",
            "milestones": [{"name": "Discovery", "amount": 1500}],
        },
    })
    assert "Discovery" in html
    assert "$1,500.00" in html
    assert "Bank Details" not in html


def test_pdf_filename(renderer):
    assert renderer.pdf_filename(prepare_preview(RAW)) == "INV-2026-10-004 (Acme Traders).pdf"
    assert renderer.pdf_filename(prepare_preview({})) == "Invoice (Client).pdf"


def test_export_pdf_with_wkhtmltopdf(renderer, tmp_path, monkeypatch):
    calls = {}

    def fake_from_string(html, out, **kw):
        calls["html"] = html
        Path(out).write_bytes(b"%PDF-1.4")

    monkeypatch.setattr(render_service.config, "find_wkhtmltopdf", lambda settings=None: "/usr/bin/wkhtmltopdf")
    monkeypatch.setattr(render_service.pdfkit, "configuration", lambda **kw: object())
    monkeypatch.setattr(render_service.pdfkit, "from_string", fake_from_string)

    path = renderer.export_pdf(prepare_preview(RAW))
    assert Path(path).parent == tmp_path
    assert Path(path).read_bytes().startswith(b"%PDF")
    assert "INV-2026-10-004" in calls["html"]


def test_export_pdf_falls_back_to_weasyprint(renderer, tmp_path, monkeypatch):
    used = []

    def broken(*a, **kw):
        raise OSError("wkhtmltopdf exited with code 1")

    def fake_weasy(html, out_path, base_url, css_file):
        used.append(out_path)
        out_path.write_bytes(b"%PDF-1.7")

    monkeypatch.setattr(render_service.config, "find_wkhtmltopdf", lambda settings=None: "/usr/bin/wkhtmltopdf")
    monkeypatch.setattr(render_service.pdfkit, "configuration", lambda **kw: object())
    monkeypatch.setattr(render_service.pdfkit, "from_string", broken)
    monkeypatch.setattr(render_service, "_render_pdf_with_weasyprint", fake_weasy)

    out_dir = tmp_path / "out"
    path = renderer.export_pdf(prepare_preview(RAW), out_dir=out_dir)
    assert used == [out_dir / "INV-2026-10-004 (Acme Traders).pdf"]
    assert Path(path).exists()


def test_export_without_wkhtmltopdf_uses_weasyprint(renderer, monkeypatch):
    used = []
    monkeypatch.setattr(render_service.config, "find_wkhtmltopdf", lambda settings=None: None)
    monkeypatch.setattr(
        render_service, "_render_pdf_with_weasyprint",
        lambda html, out_path, base_url, css_file: used.append(out_path.name),
    )
    renderer.export_pdf(prepare_preview(RAW))
    assert used == ["INV-2026-10-004 (Acme Traders).pdf"]
