from __future__ import annotations
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import pdfkit  # used when wkhtmltopdf is available
from jinja2 import Environment, FileSystemLoader, select_autoescape

from invoicing import config
from invoicing.models.preview import InvoicePreviewData
from invoicing.services.currency import currency_symbol, format_currency
from invoicing.services.engagement import prepare_preview

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "draft": "Draft",
    "sent": "Sent",
    "paid": "Paid",
    "overdue": "Overdue",
    "partially_paid": "Partially Paid",
}


def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    text = re.sub(r"\s+", " ", text)
    return text or "Client"


def _render_pdf_with_weasyprint(html: str, out_path: Path, base_url: Optional[str], css_file: Path) -> None:
    """WeasyPrint fallback when wkhtmltopdf is missing or fails."""
    try:
        from weasyprint import CSS, HTML
    except ImportError as e:
        raise RuntimeError(
            "No wkhtmltopdf found and WeasyPrint is not installed. "
            "Install WeasyPrint (pip install weasyprint) or configure wkhtmltopdf.\n"
            f"Details: {e}"
        ) from e

    styles = [CSS(filename=str(css_file))] if css_file.exists() else None
    HTML(string=html, base_url=base_url).write_pdf(str(out_path), stylesheets=styles)


class InvoiceRenderer:
    """Turns prepared ``InvoicePreviewData`` into HTML and PDF files."""

    def __init__(
        self,
        templates_dir: Optional[os.PathLike | str] = None,
        exports_dir: Optional[os.PathLike | str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.templates_dir = Path(templates_dir) if templates_dir else config.TEMPLATES_DIR
        self.exports_dir = Path(exports_dir) if exports_dir else config.exports_dir() / "invoices"
        self.settings = settings
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.env.filters["money"] = format_currency
        self.env.filters["status_label"] = lambda s: STATUS_LABELS.get(s, s)

    # ----------- HTML ----------
    def render_html(self, preview: InvoicePreviewData | Dict[str, Any]) -> str:
        if not isinstance(preview, InvoicePreviewData):
            preview = prepare_preview(preview)
        inv = preview.invoice
        balance = None
        if inv.is_partially_paid and inv.partially_paid_amount is not None:
            balance = max(0.0, inv.total - inv.partially_paid_amount)

        tpl = self.env.get_template("invoice.html")
        return tpl.render(
            issuer=preview.issuer,
            client=preview.client,
            banking=preview.banking,
            invoice=inv,
            currency=inv.currency,
            symbol=currency_symbol(inv.currency),
            balance=balance,
        )

    # ----------- PDF ----------
    def pdf_filename(self, preview: InvoicePreviewData) -> str:
        number = _slug(preview.invoice.invoice_number or "Invoice")
        return f"{number} ({_slug(preview.client.company_name or preview.client.name)}).pdf"

    def export_pdf(self, preview: InvoicePreviewData, out_dir: Optional[os.PathLike | str] = None) -> str:
        """
        Write the invoice PDF and return its path.
        Tries wkhtmltopdf (pdfkit) first, WeasyPrint otherwise.
        """
        html = self.render_html(preview)

        target_dir = Path(out_dir) if out_dir else self.exports_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        out_path = target_dir / self.pdf_filename(preview)

        css_file = self.templates_dir / "stylesheet.css"
        base_url = str(self.templates_dir.resolve())

        wkhtml = config.find_wkhtmltopdf(self.settings)
        if wkhtml:
            try:
                pdf_config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {
                    "enable-local-file-access": None,
                    "quiet": "",
                    "encoding": "UTF-8",
                }
                pdfkit.from_string(
                    html, str(out_path), options=options, configuration=pdf_config,
                    css=str(css_file.resolve()) if css_file.exists() else None,
                )
                return str(out_path)
            except OSError as e:
                logger.warning("wkhtmltopdf failed (%s). Falling back to WeasyPrint...", e)

        _render_pdf_with_weasyprint(html, out_path, base_url=base_url, css_file=css_file)
        return str(out_path)
