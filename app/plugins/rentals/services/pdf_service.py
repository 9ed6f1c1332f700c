import os
from datetime import datetime

from jinja2 import Environment, FileSystemLoader, select_autoescape

from plugins.rentals.billing.invoice_math import format_money
from plugins.rentals.models.invoice import Invoice

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATE_DIR = os.path.abspath(os.path.join(BASE_DIR, "..", "templates", "pdf"))

env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml"])
)
env.filters["money"] = format_money

BRAND = {
    "color": "#1f4e79",
    "currency_note": "Curs valutar BNR, EUR -> RON",
}


def render_invoice_html(invoice: Invoice, issuer: str = None) -> str:
    template = env.get_template("invoice.html")
    return template.render(
        invoice=invoice,
        issuer=issuer or invoice.owner or "",
        due_date=invoice.due_date,
        brand=BRAND,
        generated_at=datetime.now(),
    )


def render_invoice_pdf(invoice: Invoice, issuer: str = None) -> bytes:
    """Invoice as PDF bytes."""
    # WeasyPrint loads pango at import time; keep it out of module import.
    from weasyprint import HTML

    return HTML(string=render_invoice_html(invoice, issuer), base_url=TEMPLATE_DIR).write_pdf()


class InvoicePdfWriter:
    """Writes invoice PDFs under ``media_dir`` and returns the stored path."""

    def __init__(self, media_dir: str = "media/invoices"):
        self.media_dir = media_dir

    def path_for(self, invoice: Invoice) -> str:
        safe_id = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in invoice.id)
        return os.path.join(self.media_dir, f"{safe_id}.pdf")

    async def __call__(self, invoice: Invoice) -> str:
        os.makedirs(self.media_dir, exist_ok=True)
        file_path = self.path_for(invoice)
        with open(file_path, "wb") as fh:
            fh.write(render_invoice_pdf(invoice))
        return file_path

    def remove(self, invoice: Invoice) -> None:
        path = self.path_for(invoice)
        if os.path.exists(path):
            os.remove(path)
