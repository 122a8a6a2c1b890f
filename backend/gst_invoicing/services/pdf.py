"""
Single-page A4 tax invoice PDF.

Fixed layout on a reportlab canvas: header, bill-to block, one table row per
line item, totals, amount in words and the signed QR code when the invoice
has one. There is no page break; long invoices run off the bottom.
"""
from __future__ import annotations

import io
from decimal import Decimal
from typing import Optional

import qrcode
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from gst_invoicing.models.invoice import TaxInvoice, TaxInvoiceDetail
from gst_invoicing.models.master import Customer
from gst_invoicing.services.tax import amount_in_words

PAGE_W, PAGE_H = A4
MARGIN = 15 * mm
NAVY = HexColor("#1F3864")
GREY = HexColor("#E7E6E6")

# (header, x offset from left margin, right-aligned)
ITEM_COLUMNS = [
    ("Item", 0, False),
    ("HSN", 62 * mm, False),
    ("Qty", 92 * mm, True),
    ("Rate", 110 * mm, True),
    ("Amount", 130 * mm, True),
    ("GST%", 142 * mm, True),
    ("GST Amt", 160 * mm, True),
    ("Total", 180 * mm, True),
]
ROW_H = 6 * mm


def qr_code_png(data: str) -> bytes:
    """Render ``data`` (the signed QR string) as PNG bytes."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=4,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _fmt(value: Optional[Decimal], places: int = 2) -> str:
    return f"{Decimal(value or 0):,.{places}f}"


class InvoicePdf:
    def __init__(self, invoice: TaxInvoice, lines: list[TaxInvoiceDetail], customer: Customer,
                 company: dict[str, str]):
        self.invoice = invoice
        self.lines = lines
        self.customer = customer
        self.company = company
        self.buf = io.BytesIO()
        self.c = canvas.Canvas(self.buf, pagesize=A4)
        self.c.setTitle(f"Invoice {invoice.invoice_no}")

    def text(self, s: str, x: float, y: float, size: int = 9, bold: bool = False,
             right: bool = False) -> None:
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        if right:
            self.c.drawRightString(x, y, s)
        else:
            self.c.drawString(x, y, s)

    def render(self) -> bytes:
        y = self._header(PAGE_H - MARGIN)
        y = self._bill_to(y - 8 * mm)
        y = self._items(y - 8 * mm)
        self._totals(y - 6 * mm)
        self._qr()
        self.c.showPage()
        self.c.save()
        return self.buf.getvalue()

    def _header(self, y: float) -> float:
        inv = self.invoice
        self.c.setFillColor(NAVY)
        self.text("TAX INVOICE", PAGE_W / 2 - 20 * mm, y, size=16, bold=True)
        self.c.setFillColor(HexColor("#000000"))

        y -= 9 * mm
        name = self.company.get("company_legal_name") or ""
        self.text(name, MARGIN, y, size=11, bold=True)
        if self.company.get("company_gstin"):
            self.text(f"GSTIN: {self.company['company_gstin']}", MARGIN, y - 5 * mm)

        right = PAGE_W - MARGIN
        self.text(f"Invoice No: {inv.invoice_no}", right, y, bold=True, right=True)
        self.text(f"Date: {inv.invoice_date.strftime('%d/%m/%Y')}", right, y - 5 * mm, right=True)
        if inv.irn_no:
            self.text(f"IRN: {inv.irn_no}", MARGIN, y - 10 * mm, size=7)
        if inv.ack_no:
            ack = f"Ack No: {inv.ack_no}"
            if inv.ack_date:
                ack += f"  Ack Date: {inv.ack_date.strftime('%d/%m/%Y %H:%M')}"
            self.text(ack, MARGIN, y - 14 * mm, size=7)
        return y - 16 * mm

    def _bill_to(self, y: float) -> float:
        cust = self.customer
        self.text("Bill To:", MARGIN, y, bold=True)
        rows = [
            cust.company_name or cust.name,
            cust.address or "",
            f"State: {cust.state_name or ''} ({self.invoice.place_of_supply})",
            f"GSTIN: {cust.gstin or 'Unregistered'}",
        ]
        for i, row in enumerate(rows, 1):
            self.text(row, MARGIN, y - i * 5 * mm)
        return y - (len(rows) + 1) * 5 * mm

    def _items(self, y: float) -> float:
        self.c.setFillColor(GREY)
        self.c.rect(MARGIN, y - 2 * mm, PAGE_W - 2 * MARGIN, ROW_H, stroke=0, fill=1)
        self.c.setFillColor(HexColor("#000000"))
        for label, dx, right in ITEM_COLUMNS:
            self.text(label, MARGIN + dx, y, bold=True, right=right)

        for line in self.lines:
            y -= ROW_H
            gst_amt = line.cgst_amt + line.sgst_amt + line.igst_amt
            values = [
                (line.description or "")[:40],
                line.hsn_sac_code,
                _fmt(line.qty, 3),
                _fmt(line.rate),
                _fmt(line.taxable_amt),
                _fmt(line.gst_rate),
                _fmt(gst_amt),
                _fmt(line.total_amount),
            ]
            for (label, dx, right), value in zip(ITEM_COLUMNS, values):
                self.text(value, MARGIN + dx, y, size=8, right=right)

        y -= 3 * mm
        self.c.line(MARGIN, y, PAGE_W - MARGIN, y)
        return y

    def _totals(self, y: float) -> None:
        inv = self.invoice
        label_x = PAGE_W - MARGIN - 45 * mm
        value_x = PAGE_W - MARGIN
        rows = [
            ("Taxable Amount", inv.total_taxable_amt),
            ("CGST", inv.total_cgst_amt),
            ("SGST", inv.total_sgst_amt),
            ("IGST", inv.total_igst_amt),
        ]
        for label, value in rows:
            self.text(label, label_x, y)
            self.text(_fmt(value), value_x, y, right=True)
            y -= 5 * mm
        self.text("Net Amount", label_x, y, bold=True)
        self.text(_fmt(inv.grand_total_amt), value_x, y, bold=True, right=True)

        y -= 10 * mm
        self.text("Amount in words:", MARGIN, y, bold=True)
        self.text(amount_in_words(inv.grand_total_amt), MARGIN + 30 * mm, y)

    def _qr(self) -> None:
        if not self.invoice.signed_qr_code:
            return
        size = 35 * mm
        image = ImageReader(io.BytesIO(qr_code_png(self.invoice.signed_qr_code)))
        self.c.drawImage(image, PAGE_W - MARGIN - size, MARGIN, width=size, height=size)
        self.text("Scan to verify e-invoice", PAGE_W - MARGIN, MARGIN - 4 * mm, size=7, right=True)


def render_invoice_pdf(
    invoice: TaxInvoice,
    lines: list[TaxInvoiceDetail],
    customer: Customer,
    company: dict[str, str],
) -> bytes:
    return InvoicePdf(invoice, lines, customer, company).render()
