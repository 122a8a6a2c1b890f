"""
GST tax engine.

Pure functions over ``Decimal``. Each money component of a line is quantised
to paise (ROUND_HALF_UP) as soon as it is computed, and the line total is the
sum of the already-rounded parts, so ``total == taxable + cgst + sgst + igst``
holds exactly for every line and for the invoice totals.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from gst_invoicing.core.errors import ValidationError

PAISE = Decimal("0.01")
QTY_PLACES = Decimal("0.001")
ZERO = Decimal("0")

STANDARD_GST_RATES = {Decimal(r) for r in ("0", "5", "12", "18", "28")}


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Coerce JSON numbers/strings to Decimal without going through binary float."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        raise ValidationError(f"Missing {field}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}")


def money(value: Decimal) -> Decimal:
    return value.quantize(PAISE, rounding=ROUND_HALF_UP)


def normalise_state_code(code: Optional[str]) -> Optional[str]:
    """'7' → '07'; None/blank → None."""
    if code is None:
        return None
    code = str(code).strip()
    if not code:
        return None
    return code.zfill(2)[:2] if code.isdigit() else code[:2].upper()


def state_code_from_gstin(gstin: Optional[str]) -> Optional[str]:
    """The first two characters of a GSTIN are the registered state code."""
    if not gstin or len(gstin.strip()) < 2:
        return None
    return normalise_state_code(gstin.strip()[:2])


def is_inter_state(seller_state: str, buyer_state: str) -> bool:
    return normalise_state_code(seller_state) != normalise_state_code(buyer_state)


@dataclass(frozen=True)
class LineTax:
    quantity: Decimal
    rate: Decimal
    gst_rate: Decimal
    taxable_amount: Decimal
    cgst_rate: Decimal
    cgst_amount: Decimal
    sgst_rate: Decimal
    sgst_amount: Decimal
    igst_rate: Decimal
    igst_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    total_qty: Decimal
    taxable_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    grand_total: Decimal


def compute_line(quantity: Any, rate: Any, gst_rate: Any, inter_state: bool) -> LineTax:
    qty = to_decimal(quantity, "quantity")
    unit_rate = to_decimal(rate, "rate")
    gst = to_decimal(gst_rate, "gst_rate")
    if qty <= ZERO:
        raise ValidationError("Quantity must be greater than zero")
    if unit_rate < ZERO:
        raise ValidationError("Rate cannot be negative")
    if gst < ZERO:
        raise ValidationError("GST rate cannot be negative")

    taxable = money(qty * unit_rate)
    if inter_state:
        igst_rate = gst
        igst = money(taxable * gst / 100)
        cgst_rate = sgst_rate = ZERO
        cgst = sgst = money(ZERO)
    else:
        cgst_rate = sgst_rate = gst / 2
        cgst = sgst = money(taxable * gst / 200)
        igst_rate = ZERO
        igst = money(ZERO)

    return LineTax(
        quantity=qty,
        rate=unit_rate,
        gst_rate=gst,
        taxable_amount=taxable,
        cgst_rate=cgst_rate,
        cgst_amount=cgst,
        sgst_rate=sgst_rate,
        sgst_amount=sgst,
        igst_rate=igst_rate,
        igst_amount=igst,
        line_total=taxable + cgst + sgst + igst,
    )


def compute_totals(lines: Iterable[LineTax]) -> InvoiceTotals:
    qty = taxable = cgst = sgst = igst = total = ZERO
    for line in lines:
        qty += line.quantity
        taxable += line.taxable_amount
        cgst += line.cgst_amount
        sgst += line.sgst_amount
        igst += line.igst_amount
        total += line.line_total
    return InvoiceTotals(
        total_qty=qty.quantize(QTY_PLACES),
        taxable_amount=money(taxable),
        cgst_amount=money(cgst),
        sgst_amount=money(sgst),
        igst_amount=money(igst),
        grand_total=money(total),
    )


# ── Amount in words (Indian numbering) ───────────────────────────────────────

_ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def _below_thousand(n: int) -> list[str]:
    words: list[str] = []
    if n >= 100:
        words += [_ONES[n // 100], "Hundred"]
        n %= 100
    if n >= 20:
        words.append(_TENS[n // 10])
        n %= 10
    if n:
        words.append(_ONES[n])
    return words


def _integer_words(n: int) -> list[str]:
    if n == 0:
        return ["Zero"]
    words: list[str] = []
    crores, n = divmod(n, 10_000_000)
    if crores:
        # Above 99 crore the crore count itself is spelled out recursively
        words += _integer_words(crores) + ["Crore"]
    lakhs, n = divmod(n, 100_000)
    if lakhs:
        words += _below_thousand(lakhs) + ["Lakh"]
    thousands, n = divmod(n, 1000)
    if thousands:
        words += _below_thousand(thousands) + ["Thousand"]
    words += _below_thousand(n)
    return words


def amount_in_words(amount: Any) -> str:
    """
    Rupee amount spelled out the Indian way.

    >>> amount_in_words(1180)
    'One Thousand One Hundred Eighty Rupees Only'
    >>> amount_in_words("250000.50")
    'Two Lakh Fifty Thousand Rupees and Fifty Paise Only'
    """
    value = money(abs(to_decimal(amount, "amount")))
    rupees = int(value)
    paise = int((value - rupees) * 100)

    text = " ".join(_integer_words(rupees)) + " Rupees"
    if paise:
        text += " and " + " ".join(_below_thousand(paise)) + " Paise"
    return text + " Only"
