"""
Tax invoice lifecycle: numbering, creation, editing and listing.

Lines are priced by ``services.tax``; header and lines are always written in
one commit. E-invoice submission lives in ``services.einvoice``.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from gst_invoicing.core.cache import get_cache, invalidate_on_commit
from gst_invoicing.core.config import settings
from gst_invoicing.core.errors import NotFound, ValidationError
from gst_invoicing.models.invoice import (
    EInvoiceSequence,
    EInvoiceTransactionLog,
    InvoiceStatus,
    TaxInvoice,
    TaxInvoiceDetail,
)
from gst_invoicing.models.master import Customer, FinishedProduct, HsnSacCode
from gst_invoicing.schemas.requests import InvoiceCreate, InvoiceItemIn, InvoiceUpdate
from gst_invoicing.schemas.responses import InvoiceDetail, InvoiceLineRead, InvoiceRead
from gst_invoicing.services import tax
from gst_invoicing.services.masters import get_gst_settings
from gst_invoicing.services.paging import paginate

CACHE_DOMAIN = "invoices"

EDITABLE_STATUSES = (InvoiceStatus.DRAFT.value, InvoiceStatus.ERROR.value)


# ── Numbering ─────────────────────────────────────────────────────────────────


def financial_year(day: date) -> str:
    """Indian financial year (April–March): 2024-07-01 → '2024-25'."""
    start = day.year if day.month >= 4 else day.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def _sequence_query(fy: str):
    return (
        select(EInvoiceSequence)
        .where(EInvoiceSequence.financial_year == fy)
        .with_for_update()
    )


def _create_sequence(session: Session, fy: str) -> EInvoiceSequence:
    """
    Insert the first sequence row of ``fy``. If another request inserted it
    first the unique constraint fires; roll back and lock the winner's row.
    Runs before the caller stages anything else on ``session``.
    """
    seq = EInvoiceSequence(financial_year=fy, prefix=settings.INVOICE_NUMBER_PREFIX)
    session.add(seq)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        logger.info(f"Sequence for {fy} created concurrently, reusing it")
        seq = session.exec(_sequence_query(fy)).one()
    return seq


def next_invoice_number(session: Session, invoice_date: date) -> str:
    """
    Reserve the next number for the invoice's financial year.

    The sequence row is locked until the caller commits, so two concurrent
    creates can never draw the same number.
    """
    fy = financial_year(invoice_date)
    seq = session.exec(_sequence_query(fy)).first()
    if seq is None:
        seq = _create_sequence(session, fy)
    seq.current_number += 1
    seq.updated_at = datetime.utcnow()
    session.add(seq)

    fy_code = fy[2:4] + fy[5:7]
    return f"{seq.prefix}{fy_code}-{seq.current_number:0{settings.INVOICE_NUMBER_PADDING}d}"


# ── Helpers ───────────────────────────────────────────────────────────────────


def seller_state_code(session: Session) -> str:
    gst = get_gst_settings(session)
    return (
        tax.normalise_state_code(gst.get("company_state_code"))
        or tax.state_code_from_gstin(gst.get("company_gstin"))
        or tax.normalise_state_code(settings.SELLER_STATE_CODE)
    )


def buyer_state_code(customer: Customer, place_of_supply: Optional[str]) -> str:
    state = (
        tax.normalise_state_code(place_of_supply)
        or tax.normalise_state_code(customer.state_code)
        or tax.state_code_from_gstin(customer.gstin)
    )
    if not state:
        raise ValidationError("Place of supply could not be determined for customer")
    return state


def _get_customer(session: Session, customer_id: Optional[int]) -> Customer:
    if not customer_id:
        raise ValidationError("Missing required fields: customer_id")
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFound("Customer not found")
    return customer


def _fill_from_product(session: Session, item: InvoiceItemIn) -> tuple[str, object, Optional[str]]:
    """HSN code, GST rate and description for a line, defaulting from the product master."""
    hsn_code, gst_rate, description = item.hsn_code, item.gst_rate, item.description
    if (hsn_code is None or gst_rate is None or description is None) and item.prod_id:
        product = session.get(FinishedProduct, item.prod_id)
        if product is None:
            raise NotFound(f"Finished product {item.prod_id} not found")
        description = description or product.name
        hsn = session.get(HsnSacCode, product.hsn_sac_id) if product.hsn_sac_id else None
        if hsn is not None:
            hsn_code = hsn_code or hsn.code
            gst_rate = gst_rate if gst_rate is not None else hsn.gst_rate
    if not hsn_code or gst_rate is None:
        raise ValidationError("Each item needs hsn_code and gst_rate")
    return hsn_code, gst_rate, description


def _build_lines(
    session: Session, items: list[InvoiceItemIn], inter_state: bool
) -> tuple[list[TaxInvoiceDetail], tax.InvoiceTotals]:
    if not items:
        raise ValidationError("Invoice must have at least one item")

    details: list[TaxInvoiceDetail] = []
    priced: list[tax.LineTax] = []
    for serial, item in enumerate(items, 1):
        hsn_code, gst_rate, description = _fill_from_product(session, item)
        line = tax.compute_line(item.quantity, item.rate, gst_rate, inter_state)
        priced.append(line)
        details.append(
            TaxInvoiceDetail(
                tax_invoice_id=0,
                serial_no=serial,
                prod_id=item.prod_id,
                description=description,
                hsn_sac_code=hsn_code,
                is_service=item.is_service,
                unit=item.unit or "NOS",
                qty=line.quantity,
                rate=line.rate,
                gst_rate=line.gst_rate,
                taxable_amt=line.taxable_amount,
                cgst_rate=line.cgst_rate,
                cgst_amt=line.cgst_amount,
                sgst_rate=line.sgst_rate,
                sgst_amt=line.sgst_amount,
                igst_rate=line.igst_rate,
                igst_amt=line.igst_amount,
                total_amount=line.line_total,
            )
        )
    return details, tax.compute_totals(priced)


def _apply_totals(invoice: TaxInvoice, totals: tax.InvoiceTotals) -> None:
    invoice.total_qty = totals.total_qty
    invoice.total_taxable_amt = totals.taxable_amount
    invoice.total_cgst_amt = totals.cgst_amount
    invoice.total_sgst_amt = totals.sgst_amount
    invoice.total_igst_amt = totals.igst_amount
    invoice.grand_total_amt = totals.grand_total


def _attach_lines(session: Session, invoice: TaxInvoice, details: list[TaxInvoiceDetail]) -> None:
    for d in details:
        d.tax_invoice_id = invoice.id
        session.add(d)


def get_invoice_or_404(session: Session, invoice_id: int) -> TaxInvoice:
    invoice = session.get(TaxInvoice, invoice_id)
    if invoice is None:
        raise NotFound("Invoice not found")
    return invoice


def get_invoice_lines(session: Session, invoice_id: int) -> list[TaxInvoiceDetail]:
    return list(
        session.exec(
            select(TaxInvoiceDetail)
            .where(TaxInvoiceDetail.tax_invoice_id == invoice_id)
            .order_by(TaxInvoiceDetail.serial_no)
        ).all()
    )


# ── Operations ────────────────────────────────────────────────────────────────


def create_invoice(session: Session, body: InvoiceCreate, user_id: Optional[int] = None) -> TaxInvoice:
    if not body.customer_id or not body.invoice_date:
        raise ValidationError("Missing required fields: customer_id, invoice_date")
    if not body.items:
        raise ValidationError("Invoice must have at least one item")
    customer = _get_customer(session, body.customer_id)

    seller_state = seller_state_code(session)
    buyer_state = buyer_state_code(customer, body.place_of_supply)
    inter_state = tax.is_inter_state(seller_state, buyer_state)
    details, totals = _build_lines(session, body.items, inter_state)

    try:
        invoice = TaxInvoice(
            invoice_no=next_invoice_number(session, body.invoice_date),
            invoice_date=body.invoice_date,
            customer_id=customer.id,
            seller_state_code=seller_state,
            place_of_supply=buyer_state,
            supply_type=body.supply_type,
            transaction_type=body.transaction_type,
            reverse_charge=body.reverse_charge,
            delivery_note=body.delivery_note,
            mode_terms_payment=body.mode_terms_payment,
            buyer_order_no=body.buyer_order_no,
            dispatch_through=body.dispatch_through,
            dispatch_destination=body.dispatch_destination,
            remarks=body.remarks,
            status=InvoiceStatus.DRAFT.value,
            created_by=user_id,
        )
        _apply_totals(invoice, totals)
        session.add(invoice)
        session.flush()
        _attach_lines(session, invoice, details)
        invalidate_on_commit(session, CACHE_DOMAIN)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(invoice)
    logger.info(
        f"Created invoice {invoice.invoice_no} for customer {customer.id} "
        f"({'IGST' if inter_state else 'CGST+SGST'}, total {invoice.grand_total_amt})"
    )
    return invoice


def update_invoice(session: Session, invoice_id: Optional[int], body: InvoiceUpdate) -> TaxInvoice:
    if not invoice_id:
        raise ValidationError("Invoice ID is required")
    invoice = get_invoice_or_404(session, invoice_id)
    if invoice.status not in EDITABLE_STATUSES:
        raise ValidationError(f"Cannot edit invoice in '{invoice.status}' status")

    changes = body.model_dump(exclude_unset=True, exclude={"items"})
    for key, value in changes.items():
        if value is not None and key != "place_of_supply":
            setattr(invoice, key, value)

    try:
        customer = _get_customer(session, invoice.customer_id)
        place = changes.get("place_of_supply")
        if "customer_id" in changes and "place_of_supply" not in changes:
            place = None
        elif place is None:
            place = invoice.place_of_supply
        buyer_state = buyer_state_code(customer, place)
        invoice.place_of_supply = buyer_state
        inter_state = tax.is_inter_state(invoice.seller_state_code, buyer_state)

        if body.items is not None:
            items = body.items
        else:
            # Re-price the existing lines against the possibly changed place of supply
            items = [
                InvoiceItemIn(
                    prod_id=d.prod_id,
                    description=d.description,
                    hsn_code=d.hsn_sac_code,
                    quantity=d.qty,
                    rate=d.rate,
                    gst_rate=d.gst_rate,
                    unit=d.unit,
                    is_service=d.is_service,
                )
                for d in get_invoice_lines(session, invoice.id)
            ]
        details, totals = _build_lines(session, items, inter_state)

        for old in get_invoice_lines(session, invoice.id):
            session.delete(old)
        _attach_lines(session, invoice, details)
        _apply_totals(invoice, totals)
        invoice.updated_at = datetime.utcnow()
        session.add(invoice)
        invalidate_on_commit(session, CACHE_DOMAIN)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(invoice)
    logger.info(f"Updated invoice {invoice.invoice_no}")
    return invoice


def delete_invoice(session: Session, invoice_id: Optional[int]) -> None:
    if not invoice_id:
        raise ValidationError("Invoice ID is required")
    invoice = get_invoice_or_404(session, invoice_id)
    if invoice.irn_no or invoice.status in (
        InvoiceStatus.GENERATED.value,
        InvoiceStatus.CANCELLED.value,
    ):
        raise ValidationError("Cannot delete invoice with generated e-invoice")
    # submission logs are an audit trail and are never removed
    history = session.exec(
        select(EInvoiceTransactionLog.id)
        .where(EInvoiceTransactionLog.tax_invoice_id == invoice.id)
        .limit(1)
    ).first()
    if history is not None:
        raise ValidationError("Cannot delete invoice with e-invoice submission history")

    invoice_no = invoice.invoice_no
    for line in get_invoice_lines(session, invoice.id):
        session.delete(line)
    session.flush()
    session.delete(invoice)
    invalidate_on_commit(session, CACHE_DOMAIN)
    session.commit()
    logger.info(f"Deleted invoice {invoice_no}")


def invoice_detail(session: Session, invoice: TaxInvoice) -> InvoiceDetail:
    customer = session.get(Customer, invoice.customer_id)
    lines = get_invoice_lines(session, invoice.id)
    detail = InvoiceDetail.model_validate(invoice)
    detail.customer_name = (customer.company_name or customer.name) if customer else None
    detail.customer_gstin = customer.gstin if customer else None
    detail.amount_in_words = tax.amount_in_words(invoice.grand_total_amt)
    detail.items = [InvoiceLineRead.model_validate(d) for d in lines]
    return detail


def list_invoices(
    session: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
) -> dict:
    cache = get_cache()
    key = cache.make_key(CACHE_DOMAIN, "list", page, limit, search or "")
    cached = cache.get(key)
    if cached is not None:
        return cached

    stmt = select(TaxInvoice, Customer).join(Customer, Customer.id == TaxInvoice.customer_id)
    if search:
        stmt = stmt.where(
            or_(
                col(TaxInvoice.invoice_no).contains(search),
                col(Customer.name).contains(search),
                col(Customer.company_name).contains(search),
            )
        )
    stmt = stmt.order_by(col(TaxInvoice.id).desc())
    rows, pagination = paginate(session, stmt, page, limit)

    data = []
    for invoice, customer in rows:
        item = InvoiceRead.model_validate(invoice)
        item.customer_name = customer.company_name or customer.name
        item.customer_gstin = customer.gstin
        row = item.model_dump(mode="json")
        row["is_submitted"] = bool(invoice.irn_no)
        data.append(row)

    result = {"data": data, "pagination": pagination}
    cache.set(key, result, ttl=settings.CACHE_TTL_INVOICES)
    return result
