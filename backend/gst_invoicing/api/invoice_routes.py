"""
Tax invoice, e-invoice and PDF endpoints.

  GET    /api/invoices
  POST   /api/invoices
  PUT    /api/invoices?id=
  DELETE /api/invoices?id=
  GET    /api/invoices/{id}
  GET    /api/invoices/{id}/pdf
  POST   /api/invoices/{id}/einvoice
  DELETE /api/invoices/{id}/einvoice
  GET    /api/invoices/{id}/einvoice
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status
from loguru import logger
from sqlmodel import Session

from gst_invoicing.core.database import get_session
from gst_invoicing.core.errors import ExternalServiceError, NotFound, ValidationError
from gst_invoicing.core.security import Action, CurrentUser, Module, require
from gst_invoicing.models.master import Customer
from gst_invoicing.schemas.requests import EInvoiceCancelRequest, InvoiceCreate, InvoiceUpdate
from gst_invoicing.schemas.responses import EInvoiceStatus, InvoiceDetail
from gst_invoicing.services import invoices as invoice_service
from gst_invoicing.services.einvoice import EInvoiceService, GstApiClient, get_gst_client
from gst_invoicing.services.masters import get_gst_settings
from gst_invoicing.services.pdf import render_invoice_pdf

invoice_router = APIRouter(prefix="/api/invoices", tags=["invoices"])


# ── Invoices ──────────────────────────────────────────────────────────────────


@invoice_router.get("")
def list_invoices(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=500),
    search: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.SALES, Action.READ)),
):
    return invoice_service.list_invoices(session, page, limit, search)


@invoice_router.post("", status_code=status.HTTP_201_CREATED, response_model=InvoiceDetail)
def create_invoice(
    body: InvoiceCreate,
    session: Session = Depends(get_session),
    client: GstApiClient = Depends(get_gst_client),
    user: CurrentUser = Depends(require(Module.SALES, Action.WRITE)),
):
    invoice = invoice_service.create_invoice(session, body, user_id=user.id)

    einvoice_error = None
    if body.submit_to_gst:
        try:
            invoice = EInvoiceService(session, client, user_id=user.id).generate(invoice.id)
        except (ExternalServiceError, ValidationError) as exc:
            # The invoice itself is saved; the submission outcome travels with it
            logger.warning(f"Invoice {invoice.invoice_no} saved but e-invoice failed: {exc.message}")
            session.refresh(invoice)
            einvoice_error = {"error": exc.message, **exc.detail}

    detail = invoice_service.invoice_detail(session, invoice)
    detail.einvoice_error = einvoice_error
    return detail


@invoice_router.put("", response_model=InvoiceDetail)
def update_invoice(
    body: InvoiceUpdate,
    id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.SALES, Action.WRITE)),
):
    invoice = invoice_service.update_invoice(session, id, body)
    return invoice_service.invoice_detail(session, invoice)


@invoice_router.delete("")
def delete_invoice(
    id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.SALES, Action.DELETE)),
):
    invoice_service.delete_invoice(session, id)
    return {"success": True}


@invoice_router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(
    invoice_id: int,
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.SALES, Action.READ)),
):
    invoice = invoice_service.get_invoice_or_404(session, invoice_id)
    return invoice_service.invoice_detail(session, invoice)


# ── PDF ───────────────────────────────────────────────────────────────────────


@invoice_router.get("/{invoice_id}/pdf")
def invoice_pdf(
    invoice_id: int,
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.SALES, Action.READ)),
):
    invoice = invoice_service.get_invoice_or_404(session, invoice_id)
    lines = invoice_service.get_invoice_lines(session, invoice.id)
    customer = session.get(Customer, invoice.customer_id)
    if customer is None:
        raise NotFound("Customer not found")
    pdf = render_invoice_pdf(invoice, lines, customer, get_gst_settings(session))
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="Invoice-{invoice.invoice_no}.pdf"'},
    )


# ── E-invoice ─────────────────────────────────────────────────────────────────


@invoice_router.post("/{invoice_id}/einvoice", response_model=EInvoiceStatus)
def generate_einvoice(
    invoice_id: int,
    session: Session = Depends(get_session),
    client: GstApiClient = Depends(get_gst_client),
    user: CurrentUser = Depends(require(Module.SALES, Action.WRITE)),
):
    service = EInvoiceService(session, client, user_id=user.id)
    service.generate(invoice_id)
    return service.status(invoice_id)


@invoice_router.delete("/{invoice_id}/einvoice", response_model=EInvoiceStatus)
def cancel_einvoice(
    invoice_id: int,
    body: Optional[EInvoiceCancelRequest] = Body(default=None),
    session: Session = Depends(get_session),
    client: GstApiClient = Depends(get_gst_client),
    user: CurrentUser = Depends(require(Module.SALES, Action.WRITE)),
):
    body = body or EInvoiceCancelRequest()
    service = EInvoiceService(session, client, user_id=user.id)
    service.cancel(invoice_id, body.reason, body.remarks)
    return service.status(invoice_id)


@invoice_router.get("/{invoice_id}/einvoice", response_model=EInvoiceStatus)
def einvoice_status(
    invoice_id: int,
    session: Session = Depends(get_session),
    client: GstApiClient = Depends(get_gst_client),
    user: CurrentUser = Depends(require(Module.SALES, Action.READ)),
):
    return EInvoiceService(session, client).status(invoice_id)
