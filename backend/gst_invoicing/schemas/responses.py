"""Pydantic response schemas for API endpoints."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    db: str
    version: str = "1.0.0"
    cache: str


class Pagination(BaseModel):
    currentPage: int
    totalPages: int
    totalItems: int
    itemsPerPage: int


class ListResponse(BaseModel):
    data: list[dict[str, Any]]
    pagination: Pagination


# ── Auth ──────────────────────────────────────────────────────────────────────


class UserRead(BaseModel):
    id: int
    username: str
    display_name: Optional[str]
    email: Optional[str]
    role: str
    status: int
    capabilities: list[str] = []

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# ── Invoices ──────────────────────────────────────────────────────────────────


class InvoiceLineRead(BaseModel):
    id: int
    serial_no: int
    prod_id: Optional[int]
    description: Optional[str]
    hsn_sac_code: str
    is_service: bool
    unit: str
    qty: Decimal
    rate: Decimal
    gst_rate: Decimal
    taxable_amt: Decimal
    cgst_rate: Decimal
    cgst_amt: Decimal
    sgst_rate: Decimal
    sgst_amt: Decimal
    igst_rate: Decimal
    igst_amt: Decimal
    total_amount: Decimal

    class Config:
        from_attributes = True


class InvoiceRead(BaseModel):
    id: int
    invoice_no: str
    invoice_date: date
    customer_id: int
    customer_name: Optional[str] = None
    customer_gstin: Optional[str] = None
    seller_state_code: str
    place_of_supply: str
    supply_type: str
    transaction_type: str
    reverse_charge: str
    remarks: Optional[str]
    total_qty: Decimal
    total_taxable_amt: Decimal
    total_cgst_amt: Decimal
    total_sgst_amt: Decimal
    total_igst_amt: Decimal
    grand_total_amt: Decimal
    status: str
    irn_no: Optional[str]
    ack_no: Optional[str]
    ack_date: Optional[datetime]
    error_code: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InvoiceDetail(InvoiceRead):
    delivery_note: Optional[str]
    mode_terms_payment: Optional[str]
    buyer_order_no: Optional[str]
    dispatch_through: Optional[str]
    dispatch_destination: Optional[str]
    signed_qr_code: Optional[str]
    ewb_no: Optional[str]
    ewb_date: Optional[str]
    ewb_valid_till: Optional[str]
    generated_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancel_reason: Optional[str]
    amount_in_words: Optional[str] = None
    items: list[InvoiceLineRead] = []
    einvoice_error: Optional[dict[str, Any]] = None


# ── E-invoice ─────────────────────────────────────────────────────────────────


class TransactionLogRead(BaseModel):
    id: int
    action: str
    status: str
    irn: Optional[str]
    error_code: Optional[str]
    error_message: Optional[str]
    user_id: Optional[int]
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class EInvoiceStatus(BaseModel):
    invoice_id: int
    invoice_no: str
    status: str
    irn_no: Optional[str]
    ack_no: Optional[str]
    ack_date: Optional[datetime]
    signed_qr_code: Optional[str]
    ewb_no: Optional[str]
    ewb_date: Optional[str]
    ewb_valid_till: Optional[str]
    error_code: Optional[str]
    error_message: Optional[str]
    generated_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    logs: list[TransactionLogRead] = []
