"""Pydantic request bodies."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str
    password: str


# ── Stock ─────────────────────────────────────────────────────────────────────


class StockOperation(BaseModel):
    godown_id: Optional[int] = None
    raw_material_id: Optional[int] = None
    quantity: Optional[Decimal] = None
    operation: Literal["add", "subtract", "set"] = "add"


class StockQuantityUpdate(BaseModel):
    quantity: Optional[Decimal] = None


class StockMovementCreate(BaseModel):
    movement_type: Optional[str] = None
    raw_material_id: Optional[int] = None
    from_godown_id: Optional[int] = None
    to_godown_id: Optional[int] = None
    quantity: Optional[Decimal] = None
    remarks: Optional[str] = None
    reference_no: Optional[str] = None
    counterparty: Optional[str] = None


# ── Invoices ──────────────────────────────────────────────────────────────────


class InvoiceItemIn(BaseModel):
    prod_id: Optional[int] = None
    description: Optional[str] = None
    hsn_code: Optional[str] = None
    quantity: Decimal
    rate: Decimal
    gst_rate: Optional[Decimal] = None
    unit: str = "NOS"
    is_service: bool = False


class InvoiceCreate(BaseModel):
    customer_id: Optional[int] = None
    invoice_date: Optional[date] = None
    place_of_supply: Optional[str] = None
    supply_type: str = "B2B"
    transaction_type: str = "Regular"
    reverse_charge: str = "N"
    delivery_note: Optional[str] = None
    mode_terms_payment: Optional[str] = None
    buyer_order_no: Optional[str] = None
    dispatch_through: Optional[str] = None
    dispatch_destination: Optional[str] = None
    remarks: Optional[str] = None
    items: list[InvoiceItemIn] = Field(default_factory=list)
    submit_to_gst: bool = False


class InvoiceUpdate(BaseModel):
    customer_id: Optional[int] = None
    invoice_date: Optional[date] = None
    place_of_supply: Optional[str] = None
    supply_type: Optional[str] = None
    transaction_type: Optional[str] = None
    reverse_charge: Optional[str] = None
    delivery_note: Optional[str] = None
    mode_terms_payment: Optional[str] = None
    buyer_order_no: Optional[str] = None
    dispatch_through: Optional[str] = None
    dispatch_destination: Optional[str] = None
    remarks: Optional[str] = None
    items: Optional[list[InvoiceItemIn]] = None


class EInvoiceCancelRequest(BaseModel):
    # NIC cancel reason codes: 1 duplicate, 2 data entry mistake, 3 order cancelled, 4 others
    reason: str = "1"
    remarks: str = "Invoice cancelled"
