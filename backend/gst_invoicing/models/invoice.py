"""SQLModel models for tax invoices, their lines, and the e-invoice audit trail."""
from enum import Enum
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from sqlmodel import SQLModel, Field


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    GENERATED = "generated"
    CANCELLED = "cancelled"
    ERROR = "error"


class LogStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TaxInvoice(SQLModel, table=True):
    """Invoice header with computed grand totals and e-invoice (IRN) fields."""

    __tablename__ = "tax_invoice"

    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_no: str = Field(index=True, unique=True)
    invoice_date: date = Field(index=True)
    customer_id: int = Field(foreign_key="master_customer.id", index=True)

    # Tax jurisdiction
    seller_state_code: str
    place_of_supply: str  # buyer state code used for the interstate test
    supply_type: str = Field(default="B2B")
    transaction_type: str = Field(default="Regular")
    reverse_charge: str = Field(default="N")

    # Dispatch / reference details printed on the invoice
    delivery_note: Optional[str] = None
    mode_terms_payment: Optional[str] = None
    buyer_order_no: Optional[str] = None
    dispatch_through: Optional[str] = None
    dispatch_destination: Optional[str] = None
    remarks: Optional[str] = None

    # Grand totals
    total_qty: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=3)
    total_taxable_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    total_cgst_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    total_sgst_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    total_igst_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    grand_total_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)

    # E-invoice
    status: str = Field(default=InvoiceStatus.DRAFT.value, index=True)
    irn_no: Optional[str] = Field(default=None, index=True)
    ack_no: Optional[str] = None
    ack_date: Optional[datetime] = None
    signed_qr_code: Optional[str] = None
    signed_invoice: Optional[str] = None
    ewb_no: Optional[str] = None
    ewb_date: Optional[str] = None
    ewb_valid_till: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    generated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    created_by: Optional[int] = Field(default=None, foreign_key="master_user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class TaxInvoiceDetail(SQLModel, table=True):
    """One invoice line with its own tax split."""

    __tablename__ = "tax_invoice_details"

    id: Optional[int] = Field(default=None, primary_key=True)
    tax_invoice_id: int = Field(foreign_key="tax_invoice.id", index=True)
    serial_no: int = Field(default=1)
    prod_id: Optional[int] = Field(default=None, foreign_key="master_finished_product.id")
    description: Optional[str] = None
    hsn_sac_code: str
    is_service: bool = Field(default=False)
    unit: str = Field(default="NOS")

    qty: Decimal = Field(max_digits=14, decimal_places=3)
    rate: Decimal = Field(max_digits=14, decimal_places=2)
    gst_rate: Decimal = Field(max_digits=5, decimal_places=2)
    taxable_amt: Decimal = Field(max_digits=14, decimal_places=2)
    cgst_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)
    cgst_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    sgst_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)
    sgst_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    igst_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)
    igst_amt: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    total_amount: Decimal = Field(max_digits=14, decimal_places=2)


class EInvoiceTransactionLog(SQLModel, table=True):
    """
    One row per generate/cancel attempt. Written as ``pending`` before the
    provider call and moved to a terminal status by the same request only.
    """

    __tablename__ = "e_invoice_transaction_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    tax_invoice_id: int = Field(foreign_key="tax_invoice.id", index=True)
    action: str  # generate, cancel
    status: str = Field(default=LogStatus.PENDING.value)
    irn: Optional[str] = None
    request_payload: Optional[str] = None  # JSON text
    response_payload: Optional[str] = None  # JSON text
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    user_id: Optional[int] = Field(default=None, foreign_key="master_user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None


class EInvoiceSequence(SQLModel, table=True):
    """Invoice-number counter, one row per financial year (e.g. "2024-25")."""

    __tablename__ = "e_invoice_sequence"

    id: Optional[int] = Field(default=None, primary_key=True)
    financial_year: str = Field(index=True, unique=True)
    prefix: str = Field(default="INV-")
    current_number: int = Field(default=0)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
