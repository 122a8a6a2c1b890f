from gst_invoicing.models.master import (
    Customer,
    Department,
    DepartmentAccess,
    FinishedProduct,
    Godown,
    GstSetting,
    HsnSacCode,
    RawMaterial,
    Unit,
    User,
    Vendor,
)
from gst_invoicing.models.stock import GodownStock, StockMovement
from gst_invoicing.models.invoice import (
    EInvoiceSequence,
    EInvoiceTransactionLog,
    InvoiceStatus,
    LogStatus,
    TaxInvoice,
    TaxInvoiceDetail,
)

__all__ = [
    "Customer",
    "Department",
    "DepartmentAccess",
    "FinishedProduct",
    "Godown",
    "GstSetting",
    "HsnSacCode",
    "RawMaterial",
    "Unit",
    "User",
    "Vendor",
    "GodownStock",
    "StockMovement",
    "EInvoiceSequence",
    "EInvoiceTransactionLog",
    "InvoiceStatus",
    "LogStatus",
    "TaxInvoice",
    "TaxInvoiceDetail",
]
