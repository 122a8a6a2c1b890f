"""SQLModel models for master data (parties, godowns, items, HSN codes, users, settings)."""
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from sqlmodel import SQLModel, Field


class Customer(SQLModel, table=True):
    """Buyer. ``state_code`` drives the CGST/SGST vs IGST decision."""

    __tablename__ = "master_customer"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_name: Optional[str] = Field(default=None, index=True)
    name: str = Field(index=True)
    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    mobile: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    state_name: Optional[str] = None
    state_code: Optional[str] = None
    pin_code: Optional[str] = None
    gstin: Optional[str] = Field(default=None, index=True)
    pan: Optional[str] = None
    customer_type: Optional[str] = None  # B2B, B2C …
    is_sez: bool = Field(default=False)
    is_export: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Vendor(SQLModel, table=True):
    __tablename__ = "master_vendor"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    contact_person: Optional[str] = None
    contact_no: Optional[str] = None
    address: Optional[str] = None
    state_name: Optional[str] = None
    state_code: Optional[str] = None
    gstin: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Godown(SQLModel, table=True):
    """Warehouse / storage location."""

    __tablename__ = "master_godown"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    address: Optional[str] = None
    contact_no: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Unit(SQLModel, table=True):
    """Unit of measure (NOS, KGS, MTR …)."""

    __tablename__ = "master_raw_material_unit"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class HsnSacCode(SQLModel, table=True):
    """HSN/SAC classification and its GST rate (%). Rate is not range-checked here."""

    __tablename__ = "master_hsn_sac_code"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True)
    gst_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class RawMaterial(SQLModel, table=True):
    __tablename__ = "master_raw_material"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    unit_id: Optional[int] = Field(default=None, foreign_key="master_raw_material_unit.id")
    hsn_sac_id: Optional[int] = Field(default=None, foreign_key="master_hsn_sac_code.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class FinishedProduct(SQLModel, table=True):
    __tablename__ = "master_finished_product"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    unit_id: Optional[int] = Field(default=None, foreign_key="master_raw_material_unit.id")
    hsn_sac_id: Optional[int] = Field(default=None, foreign_key="master_hsn_sac_code.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class User(SQLModel, table=True):
    """Application user. ``status == 1`` means active."""

    __tablename__ = "master_user"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: str = Field(default="user")  # admin, manager, user
    address: Optional[str] = None
    contact_no: Optional[str] = None
    designation: Optional[str] = None
    pan_no: Optional[str] = None
    date_of_join: Optional[date] = None
    status: int = Field(default=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Department(SQLModel, table=True):
    """A department name doubles as the module it grants (SALES, INVENTORY …)."""

    __tablename__ = "master_user_department"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class DepartmentAccess(SQLModel, table=True):
    """Explicit department grant for a user."""

    __tablename__ = "master_user_department_access"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="master_user.id", index=True)
    department_id: int = Field(foreign_key="master_user_department.id")


class GstSetting(SQLModel, table=True):
    """
    Key/value company settings used by the e-invoice payload
    (company_gstin, company_legal_name, company_state_code …).
    """

    __tablename__ = "gst_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    setting_key: str = Field(index=True, unique=True)
    setting_value: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
