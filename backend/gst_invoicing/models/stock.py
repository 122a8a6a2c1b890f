"""SQLModel models for the godown stock ledger."""
from typing import Optional
from datetime import datetime
from decimal import Decimal
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class GodownStock(SQLModel, table=True):
    """Current balance of one raw material in one godown."""

    __tablename__ = "godown_stock"
    __table_args__ = (
        UniqueConstraint("godown_id", "raw_material_id", name="uq_godown_material"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    godown_id: int = Field(foreign_key="master_godown.id", index=True)
    raw_material_id: int = Field(foreign_key="master_raw_material.id", index=True)
    quantity: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=3)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class StockMovement(SQLModel, table=True):
    """
    Append-only record of every ledger mutation.

    ``quantity`` is signed: positive moved stock into the godown, negative out of it.
    """

    __tablename__ = "stock_movement"

    id: Optional[int] = Field(default=None, primary_key=True)
    # purchase, stock_out, return, transfer_in, adjustment, manual, damage, set
    movement_type: str = Field(index=True)
    godown_id: int = Field(foreign_key="master_godown.id", index=True)
    raw_material_id: int = Field(foreign_key="master_raw_material.id", index=True)
    quantity: Decimal = Field(max_digits=14, decimal_places=3)
    balance_after: Decimal = Field(max_digits=14, decimal_places=3)
    reference_no: Optional[str] = Field(default=None, index=True)
    counterparty: Optional[str] = None  # vendor, assignee or other godown
    remarks: Optional[str] = None
    user_id: Optional[int] = Field(default=None, foreign_key="master_user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
