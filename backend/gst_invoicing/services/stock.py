"""
Godown stock ledger.

One ``godown_stock`` row per (godown, raw material). Every public operation
runs in a single transaction: the balance rows are read ``FOR UPDATE``,
changed, a ``stock_movement`` row is appended for each balance touched, and
the whole unit commits or rolls back together. Balances never go negative
through this module.
"""
from __future__ import annotations

import io
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import openpyxl
from loguru import logger
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlmodel import Session, col, or_, select

from gst_invoicing.core.cache import get_cache, invalidate_on_commit
from gst_invoicing.core.config import settings
from gst_invoicing.core.errors import InsufficientStock, NotFound, ValidationError
from gst_invoicing.models.master import Godown, HsnSacCode, RawMaterial, Unit
from gst_invoicing.models.stock import GodownStock, StockMovement
from gst_invoicing.services.paging import paginate
from gst_invoicing.services.tax import to_decimal

CACHE_DOMAIN = "stock"

# Movement types accepted by POST /api/stock/movements
MOVEMENT_TYPES = ("purchase", "stock_out", "return", "transfer", "adjustment", "manual", "damage")

# GET /api/stock/movements?type= groups
MOVEMENT_FILTERS: dict[str, tuple[str, ...]] = {
    "in": ("purchase", "transfer_in", "adjustment", "manual"),
    "out": ("stock_out", "damage"),
    "return": ("return",),
    "transfer": ("transfer_in",),
}

TRANSFER_PREFIX = "TRF-"


def _positive(quantity: Any) -> Decimal:
    qty = to_decimal(quantity, "quantity")
    if qty <= 0:
        raise ValidationError("Quantity must be greater than 0")
    return qty


class StockLedger:
    """Balance mutations for one request. ``user_id`` is stamped on every movement."""

    def __init__(self, session: Session, user_id: Optional[int] = None):
        self.session = session
        self.user_id = user_id

    # ── Internals ─────────────────────────────────────────────────────────────

    @contextmanager
    def _transaction(self):
        try:
            yield
            invalidate_on_commit(self.session, CACHE_DOMAIN)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _check_refs(self, godown_id: int, material_id: int) -> None:
        if self.session.get(Godown, godown_id) is None:
            raise NotFound("Godown not found")
        if self.session.get(RawMaterial, material_id) is None:
            raise NotFound("Raw material not found")

    def _locked_row(self, godown_id: int, material_id: int) -> Optional[GodownStock]:
        stmt = (
            select(GodownStock)
            .where(
                GodownStock.godown_id == godown_id,
                GodownStock.raw_material_id == material_id,
            )
            .with_for_update()
        )
        return self.session.exec(stmt).first()

    def _write(
        self,
        row: Optional[GodownStock],
        godown_id: int,
        material_id: int,
        new_quantity: Decimal,
    ) -> GodownStock:
        now = datetime.utcnow()
        if row is None:
            row = GodownStock(
                godown_id=godown_id, raw_material_id=material_id, quantity=new_quantity
            )
        else:
            row.quantity = new_quantity
            row.updated_at = now
        self.session.add(row)
        return row

    def _record(
        self,
        movement_type: str,
        godown_id: int,
        material_id: int,
        delta: Decimal,
        balance: Decimal,
        reference_no: Optional[str] = None,
        counterparty: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> StockMovement:
        movement = StockMovement(
            movement_type=movement_type,
            godown_id=godown_id,
            raw_material_id=material_id,
            quantity=delta,
            balance_after=balance,
            reference_no=reference_no,
            counterparty=counterparty,
            remarks=remarks,
            user_id=self.user_id,
        )
        self.session.add(movement)
        return movement

    def _increase(self, godown_id, material_id, qty, movement_type, **movement):
        row = self._locked_row(godown_id, material_id)
        current = row.quantity if row else Decimal("0")
        row = self._write(row, godown_id, material_id, current + qty)
        moved = self._record(movement_type, godown_id, material_id, qty, row.quantity, **movement)
        return row, moved

    def _decrease(self, godown_id, material_id, qty, movement_type, message, **movement):
        row = self._locked_row(godown_id, material_id)
        if row is None or row.quantity < qty:
            available = row.quantity if row else Decimal("0")
            logger.warning(
                f"Rejected {movement_type} of {qty} for material {material_id} "
                f"in godown {godown_id}: only {available} available"
            )
            raise InsufficientStock(
                message, {"available": str(available), "requested": str(qty)}
            )
        row = self._write(row, godown_id, material_id, row.quantity - qty)
        moved = self._record(movement_type, godown_id, material_id, -qty, row.quantity, **movement)
        return row, moved

    # ── Operations ────────────────────────────────────────────────────────────

    def add(
        self,
        godown_id: int,
        material_id: int,
        quantity: Any,
        movement_type: str = "manual",
        **movement,
    ) -> GodownStock:
        qty = _positive(quantity)
        with self._transaction():
            self._check_refs(godown_id, material_id)
            row, _ = self._increase(godown_id, material_id, qty, movement_type, **movement)
        logger.info(f"Stock +{qty} material {material_id} @ godown {godown_id} → {row.quantity}")
        return row

    def subtract(
        self,
        godown_id: int,
        material_id: int,
        quantity: Any,
        movement_type: str = "stock_out",
        message: str = "Insufficient stock",
        **movement,
    ) -> GodownStock:
        qty = _positive(quantity)
        with self._transaction():
            self._check_refs(godown_id, material_id)
            row, _ = self._decrease(godown_id, material_id, qty, movement_type, message, **movement)
        logger.info(f"Stock -{qty} material {material_id} @ godown {godown_id} → {row.quantity}")
        return row

    def set(self, godown_id: int, material_id: int, quantity: Any, **movement) -> GodownStock:
        qty = to_decimal(quantity, "quantity")
        if qty < 0:
            raise ValidationError("Valid quantity is required")
        with self._transaction():
            self._check_refs(godown_id, material_id)
            row = self._locked_row(godown_id, material_id)
            previous = row.quantity if row else Decimal("0")
            row = self._write(row, godown_id, material_id, qty)
            self._record("set", godown_id, material_id, qty - previous, qty, **movement)
        logger.info(f"Stock set material {material_id} @ godown {godown_id} → {qty}")
        return row

    def set_by_id(self, stock_id: int, quantity: Any) -> GodownStock:
        row = self.session.get(GodownStock, stock_id)
        if row is None:
            raise NotFound("Stock record not found")
        return self.set(row.godown_id, row.raw_material_id, quantity)

    def delete(self, stock_id: int) -> None:
        with self._transaction():
            row = self.session.get(GodownStock, stock_id)
            if row is None:
                raise NotFound("Stock record not found")
            if row.quantity:
                self._record(
                    "set", row.godown_id, row.raw_material_id, -row.quantity, Decimal("0"),
                    remarks="Stock entry deleted",
                )
            self.session.delete(row)
        logger.info(f"Deleted stock row {stock_id}")

    def transfer(
        self,
        from_godown_id: int,
        to_godown_id: int,
        material_id: int,
        quantity: Any,
        remarks: Optional[str] = None,
        reference_no: Optional[str] = None,
    ) -> tuple[GodownStock, GodownStock, str]:
        """
        Move ``quantity`` between godowns in one transaction.

        Writes a ``stock_out`` movement at the source and a ``transfer_in``
        movement at the destination sharing one ``TRF-`` reference.
        """
        if not from_godown_id or not to_godown_id:
            raise ValidationError("Both source and destination godowns required for transfer")
        if from_godown_id == to_godown_id:
            raise ValidationError("Source and destination godowns cannot be the same")
        qty = _positive(quantity)

        with self._transaction():
            self._check_refs(from_godown_id, material_id)
            self._check_refs(to_godown_id, material_id)
            # Lock both rows in id order so opposite transfers cannot deadlock
            for gid in sorted((from_godown_id, to_godown_id)):
                self._locked_row(gid, material_id)

            source, out_movement = self._decrease(
                from_godown_id, material_id, qty, "stock_out",
                "Insufficient stock in source godown",
                counterparty=f"Godown {to_godown_id}",
                remarks=remarks or "Stock transfer",
            )
            if reference_no:
                reference = reference_no
            else:
                self.session.flush()
                reference = f"{TRANSFER_PREFIX}{out_movement.id}"
            out_movement.reference_no = reference

            dest, _ = self._increase(
                to_godown_id, material_id, qty, "transfer_in",
                reference_no=reference,
                counterparty=f"Godown {from_godown_id}",
                remarks=remarks or "Stock transfer",
            )
        logger.info(
            f"Transferred {qty} of material {material_id} "
            f"godown {from_godown_id} → {to_godown_id} ({reference})"
        )
        return source, dest, reference

    def record_movement(
        self,
        movement_type: str,
        raw_material_id: int,
        quantity: Any,
        from_godown_id: Optional[int] = None,
        to_godown_id: Optional[int] = None,
        remarks: Optional[str] = None,
        reference_no: Optional[str] = None,
        counterparty: Optional[str] = None,
    ) -> dict:
        """Dispatch one POST /api/stock/movements request onto the ledger."""
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Invalid movement type: {movement_type}")
        if not raw_material_id:
            raise ValidationError("Missing required fields")

        extra = {"remarks": remarks, "reference_no": reference_no, "counterparty": counterparty}

        if movement_type == "transfer":
            _, _, reference = self.transfer(
                from_godown_id, to_godown_id, raw_material_id, quantity,
                remarks=remarks, reference_no=reference_no,
            )
            extra["reference_no"] = reference
            row = None
        elif movement_type == "stock_out":
            if not from_godown_id:
                raise ValidationError("Godown ID is required")
            row = self.subtract(from_godown_id, raw_material_id, quantity, "stock_out", **extra)
        elif movement_type == "damage":
            godown_id = from_godown_id or to_godown_id
            if not godown_id:
                raise ValidationError("Godown ID is required")
            if self._locked_row(godown_id, raw_material_id) is None:
                raise ValidationError("Cannot reduce stock for non-existent item")
            row = self.subtract(
                godown_id, raw_material_id, quantity, "damage",
                message="Adjustment would result in negative stock", **extra,
            )
        else:
            # purchase, return, adjustment, manual all put stock into a godown
            godown_id = to_godown_id if movement_type in ("purchase", "return") else (
                from_godown_id or to_godown_id
            )
            if not godown_id:
                raise ValidationError("Godown ID is required")
            row = self.add(godown_id, raw_material_id, quantity, movement_type, **extra)

        return {
            "movement_type": movement_type,
            "raw_material_id": raw_material_id,
            "quantity": str(to_decimal(quantity, "quantity")),
            "from_godown_id": from_godown_id,
            "to_godown_id": to_godown_id,
            "reference_no": extra["reference_no"],
            "balance": str(row.quantity) if row is not None else None,
        }


# ── Queries ───────────────────────────────────────────────────────────────────


def _stock_query():
    return (
        select(GodownStock, Godown, RawMaterial, Unit, HsnSacCode)
        .join(Godown, Godown.id == GodownStock.godown_id)
        .join(RawMaterial, RawMaterial.id == GodownStock.raw_material_id)
        .outerjoin(Unit, Unit.id == RawMaterial.unit_id)
        .outerjoin(HsnSacCode, HsnSacCode.id == RawMaterial.hsn_sac_id)
    )


def _stock_dict(stock: GodownStock, godown: Godown, material: RawMaterial,
                unit: Optional[Unit], hsn: Optional[HsnSacCode]) -> dict:
    return {
        "id": stock.id,
        "godown_id": stock.godown_id,
        "raw_material_id": stock.raw_material_id,
        "quantity": str(stock.quantity),
        "godown_name": godown.name,
        "godown_address": godown.address,
        "raw_material_name": material.name,
        "raw_material_desc": material.description,
        "unit_name": unit.name if unit else None,
        "hsn_sac_code": hsn.code if hsn else None,
        "gst_rate": str(hsn.gst_rate) if hsn else None,
        "updated_at": stock.updated_at.isoformat() if stock.updated_at else None,
    }


def get_stock_row(session: Session, stock_id: int) -> dict:
    found = session.exec(_stock_query().where(GodownStock.id == stock_id)).first()
    if found is None:
        raise NotFound("Stock record not found")
    return _stock_dict(*found)


def list_stock(
    session: Session,
    page: int = 1,
    limit: int = 10,
    godown_id: Optional[int] = None,
    material_id: Optional[int] = None,
    search: Optional[str] = None,
) -> dict:
    cache = get_cache()
    key = cache.make_key(
        CACHE_DOMAIN, "list", page, limit, godown_id or "", material_id or "", search or ""
    )
    cached = cache.get(key)
    if cached is not None:
        return cached

    stmt = _stock_query()
    if godown_id:
        stmt = stmt.where(GodownStock.godown_id == godown_id)
    if material_id:
        stmt = stmt.where(GodownStock.raw_material_id == material_id)
    if search:
        stmt = stmt.where(
            or_(
                col(RawMaterial.name).contains(search),
                col(Godown.name).contains(search),
            )
        )
    stmt = stmt.order_by(col(Godown.name), col(RawMaterial.name))
    rows, pagination = paginate(session, stmt, page, limit)
    result = {"data": [_stock_dict(*r) for r in rows], "pagination": pagination}
    cache.set(key, result, ttl=settings.CACHE_TTL_STOCK)
    return result


def list_movements(
    session: Session,
    page: int = 1,
    limit: int = 10,
    material_id: Optional[int] = None,
    godown_id: Optional[int] = None,
    movement_type: Optional[str] = None,
) -> dict:
    stmt = (
        select(StockMovement, Godown, RawMaterial)
        .join(Godown, Godown.id == StockMovement.godown_id)
        .join(RawMaterial, RawMaterial.id == StockMovement.raw_material_id)
    )
    if material_id:
        stmt = stmt.where(StockMovement.raw_material_id == material_id)
    if godown_id:
        stmt = stmt.where(StockMovement.godown_id == godown_id)
    if movement_type:
        if movement_type not in MOVEMENT_FILTERS:
            raise ValidationError(f"Invalid movement filter: {movement_type}")
        types = MOVEMENT_FILTERS[movement_type]
        if movement_type == "transfer":
            stmt = stmt.where(
                or_(
                    col(StockMovement.movement_type).in_(types),
                    col(StockMovement.reference_no).startswith(TRANSFER_PREFIX),
                )
            )
        else:
            stmt = stmt.where(col(StockMovement.movement_type).in_(types))
    stmt = stmt.order_by(col(StockMovement.created_at).desc(), col(StockMovement.id).desc())

    rows, pagination = paginate(session, stmt, page, limit)
    data = [
        {
            "id": m.id,
            "movement_type": m.movement_type,
            "godown_id": m.godown_id,
            "godown_name": g.name,
            "raw_material_id": m.raw_material_id,
            "raw_material_name": rm.name,
            "quantity": str(m.quantity),
            "balance_after": str(m.balance_after),
            "reference_no": m.reference_no,
            "counterparty": m.counterparty,
            "remarks": m.remarks,
            "user_id": m.user_id,
            "created_at": m.created_at.isoformat(),
        }
        for m, g, rm in rows
    ]
    return {"data": data, "pagination": pagination}


def export_stock_workbook(session: Session) -> io.BytesIO:
    """Current balances as an xlsx workbook, one row per godown/material."""
    rows = session.exec(
        _stock_query().order_by(col(Godown.name), col(RawMaterial.name))
    ).all()

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Stock"

    header_fill = PatternFill(start_color="1F3864", end_color="1F3864", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=10)
    center = Alignment(horizontal="center", vertical="center")

    headers = ["Godown", "Raw Material", "Unit", "HSN/SAC", "GST %", "Quantity"]
    for col_idx, h in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_idx, value=h)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = center

    for row_idx, (stock, godown, material, unit, hsn) in enumerate(rows, 2):
        values = [
            godown.name,
            material.name,
            unit.name if unit else "",
            hsn.code if hsn else "",
            float(hsn.gst_rate) if hsn else "",
            float(stock.quantity),
        ]
        for col_idx, val in enumerate(values, 1):
            ws.cell(row=row_idx, column=col_idx, value=val)

    for col_idx in range(1, len(headers) + 1):
        letter = get_column_letter(col_idx)
        max_len = max(
            len(str(ws.cell(row=r, column=col_idx).value or ""))
            for r in range(1, len(rows) + 2)
        )
        ws.column_dimensions[letter].width = min(max_len + 4, 45)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf
