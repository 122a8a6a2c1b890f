"""
Godown stock endpoints.

  GET    /api/stock
  POST   /api/stock
  PUT    /api/stock?id=
  DELETE /api/stock?id=
  GET    /api/stock/movements
  POST   /api/stock/movements
  GET    /api/stock/export
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from gst_invoicing.core.database import get_session
from gst_invoicing.core.errors import ValidationError
from gst_invoicing.core.security import Action, CurrentUser, Module, require
from gst_invoicing.schemas.requests import StockMovementCreate, StockOperation, StockQuantityUpdate
from gst_invoicing.services import stock as stock_service
from gst_invoicing.services.stock import StockLedger

stock_router = APIRouter(prefix="/api/stock", tags=["stock"])


# ── Balances ──────────────────────────────────────────────────────────────────


@stock_router.get("")
def list_stock(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=500),
    godown_id: Optional[int] = Query(default=None),
    material_id: Optional[int] = Query(default=None),
    search: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.INVENTORY, Action.READ)),
):
    return stock_service.list_stock(session, page, limit, godown_id, material_id, search)


@stock_router.post("", status_code=status.HTTP_201_CREATED)
def change_stock(
    body: StockOperation,
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.INVENTORY, Action.WRITE)),
):
    if not body.godown_id or not body.raw_material_id or body.quantity is None:
        raise ValidationError("Missing required fields")

    ledger = StockLedger(session, user_id=user.id)
    if body.operation == "add":
        row = ledger.add(body.godown_id, body.raw_material_id, body.quantity)
    elif body.operation == "subtract":
        row = ledger.subtract(body.godown_id, body.raw_material_id, body.quantity)
    else:
        row = ledger.set(body.godown_id, body.raw_material_id, body.quantity)

    data = stock_service.get_stock_row(session, row.id)
    data["operation"] = body.operation
    return {"success": True, "data": data}


@stock_router.put("")
def set_stock(
    body: StockQuantityUpdate,
    id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.INVENTORY, Action.WRITE)),
):
    if not id:
        raise ValidationError("Stock ID is required")
    if body.quantity is None or body.quantity < 0:
        raise ValidationError("Valid quantity is required")
    row = StockLedger(session, user_id=user.id).set_by_id(id, body.quantity)
    return {"success": True, "data": stock_service.get_stock_row(session, row.id)}


@stock_router.delete("")
def delete_stock(
    id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.INVENTORY, Action.DELETE)),
):
    if not id:
        raise ValidationError("Stock ID is required")
    StockLedger(session, user_id=user.id).delete(id)
    return {"success": True}


# ── Movements ─────────────────────────────────────────────────────────────────


@stock_router.get("/movements")
def list_movements(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=500),
    material_id: Optional[int] = Query(default=None),
    godown_id: Optional[int] = Query(default=None),
    type: Optional[str] = Query(default=None, description="in, out, return or transfer"),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.INVENTORY, Action.READ)),
):
    return stock_service.list_movements(session, page, limit, material_id, godown_id, type)


@stock_router.post("/movements", status_code=status.HTTP_201_CREATED)
def create_movement(
    body: StockMovementCreate,
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.INVENTORY, Action.WRITE)),
):
    if not body.movement_type or not body.raw_material_id or body.quantity is None:
        raise ValidationError("Missing required fields")

    details = StockLedger(session, user_id=user.id).record_movement(
        body.movement_type,
        body.raw_material_id,
        body.quantity,
        from_godown_id=body.from_godown_id,
        to_godown_id=body.to_godown_id,
        remarks=body.remarks,
        reference_no=body.reference_no,
        counterparty=body.counterparty,
    )
    return {
        "success": True,
        "message": f"{body.movement_type} completed successfully",
        "details": details,
    }


# ── Export ────────────────────────────────────────────────────────────────────


@stock_router.get("/export")
def export_stock(
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.INVENTORY, Action.READ)),
):
    buf = stock_service.export_stock_workbook(session)
    filename = f"Stock-{date.today().isoformat()}.xlsx"
    return StreamingResponse(
        buf,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
