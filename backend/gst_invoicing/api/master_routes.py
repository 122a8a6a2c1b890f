"""
Master-data endpoints, one set shared by every master type.

  GET    /api/masters/{type}?page&limit&search
  GET    /api/masters/{type}/{id}
  POST   /api/masters/{type}
  PUT    /api/masters/{type}?id=
  DELETE /api/masters/{type}?id=
"""
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlmodel import Session

from gst_invoicing.core.database import get_session
from gst_invoicing.core.security import Action, CurrentUser, Module, require
from gst_invoicing.services import masters as master_service

masters_router = APIRouter(prefix="/api/masters", tags=["masters"])


@masters_router.get("/{master_type}")
def list_masters(
    master_type: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=500),
    search: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.MASTERS, Action.READ)),
):
    return master_service.list_masters(session, master_type, page, limit, search)


@masters_router.get("/{master_type}/{record_id}")
def get_master(
    master_type: str,
    record_id: int,
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.MASTERS, Action.READ)),
):
    return {"data": master_service.get_master(session, master_type, record_id)}


@masters_router.post("/{master_type}", status_code=status.HTTP_201_CREATED)
def create_master(
    master_type: str,
    body: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.MASTERS, Action.WRITE)),
):
    return {"success": True, "data": master_service.create_master(session, master_type, body)}


@masters_router.put("/{master_type}")
def update_master(
    master_type: str,
    id: Optional[int] = Query(default=None),
    body: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.MASTERS, Action.WRITE)),
):
    return {"success": True, "data": master_service.update_master(session, master_type, id, body)}


@masters_router.delete("/{master_type}")
def delete_master(
    master_type: str,
    id: Optional[int] = Query(default=None),
    session: Session = Depends(get_session),
    user: CurrentUser = Depends(require(Module.MASTERS, Action.DELETE)),
):
    master_service.delete_master(session, master_type, id)
    return {"success": True}
