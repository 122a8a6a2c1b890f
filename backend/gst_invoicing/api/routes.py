"""
Service-level routes.

Endpoints:
  GET  /api/health
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from gst_invoicing.core.cache import get_cache
from gst_invoicing.core.database import get_session
from gst_invoicing.models.master import GstSetting
from gst_invoicing.schemas.responses import HealthResponse

router = APIRouter(prefix="/api")


# ── Health ────────────────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
def health(session: Session = Depends(get_session)):
    try:
        session.exec(select(GstSetting).limit(1))
        db_status = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check DB failure: {e}")
        db_status = "error"
    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        db=db_status,
        cache=get_cache().backend_name,
    )
