"""
Generic CRUD over the master-data tables.

Every master type is one ``MasterType`` entry: the table model, the fields a
client may write, the fields a ``search`` matches, and the fields a create
must carry. Routes never touch the models directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Type

from fastapi.encoders import jsonable_encoder
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, or_, select

from gst_invoicing.core.cache import get_cache, invalidate_on_commit
from gst_invoicing.core.config import settings
from gst_invoicing.core.errors import NotFound, ValidationError
from gst_invoicing.core.security import hash_password
from gst_invoicing.models.master import (
    Customer,
    FinishedProduct,
    Godown,
    GstSetting,
    HsnSacCode,
    RawMaterial,
    Unit,
    User,
    Vendor,
)
from gst_invoicing.services.paging import paginate
from gst_invoicing.services.tax import STANDARD_GST_RATES


@dataclass(frozen=True)
class MasterType:
    model: Type[SQLModel]
    fields: tuple[str, ...]
    search: tuple[str, ...]
    required: tuple[str, ...] = ("name",)
    hidden: tuple[str, ...] = field(default=())
    label: str = "Record"


MASTER_TYPES: dict[str, MasterType] = {
    "customers": MasterType(
        Customer,
        fields=(
            "company_name", "name", "legal_name", "trade_name", "mobile", "phone",
            "email", "address", "state_name", "state_code", "pin_code", "gstin",
            "pan", "customer_type", "is_sez", "is_export",
        ),
        search=("name", "company_name", "legal_name", "gstin"),
        label="Customer",
    ),
    "vendors": MasterType(
        Vendor,
        fields=(
            "name", "contact_person", "contact_no", "address", "state_name",
            "state_code", "gstin",
        ),
        search=("name", "contact_person", "gstin"),
        label="Vendor",
    ),
    "godowns": MasterType(
        Godown,
        fields=("name", "address", "contact_no"),
        search=("name", "address"),
        label="Godown",
    ),
    "hsn-codes": MasterType(
        HsnSacCode,
        fields=("code", "gst_rate", "description"),
        search=("code",),
        required=("code",),
        label="HSN/SAC code",
    ),
    "units": MasterType(
        Unit,
        fields=("name",),
        search=("name",),
        label="Unit",
    ),
    "raw-materials": MasterType(
        RawMaterial,
        fields=("name", "description", "unit_id", "hsn_sac_id"),
        search=("name", "description"),
        label="Raw material",
    ),
    "finished-products": MasterType(
        FinishedProduct,
        fields=("name", "unit_id", "hsn_sac_id"),
        search=("name",),
        label="Finished product",
    ),
    "users": MasterType(
        User,
        fields=(
            "username", "password", "display_name", "email", "role", "address",
            "contact_no", "designation", "pan_no", "date_of_join", "status",
        ),
        search=("username", "display_name", "email"),
        required=("username", "password"),
        hidden=("password_hash",),
        label="User",
    ),
    "gst-settings": MasterType(
        GstSetting,
        fields=("setting_key", "setting_value", "description", "is_active"),
        search=("setting_key", "setting_value", "description"),
        required=("setting_key",),
        label="GST setting",
    ),
}


def get_master_type(type_name: str) -> MasterType:
    try:
        return MASTER_TYPES[type_name]
    except KeyError:
        raise NotFound("Invalid master type")


def _cache_domain(type_name: str) -> str:
    return f"masters:{type_name}"


def _serialize(mt: MasterType, obj: SQLModel) -> dict:
    return jsonable_encoder(obj.model_dump(exclude=set(mt.hidden)))


def _clean(mt: MasterType, payload: dict[str, Any]) -> dict[str, Any]:
    """Keep whitelisted fields only; ``password`` becomes ``password_hash``."""
    data = {k: v for k, v in payload.items() if k in mt.fields}
    if "password" in data:
        password = data.pop("password")
        if not password:
            raise ValidationError("Password cannot be empty")
        data["password_hash"] = hash_password(str(password))
    return data


def _validated(mt: MasterType, data: dict[str, Any]) -> SQLModel:
    try:
        return mt.model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"Invalid {where}: {first.get('msg')}")


def _warn_odd_gst_rate(mt: MasterType, obj: SQLModel) -> None:
    if mt.model is HsnSacCode and Decimal(str(obj.gst_rate)) not in STANDARD_GST_RATES:
        logger.warning(f"HSN/SAC {obj.code} saved with non-standard GST rate {obj.gst_rate}%")


def _commit(session: Session, mt: MasterType, message: Optional[str] = None) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        logger.warning(f"{mt.label} write rejected by the database: {exc.orig}")
        raise ValidationError(message or f"{mt.label} already exists or references a missing record")


# ── Operations ────────────────────────────────────────────────────────────────


def list_masters(
    session: Session,
    type_name: str,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
) -> dict:
    mt = get_master_type(type_name)
    cache = get_cache()
    domain = _cache_domain(type_name)
    key = cache.make_key(domain, "list", page, limit, search or "")
    cached = cache.get(key)
    if cached is not None:
        return cached

    stmt = select(mt.model)
    if search:
        stmt = stmt.where(
            or_(*[col(getattr(mt.model, f)).contains(search) for f in mt.search])
        )
    stmt = stmt.order_by(col(mt.model.id).desc())
    rows, pagination = paginate(session, stmt, page, limit)

    result = {"data": [_serialize(mt, r) for r in rows], "pagination": pagination}
    cache.set(key, result, ttl=settings.CACHE_TTL_MASTERS)
    return result


def get_master(session: Session, type_name: str, record_id: int) -> dict:
    mt = get_master_type(type_name)
    obj = session.get(mt.model, record_id)
    if obj is None:
        raise NotFound(f"{mt.label} not found")
    return _serialize(mt, obj)


def create_master(session: Session, type_name: str, payload: dict[str, Any]) -> dict:
    mt = get_master_type(type_name)
    missing = [f for f in mt.required if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    obj = _validated(mt, _clean(mt, payload))
    _warn_odd_gst_rate(mt, obj)
    session.add(obj)
    invalidate_on_commit(session, _cache_domain(type_name))
    _commit(session, mt)
    session.refresh(obj)
    logger.info(f"Created {mt.label} #{obj.id}")
    return _serialize(mt, obj)


def update_master(
    session: Session, type_name: str, record_id: Optional[int], payload: dict[str, Any]
) -> dict:
    mt = get_master_type(type_name)
    if not record_id:
        raise ValidationError("ID is required")
    obj = session.get(mt.model, record_id)
    if obj is None:
        raise NotFound(f"{mt.label} not found")

    changes = _clean(mt, payload)
    if not changes:
        raise ValidationError("No valid fields to update")

    merged = _validated(mt, {**obj.model_dump(), **changes})
    for key in changes:
        setattr(obj, key, getattr(merged, key))
    if hasattr(obj, "updated_at"):
        obj.updated_at = datetime.utcnow()
    _warn_odd_gst_rate(mt, obj)

    session.add(obj)
    invalidate_on_commit(session, _cache_domain(type_name))
    _commit(session, mt)
    session.refresh(obj)
    logger.info(f"Updated {mt.label} #{record_id} ({', '.join(sorted(changes))})")
    return _serialize(mt, obj)


def delete_master(session: Session, type_name: str, record_id: Optional[int]) -> None:
    mt = get_master_type(type_name)
    if not record_id:
        raise ValidationError("ID is required")
    obj = session.get(mt.model, record_id)
    if obj is None:
        raise NotFound(f"{mt.label} not found")
    session.delete(obj)
    invalidate_on_commit(session, _cache_domain(type_name))
    _commit(session, mt, f"{mt.label} is still referenced by other records")
    logger.info(f"Deleted {mt.label} #{record_id}")


def get_gst_settings(session: Session) -> dict[str, str]:
    """Active ``gst_settings`` rows as a plain key → value dict."""
    rows = session.exec(select(GstSetting).where(GstSetting.is_active == True)).all()  # noqa: E712
    return {r.setting_key: r.setting_value for r in rows if r.setting_value is not None}
