"""Login: password check, capability resolution and token issue."""
from __future__ import annotations

from loguru import logger
from sqlmodel import Session, select

from gst_invoicing.core.errors import Unauthorized
from gst_invoicing.core.security import (
    create_access_token,
    resolve_capabilities,
    verify_password,
)
from gst_invoicing.models.master import Department, DepartmentAccess, User
from gst_invoicing.schemas.responses import LoginResponse, UserRead


def user_departments(session: Session, user_id: int) -> list[str]:
    stmt = (
        select(Department.name)
        .join(DepartmentAccess, DepartmentAccess.department_id == Department.id)
        .where(DepartmentAccess.user_id == user_id)
    )
    return list(session.exec(stmt).all())


def user_capabilities(session: Session, user: User) -> list[str]:
    return resolve_capabilities(user.role, user_departments(session, user.id))


def login(session: Session, username: str, password: str) -> LoginResponse:
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None or user.status != 1 or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for '{username}'")
        raise Unauthorized("Invalid credentials")

    caps = user_capabilities(session, user)
    token = create_access_token(user.id, user.username, user.role, caps)
    logger.info(f"User '{user.username}' logged in ({user.role})")

    profile = UserRead.model_validate(user)
    profile.capabilities = caps
    return LoginResponse(access_token=token, user=profile)
