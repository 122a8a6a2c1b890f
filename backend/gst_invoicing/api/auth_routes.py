"""
Authentication endpoints.

  POST /api/auth/login
  GET  /api/auth/me
"""
from fastapi import APIRouter, Depends
from sqlmodel import Session

from gst_invoicing.core.database import get_session
from gst_invoicing.core.errors import Unauthorized
from gst_invoicing.core.security import CurrentUser, get_current_user
from gst_invoicing.models.master import User
from gst_invoicing.schemas.requests import LoginRequest
from gst_invoicing.schemas.responses import LoginResponse, UserRead
from gst_invoicing.services import auth as auth_service

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, session: Session = Depends(get_session)):
    return auth_service.login(session, body.username, body.password)


@auth_router.get("/me", response_model=UserRead)
def me(
    current: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    user = session.get(User, current.id)
    if user is None or user.status != 1:
        raise Unauthorized("Unauthorized")
    profile = UserRead.model_validate(user)
    profile.capabilities = current.capabilities
    return profile
