"""
Domain exceptions and their HTTP translation.

Services raise these; the handlers registered by ``register_exception_handlers``
turn them into ``{"error": message, ...detail}`` JSON bodies. Nothing is retried.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger


class AppError(Exception):
    """Base class for errors that map onto a client-visible HTTP response."""

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[dict[str, Any]] = None):
        self.message = message
        self.detail = detail or {}
        super().__init__(message)


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403


class ValidationError(AppError):
    status_code = 400


class InsufficientStock(ValidationError):
    def __init__(self, message: str = "Insufficient stock", detail: Optional[dict] = None):
        super().__init__(message, detail)


class NotFound(AppError):
    status_code = 404


class ExternalServiceError(AppError):
    """E-invoice provider failure. ``detail`` carries the provider's error code/message."""

    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        detail: Optional[dict[str, Any]] = None,
    ):
        self.error_code = error_code
        detail = dict(detail or {})
        if error_code:
            detail.setdefault("error_code", error_code)
        super().__init__(message, detail)


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(
            f"{request.method} {request.url.path} → {exc.status_code}: {exc.message}"
        )
    body: dict[str, Any] = {"error": exc.message}
    body.update(exc.detail)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid {where}: {first.get('msg')}" if where else "Invalid request"
    logger.info(f"{request.method} {request.url.path} → 400: {message}")
    return JSONResponse(status_code=400, content={"error": message, "details": errors})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Raw exception text stays in the log only
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
