"""
GST Invoicing – FastAPI application entry point.

Run with:
    uvicorn gst_invoicing.main:app --reload --host 0.0.0.0 --port 8000
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from gst_invoicing.api.routes import router
from gst_invoicing.api.auth_routes import auth_router
from gst_invoicing.api.master_routes import masters_router
from gst_invoicing.api.stock_routes import stock_router
from gst_invoicing.api.invoice_routes import invoice_router
from gst_invoicing.core.config import settings
from gst_invoicing.core.database import create_db_and_tables
from gst_invoicing.core.errors import register_exception_handlers
from gst_invoicing.core.logging import setup_logging
from gst_invoicing.services.einvoice import close_gst_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown hooks."""
    setup_logging()
    logger.info("Starting GST invoicing backend …")
    create_db_and_tables()
    logger.info("Database tables ready")
    yield
    close_gst_client()
    logger.info("GST invoicing backend shut down")


app = FastAPI(
    title="GST Invoicing API",
    description="Masters, godown stock, GST tax invoices and e-invoice (IRN) submission",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS – allow frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(router)
app.include_router(auth_router)
app.include_router(masters_router)
app.include_router(stock_router)
app.include_router(invoice_router)


@app.get("/")
def root():
    return {"message": "GST Invoicing API", "docs": "/docs"}
