"""Application configuration loaded from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings:
    # SQLite DB URL (any SQLAlchemy URL works, e.g. mysql+pymysql://…)
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'gst_invoicing.db'}"
    )

    # Auth
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-me")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", str(7 * 24 * 60)))
    BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "logs/app.log")

    # CORS
    CORS_ORIGINS: list[str] = [
        o.strip()
        for o in os.getenv(
            "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
        ).split(",")
    ]

    # Cache – Redis when REDIS_URL is set, in-process dict otherwise
    REDIS_URL: str = os.getenv("REDIS_URL", "")
    CACHE_TTL_MASTERS: int = int(os.getenv("CACHE_TTL_MASTERS", "3600"))
    CACHE_TTL_STOCK: int = int(os.getenv("CACHE_TTL_STOCK", "3600"))
    CACHE_TTL_INVOICES: int = int(os.getenv("CACHE_TTL_INVOICES", "1800"))
    # In-process backend only; oldest entries are evicted past this size
    CACHE_MAX_ENTRIES: int = int(os.getenv("CACHE_MAX_ENTRIES", "10000"))

    # GST e-invoice provider
    GST_API_BASE_URL: str = os.getenv(
        "GST_API_BASE_URL", "https://einvoice1-sandbox.nic.in/eicore/v1.03"
    )
    GST_API_USERNAME: str = os.getenv("GST_API_USERNAME", "")
    GST_API_PASSWORD: str = os.getenv("GST_API_PASSWORD", "")
    GST_API_GSTIN: str = os.getenv("GST_API_GSTIN", "")
    GST_API_CLIENT_ID: str = os.getenv("GST_API_CLIENT_ID", "")
    GST_API_CLIENT_SECRET: str = os.getenv("GST_API_CLIENT_SECRET", "")
    GST_API_TIMEOUT: float = float(os.getenv("GST_API_TIMEOUT", "30"))

    # Minimum invoice value (₹) for e-invoice generation; 0 = no minimum
    EINVOICE_MIN_AMOUNT: float = float(os.getenv("EINVOICE_MIN_AMOUNT", "0"))

    # Invoice numbering
    INVOICE_NUMBER_PREFIX: str = os.getenv("INVOICE_NUMBER_PREFIX", "INV-")
    INVOICE_NUMBER_PADDING: int = int(os.getenv("INVOICE_NUMBER_PADDING", "6"))

    # Used when gst_settings has no company_state_code row
    SELLER_STATE_CODE: str = os.getenv("SELLER_STATE_CODE", "27")


settings = Settings()
