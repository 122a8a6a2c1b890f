"""SQLModel database engine and session management."""
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session
from gst_invoicing.core.config import settings

# Import models so SQLModel.metadata knows about all tables
import gst_invoicing.models.master  # noqa: F401
import gst_invoicing.models.stock  # noqa: F401
import gst_invoicing.models.invoice  # noqa: F401

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# check_same_thread only applies to SQLite; TestClient runs handlers in a worker thread
_connect_args = {"check_same_thread": False} if _is_sqlite else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    pool_pre_ping=True,
    echo=False,
)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite leaves FK constraints off per connection unless asked
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


if _is_sqlite:
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)


def create_db_and_tables() -> None:
    """Create all tables defined in SQLModel models."""
    SQLModel.metadata.create_all(engine)


def get_session():
    """FastAPI dependency: yields a SQLModel session."""
    with Session(engine) as session:
        yield session
