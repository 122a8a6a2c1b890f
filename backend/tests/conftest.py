"""
Shared pytest fixtures.

Environment variables are set here, before anything imports the app, so
every test module talks to the same throwaway SQLite file with cheap bcrypt
rounds and no log file. Each test starts from empty tables and an empty cache.
"""
import os
import sys
import tempfile
from datetime import date
from decimal import Decimal

import httpx
import pytest

# Ensure app package is importable when running pytest from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Point to a temp DB before importing the app
_tmp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp_db.close()

os.environ["DATABASE_URL"] = f"sqlite:///{_tmp_db.name}"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_FILE"] = ""
os.environ["REDIS_URL"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SELLER_STATE_CODE"] = "27"
os.environ["EINVOICE_MIN_AMOUNT"] = "0"

from fastapi.testclient import TestClient  # noqa: E402 – must import after env set
from sqlmodel import Session, SQLModel  # noqa: E402

from gst_invoicing.core.cache import get_cache  # noqa: E402
from gst_invoicing.core.database import engine  # noqa: E402
from gst_invoicing.core.security import hash_password  # noqa: E402
from gst_invoicing.main import app  # noqa: E402
from gst_invoicing.models import (  # noqa: E402
    Customer,
    Department,
    DepartmentAccess,
    Godown,
    GstSetting,
    HsnSacCode,
    RawMaterial,
    Unit,
    User,
)
from gst_invoicing.services.einvoice import GstApiClient, get_gst_client  # noqa: E402

GST_BASE_URL = "https://gst.test/eicore"
SELLER_GSTIN = "27AAACM1234F1Z5"
IRN = "a5c12dca80e743321740b001fd70953e8738d109865d28ba4013750f2046f229"


def pytest_sessionfinish(session, exitstatus):
    try:
        os.unlink(_tmp_db.name)
    except OSError:
        pass


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    get_cache().clear()
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


# ── Seed data ─────────────────────────────────────────────────────────────────


def make_user(session, username, password="secret", role="user", departments=()):
    user = User(username=username, password_hash=hash_password(password), role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    for name in departments:
        dept = Department(name=name)
        session.add(dept)
        session.commit()
        session.refresh(dept)
        session.add(DepartmentAccess(user_id=user.id, department_id=dept.id))
        session.commit()
    return user


@pytest.fixture
def seed(session):
    """Godowns, a material, an HSN code, two customers and company GST settings."""
    unit = Unit(name="KGS")
    hsn = HsnSacCode(code="8714", gst_rate=Decimal("18"), description="Cycle parts")
    main_godown = Godown(name="Main Godown", address="Bhiwandi")
    branch_godown = Godown(name="Branch Godown", address="Pune")
    session.add_all([unit, hsn, main_godown, branch_godown])
    session.commit()

    steel = RawMaterial(name="Steel Tube", unit_id=unit.id, hsn_sac_id=hsn.id)
    local = Customer(
        name="Shree Cycles",
        company_name="Shree Cycles Pvt Ltd",
        legal_name="Shree Cycles Private Limited",
        gstin="27AAPFS1234K1Z1",
        state_code="27",
        state_name="Maharashtra",
        address="12 MG Road, Mumbai",
        pin_code="400001",
    )
    outstation = Customer(
        name="Kolkata Wheels",
        gstin="19AABCK5678L1Z2",
        state_code="19",
        state_name="West Bengal",
        address="4 Park Street, Kolkata",
        pin_code="700016",
    )
    session.add_all([steel, local, outstation])
    for key, value in {
        "company_gstin": SELLER_GSTIN,
        "company_legal_name": "MK Cycles Pvt Ltd",
        "company_address1": "Plot 7, MIDC",
        "company_location": "Mumbai",
        "company_pin_code": "400093",
        "company_state_code": "27",
    }.items():
        session.add(GstSetting(setting_key=key, setting_value=value))
    session.commit()

    return {
        "main_godown": main_godown.id,
        "branch_godown": branch_godown.id,
        "steel": steel.id,
        "hsn": hsn.id,
        "unit": unit.id,
        "local_customer": local.id,
        "outstation_customer": outstation.id,
    }


# ── Fake e-invoice provider ───────────────────────────────────────────────────


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeProvider:
    """httpx MockTransport handler that records calls and answers like the GST portal."""

    def __init__(self):
        self.calls = []
        self.generate_response = {
            "Success": "Y",
            "AckNo": 112410036563310,
            "AckDt": "2024-07-01 12:30:00",
            "Irn": IRN,
            "SignedInvoice": "eyJhbGciOiJSUzI1NiJ9.signed-invoice",
            "SignedQRCode": "eyJhbGciOiJSUzI1NiJ9.signed-qr",
            "Status": "ACT",
            "EwbNo": None,
        }
        self.generate_status = 200
        self.cancel_response = {"Success": "Y", "Irn": IRN, "CancelDate": "2024-07-01 15:00:00"}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        if path.endswith("/auth"):
            return httpx.Response(
                200, json={"access_token": f"token-{len(self.calls)}", "token_type": "bearer", "expires_in": 3600}
            )
        if path.endswith("/invoice/cancel"):
            return httpx.Response(200, json=self.cancel_response)
        if path.endswith("/invoice"):
            return httpx.Response(self.generate_status, json=self.generate_response)
        return httpx.Response(404, json={"message": "unknown endpoint"})

    def count(self, suffix):
        return sum(1 for p in self.calls if p.endswith(suffix))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gst_client(provider, clock):
    client = GstApiClient(
        base_url=GST_BASE_URL,
        username="api-user",
        password="api-pass",
        gstin=SELLER_GSTIN,
        client_id="cid",
        client_secret="csecret",
        transport=httpx.MockTransport(provider),
        clock=clock,
    )
    yield client
    client.close()


# ── API client ────────────────────────────────────────────────────────────────


@pytest.fixture
def client(gst_client):
    app.dependency_overrides[get_gst_client] = lambda: gst_client
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


def login(client, username, password="secret"):
    r = client.post("/api/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def admin_headers(client, session):
    make_user(session, "admin", role="admin")
    return login(client, "admin")


def invoice_body(customer_id, **overrides):
    body = {
        "customer_id": customer_id,
        "invoice_date": date(2024, 7, 1).isoformat(),
        "items": [
            {"description": "Steel frame", "hsn_code": "8714", "quantity": 10, "rate": 100, "gst_rate": 18}
        ],
    }
    body.update(overrides)
    return body
