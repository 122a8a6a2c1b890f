"""
Integration tests: HTTP API end to end.

Each test gets empty tables, an empty cache and a fake e-invoice provider
behind the real ``GstApiClient`` (see conftest.py).
"""
from datetime import date
from decimal import Decimal

import pytest
from sqlmodel import Session, select

from gst_invoicing.core.database import engine
from gst_invoicing.models.invoice import EInvoiceSequence, EInvoiceTransactionLog, TaxInvoiceDetail
from gst_invoicing.services import invoices as invoice_service

from conftest import IRN, invoice_body, login, make_user


@pytest.fixture
def manager_headers(client, session):
    make_user(session, "manager", role="manager")
    return login(client, "manager")


@pytest.fixture
def viewer_headers(client, session):
    make_user(session, "viewer", role="user")
    return login(client, "viewer")


def _create_invoice(client, headers, customer_id, **overrides):
    r = client.post("/api/invoices", json=invoice_body(customer_id, **overrides), headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


class TestServiceEndpoints:
    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert r.json()["docs"] == "/docs"

    def test_health(self, client):
        r = client.get("/api/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "ok"
        assert data["db"] == "ok"
        assert data["cache"] == "memory"

    def test_unhandled_error_is_generic(self, client, admin_headers, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("connection string with password=hunter2")

        monkeypatch.setattr(invoice_service, "list_invoices", boom)
        r = client.get("/api/invoices", headers=admin_headers)
        assert r.status_code == 500
        assert r.json() == {"error": "Internal server error"}


class TestAuth:
    def test_login_and_me(self, client, admin_headers):
        r = client.get("/api/auth/me", headers=admin_headers)
        assert r.status_code == 200
        me = r.json()
        assert me["username"] == "admin"
        assert me["role"] == "admin"
        assert "MASTERS:delete" in me["capabilities"]
        assert "password_hash" not in me

    def test_bad_credentials(self, client, session):
        make_user(session, "clerk")
        r = client.post("/api/auth/login", json={"username": "clerk", "password": "wrong"})
        assert r.status_code == 401
        assert r.json() == {"error": "Invalid credentials"}

    def test_malformed_login_body(self, client):
        r = client.post("/api/auth/login", json={"username": "clerk"})
        assert r.status_code == 400
        body = r.json()
        assert body["error"].startswith("Invalid password")
        assert body["details"]

    def test_missing_token(self, client):
        r = client.get("/api/invoices")
        assert r.status_code == 401
        assert r.json() == {"error": "Unauthorized"}

    def test_bad_token(self, client):
        r = client.get("/api/invoices", headers={"Authorization": "Bearer nonsense"})
        assert r.status_code == 401

    def test_missing_capability(self, client, viewer_headers):
        assert client.get("/api/invoices", headers=viewer_headers).status_code == 200
        r = client.get("/api/masters/customers", headers=viewer_headers)
        assert r.status_code == 403
        assert r.json() == {"error": "Forbidden"}
        r = client.post("/api/invoices", json=invoice_body(1), headers=viewer_headers)
        assert r.status_code == 403

    def test_department_grant_opens_module(self, client, session):
        make_user(session, "store", role="user", departments=["INVENTORY"])
        headers = login(client, "store")
        assert client.get("/api/stock", headers=headers).status_code == 200
        assert client.delete("/api/stock?id=1", headers=headers).status_code == 403


class TestMasters:
    def test_list_customers(self, client, admin_headers, seed):
        r = client.get("/api/masters/customers", headers=admin_headers)
        assert r.status_code == 200
        body = r.json()
        assert body["pagination"] == {
            "currentPage": 1,
            "totalPages": 1,
            "totalItems": 2,
            "itemsPerPage": 10,
        }
        # newest first
        assert body["data"][0]["name"] == "Kolkata Wheels"

    def test_search(self, client, admin_headers, seed):
        r = client.get("/api/masters/customers?search=Shree", headers=admin_headers)
        assert [c["name"] for c in r.json()["data"]] == ["Shree Cycles"]

    def test_invalid_type(self, client, admin_headers):
        r = client.get("/api/masters/spaceships", headers=admin_headers)
        assert r.status_code == 404
        assert r.json() == {"error": "Invalid master type"}

    def test_crud_round_trip_refreshes_cached_list(self, client, admin_headers, seed):
        before = client.get("/api/masters/godowns", headers=admin_headers).json()
        assert before["pagination"]["totalItems"] == 2

        r = client.post("/api/masters/godowns", json={"name": "Nagpur Depot"}, headers=admin_headers)
        assert r.status_code == 201
        created = r.json()["data"]
        assert r.json()["success"] is True
        assert created["name"] == "Nagpur Depot"

        after = client.get("/api/masters/godowns", headers=admin_headers).json()
        assert after["pagination"]["totalItems"] == 3

        r = client.put(
            f"/api/masters/godowns?id={created['id']}",
            json={"address": "Wardha Road", "unknown_field": 1},
            headers=admin_headers,
        )
        assert r.status_code == 200
        assert r.json()["data"]["address"] == "Wardha Road"

        r = client.get(f"/api/masters/godowns/{created['id']}", headers=admin_headers)
        assert r.json()["data"]["address"] == "Wardha Road"

        r = client.delete(f"/api/masters/godowns?id={created['id']}", headers=admin_headers)
        assert r.status_code == 200
        r = client.get(f"/api/masters/godowns/{created['id']}", headers=admin_headers)
        assert r.status_code == 404
        assert r.json() == {"error": "Godown not found"}

    def test_create_requires_fields(self, client, admin_headers):
        r = client.post("/api/masters/godowns", json={"address": "nowhere"}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Missing required fields: name"

    def test_update_without_known_fields(self, client, admin_headers, seed):
        r = client.put(
            f"/api/masters/godowns?id={seed['main_godown']}",
            json={"colour": "blue"},
            headers=admin_headers,
        )
        assert r.status_code == 400
        assert r.json()["error"] == "No valid fields to update"

    def test_update_requires_id(self, client, admin_headers):
        r = client.put("/api/masters/godowns", json={"name": "x"}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "ID is required"

    def test_duplicate_unit(self, client, admin_headers, seed):
        r = client.post("/api/masters/units", json={"name": "KGS"}, headers=admin_headers)
        assert r.status_code == 400
        assert "already exists" in r.json()["error"]

    def test_hsn_code(self, client, admin_headers):
        r = client.post(
            "/api/masters/hsn-codes",
            json={"code": "9403", "gst_rate": 18, "description": "Furniture"},
            headers=admin_headers,
        )
        assert r.status_code == 201
        assert r.json()["data"]["gst_rate"] == 18.0

    def test_user_password_never_returned(self, client, admin_headers):
        r = client.post(
            "/api/masters/users",
            json={"username": "cashier", "password": "till-1", "role": "user"},
            headers=admin_headers,
        )
        assert r.status_code == 201
        created = r.json()["data"]
        assert "password_hash" not in created
        assert "password" not in created

        listing = client.get("/api/masters/users", headers=admin_headers).json()["data"]
        assert all("password_hash" not in u for u in listing)

        assert client.post(
            "/api/auth/login", json={"username": "cashier", "password": "till-1"}
        ).status_code == 200

    def test_manager_cannot_touch_masters(self, client, manager_headers):
        r = client.post("/api/masters/godowns", json={"name": "X"}, headers=manager_headers)
        assert r.status_code == 403


class TestStock:
    def test_add_subtract_and_set(self, client, admin_headers, seed):
        body = {"godown_id": seed["main_godown"], "raw_material_id": seed["steel"], "quantity": 50}
        r = client.post("/api/stock", json=body, headers=admin_headers)
        assert r.status_code == 201
        row = r.json()["data"]
        assert Decimal(row["quantity"]) == Decimal("50")
        assert row["godown_name"] == "Main Godown"
        assert row["operation"] == "add"

        r = client.post("/api/stock", json={**body, "quantity": 60, "operation": "subtract"}, headers=admin_headers)
        assert r.status_code == 400
        error = r.json()
        assert error["error"] == "Insufficient stock"
        assert Decimal(error["available"]) == Decimal("50")

        r = client.put(f"/api/stock?id={row['id']}", json={"quantity": 20}, headers=admin_headers)
        assert r.status_code == 200
        assert Decimal(r.json()["data"]["quantity"]) == Decimal("20")

        listing = client.get("/api/stock", headers=admin_headers).json()
        assert listing["pagination"]["totalItems"] == 1
        assert Decimal(listing["data"][0]["quantity"]) == Decimal("20")

    def test_missing_fields(self, client, admin_headers, seed):
        r = client.post("/api/stock", json={"godown_id": seed["main_godown"]}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Missing required fields"

        r = client.put("/api/stock", json={"quantity": 3}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Stock ID is required"

    def test_bad_operation(self, client, admin_headers, seed):
        body = {
            "godown_id": seed["main_godown"],
            "raw_material_id": seed["steel"],
            "quantity": 1,
            "operation": "multiply",
        }
        assert client.post("/api/stock", json=body, headers=admin_headers).status_code == 400

    def test_delete_row(self, client, admin_headers, seed):
        body = {"godown_id": seed["main_godown"], "raw_material_id": seed["steel"], "quantity": 5}
        stock_id = client.post("/api/stock", json=body, headers=admin_headers).json()["data"]["id"]
        assert client.delete(f"/api/stock?id={stock_id}", headers=admin_headers).status_code == 200
        assert client.get("/api/stock", headers=admin_headers).json()["data"] == []
        r = client.delete(f"/api/stock?id={stock_id}", headers=admin_headers)
        assert r.status_code == 404

    def test_movements_and_transfer(self, client, admin_headers, seed):
        r = client.post(
            "/api/stock/movements",
            json={
                "movement_type": "purchase",
                "raw_material_id": seed["steel"],
                "to_godown_id": seed["main_godown"],
                "quantity": 40,
                "counterparty": "Jindal",
            },
            headers=admin_headers,
        )
        assert r.status_code == 201
        assert r.json()["message"] == "purchase completed successfully"

        r = client.post(
            "/api/stock/movements",
            json={
                "movement_type": "transfer",
                "raw_material_id": seed["steel"],
                "from_godown_id": seed["main_godown"],
                "to_godown_id": seed["branch_godown"],
                "quantity": 15,
            },
            headers=admin_headers,
        )
        assert r.status_code == 201
        reference = r.json()["details"]["reference_no"]
        assert reference.startswith("TRF-")

        transfers = client.get("/api/stock/movements?type=transfer", headers=admin_headers).json()
        assert transfers["pagination"]["totalItems"] == 2
        assert {m["reference_no"] for m in transfers["data"]} == {reference}

        balances = client.get(
            f"/api/stock?godown_id={seed['branch_godown']}", headers=admin_headers
        ).json()["data"]
        assert Decimal(balances[0]["quantity"]) == Decimal("15")

    def test_same_godown_transfer(self, client, admin_headers, seed):
        r = client.post(
            "/api/stock/movements",
            json={
                "movement_type": "transfer",
                "raw_material_id": seed["steel"],
                "from_godown_id": seed["main_godown"],
                "to_godown_id": seed["main_godown"],
                "quantity": 1,
            },
            headers=admin_headers,
        )
        assert r.status_code == 400
        assert r.json()["error"] == "Source and destination godowns cannot be the same"

    def test_export(self, client, admin_headers, seed):
        body = {"godown_id": seed["main_godown"], "raw_material_id": seed["steel"], "quantity": 9}
        client.post("/api/stock", json=body, headers=admin_headers)
        r = client.get("/api/stock/export", headers=admin_headers)
        assert r.status_code == 200
        assert "spreadsheetml" in r.headers["content-type"]
        assert "attachment" in r.headers["content-disposition"]
        assert r.content[:2] == b"PK"


class TestInvoices:
    def test_intra_state_invoice(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        assert inv["invoice_no"] == "INV-2425-000001"
        assert inv["status"] == "draft"
        assert inv["place_of_supply"] == "27"
        assert Decimal(inv["total_taxable_amt"]) == Decimal("1000")
        assert Decimal(inv["total_cgst_amt"]) == Decimal("90")
        assert Decimal(inv["total_sgst_amt"]) == Decimal("90")
        assert Decimal(inv["total_igst_amt"]) == Decimal("0")
        assert Decimal(inv["grand_total_amt"]) == Decimal("1180")
        assert inv["amount_in_words"] == "One Thousand One Hundred Eighty Rupees Only"
        assert inv["customer_name"] == "Shree Cycles Pvt Ltd"
        assert len(inv["items"]) == 1
        assert inv["einvoice_error"] is None

    def test_inter_state_invoice(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["outstation_customer"])
        assert Decimal(inv["total_igst_amt"]) == Decimal("180")
        assert Decimal(inv["total_cgst_amt"]) == Decimal("0")
        assert Decimal(inv["items"][0]["igst_rate"]) == Decimal("18")

    def test_numbering_per_financial_year(self, client, admin_headers, seed):
        cid = seed["local_customer"]
        assert _create_invoice(client, admin_headers, cid)["invoice_no"] == "INV-2425-000001"
        assert _create_invoice(client, admin_headers, cid, invoice_date="2025-03-31")["invoice_no"] == "INV-2425-000002"
        assert _create_invoice(client, admin_headers, cid, invoice_date="2025-04-01")["invoice_no"] == "INV-2526-000001"

    def test_line_defaults_from_product(self, client, admin_headers, seed):
        product = client.post(
            "/api/masters/finished-products",
            json={"name": "Roadster 26T", "hsn_sac_id": seed["hsn"]},
            headers=admin_headers,
        ).json()["data"]
        inv = _create_invoice(
            client, admin_headers, seed["local_customer"],
            items=[{"prod_id": product["id"], "quantity": 2, "rate": 500}],
        )
        line = inv["items"][0]
        assert line["description"] == "Roadster 26T"
        assert line["hsn_sac_code"] == "8714"
        assert Decimal(line["gst_rate"]) == Decimal("18")
        assert Decimal(inv["grand_total_amt"]) == Decimal("1180")

    def test_validation(self, client, admin_headers, seed):
        r = client.post(
            "/api/invoices",
            json=invoice_body(seed["local_customer"], items=[]),
            headers=admin_headers,
        )
        assert r.status_code == 400
        assert r.json()["error"] == "Invoice must have at least one item"

        r = client.post("/api/invoices", json={"items": []}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"].startswith("Missing required fields")

        r = client.post("/api/invoices", json=invoice_body(9999), headers=admin_headers)
        assert r.status_code == 404
        assert r.json()["error"] == "Customer not found"

        bad_qty = invoice_body(
            seed["local_customer"],
            items=[{"hsn_code": "8714", "quantity": 0, "rate": 10, "gst_rate": 18}],
        )
        r = client.post("/api/invoices", json=bad_qty, headers=admin_headers)
        assert r.status_code == 400

    def test_list_and_get(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        listing = client.get("/api/invoices", headers=admin_headers).json()
        assert listing["pagination"]["totalItems"] == 1
        row = listing["data"][0]
        assert row["invoice_no"] == inv["invoice_no"]
        assert row["is_submitted"] is False

        r = client.get(f"/api/invoices/{inv['id']}", headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["items"][0]["description"] == "Steel frame"

        assert client.get("/api/invoices/9999", headers=admin_headers).status_code == 404

    def test_update_reprices_on_place_of_supply(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        r = client.put(
            f"/api/invoices?id={inv['id']}",
            json={"place_of_supply": "19", "remarks": "Ship to Kolkata"},
            headers=admin_headers,
        )
        assert r.status_code == 200
        updated = r.json()
        assert updated["place_of_supply"] == "19"
        assert updated["remarks"] == "Ship to Kolkata"
        assert Decimal(updated["total_igst_amt"]) == Decimal("180")
        assert Decimal(updated["total_cgst_amt"]) == Decimal("0")
        assert updated["invoice_no"] == inv["invoice_no"]

    def test_update_replaces_lines(self, client, admin_headers, seed, session):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        r = client.put(
            f"/api/invoices?id={inv['id']}",
            json={"items": [
                {"description": "Saddle", "hsn_code": "8714", "quantity": 4, "rate": 250, "gst_rate": 12},
                {"description": "Bell", "hsn_code": "8714", "quantity": 10, "rate": 20, "gst_rate": 18},
            ]},
            headers=admin_headers,
        )
        assert r.status_code == 200
        updated = r.json()
        assert [i["serial_no"] for i in updated["items"]] == [1, 2]
        # 1000 @ 12% + 200 @ 18%
        assert Decimal(updated["grand_total_amt"]) == Decimal("1356")

        lines = session.exec(
            select(TaxInvoiceDetail).where(TaxInvoiceDetail.tax_invoice_id == inv["id"])
        ).all()
        assert len(lines) == 2

    def test_update_requires_id(self, client, admin_headers):
        r = client.put("/api/invoices", json={"remarks": "x"}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Invoice ID is required"

    def test_delete_draft(self, client, admin_headers, seed, session):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        r = client.delete(f"/api/invoices?id={inv['id']}", headers=admin_headers)
        assert r.status_code == 200
        assert client.get(f"/api/invoices/{inv['id']}", headers=admin_headers).status_code == 404
        lines = session.exec(
            select(TaxInvoiceDetail).where(TaxInvoiceDetail.tax_invoice_id == inv["id"])
        ).all()
        assert lines == []

    def test_manager_cannot_delete(self, client, manager_headers, seed):
        inv = _create_invoice(client, manager_headers, seed["local_customer"])
        r = client.delete(f"/api/invoices?id={inv['id']}", headers=manager_headers)
        assert r.status_code == 403

    def test_pdf(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        r = client.get(f"/api/invoices/{inv['id']}/pdf", headers=admin_headers)
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert "Invoice-INV-2425-000001.pdf" in r.headers["content-disposition"]
        assert r.content.startswith(b"%PDF")

    def test_cancelled_invoice_cannot_be_deleted(self, client, admin_headers, seed, session):
        inv = _create_invoice(client, admin_headers, seed["outstation_customer"])
        client.post(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)
        r = client.request(
            "DELETE",
            f"/api/invoices/{inv['id']}/einvoice",
            json={"reason": "2", "remarks": "Wrong party"},
            headers=admin_headers,
        )
        assert r.json()["status"] == "cancelled"

        r = client.delete(f"/api/invoices?id={inv['id']}", headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Cannot delete invoice with generated e-invoice"
        assert client.get(f"/api/invoices/{inv['id']}", headers=admin_headers).status_code == 200
        logs = session.exec(
            select(EInvoiceTransactionLog).where(EInvoiceTransactionLog.tax_invoice_id == inv["id"])
        ).all()
        assert sorted(l.action for l in logs) == ["cancel", "generate"]

    def test_failed_submission_keeps_invoice(self, client, admin_headers, seed, provider, session):
        provider.generate_response = {
            "Success": "N",
            "InfoDtls": [{"InfCd": "2172", "Desc": "Invalid buyer GSTIN"}],
        }
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        client.post(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)

        r = client.delete(f"/api/invoices?id={inv['id']}", headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Cannot delete invoice with e-invoice submission history"
        logs = session.exec(
            select(EInvoiceTransactionLog).where(EInvoiceTransactionLog.tax_invoice_id == inv["id"])
        ).all()
        assert [l.status for l in logs] == ["failed"]

    def test_first_sequence_row_created_concurrently(self, session):
        with Session(engine) as other:
            other.add(EInvoiceSequence(financial_year="2024-25", prefix="INV-", current_number=7))
            other.commit()

        seq = invoice_service._create_sequence(session, "2024-25")
        assert seq.current_number == 7
        assert invoice_service.next_invoice_number(session, date(2024, 7, 1)) == "INV-2425-000008"
        session.commit()


class TestEInvoice:
    def test_generate_status_and_cancel(self, client, admin_headers, seed, provider):
        inv = _create_invoice(client, admin_headers, seed["outstation_customer"])

        r = client.post(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)
        assert r.status_code == 200, r.text
        status = r.json()
        assert status["status"] == "generated"
        assert status["irn_no"] == IRN
        assert status["ack_no"] == "112410036563310"
        assert [l["status"] for l in status["logs"]] == ["success"]

        listing = client.get("/api/invoices", headers=admin_headers).json()
        assert listing["data"][0]["is_submitted"] is True

        r = client.put(f"/api/invoices?id={inv['id']}", json={"remarks": "late"}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Cannot edit invoice in 'generated' status"

        r = client.delete(f"/api/invoices?id={inv['id']}", headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Cannot delete invoice with generated e-invoice"

        r = client.get(f"/api/invoices/{inv['id']}/pdf", headers=admin_headers)
        assert r.status_code == 200

        r = client.request(
            "DELETE",
            f"/api/invoices/{inv['id']}/einvoice",
            json={"reason": "2", "remarks": "Wrong party"},
            headers=admin_headers,
        )
        assert r.status_code == 200, r.text
        cancelled = r.json()
        assert cancelled["status"] == "cancelled"
        assert cancelled["cancelled_at"] is not None
        assert [l["action"] for l in cancelled["logs"]] == ["cancel", "generate"]
        assert provider.count("/auth") == 1

    def test_second_generate_is_rejected(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        client.post(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)
        r = client.post(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)
        assert r.status_code == 404
        assert r.json()["error"] == "Invoice not found or already submitted"

    def test_provider_rejection(self, client, admin_headers, seed, provider, session):
        provider.generate_response = {
            "Success": "N",
            "InfoDtls": [{"InfCd": "2172", "Desc": "Invalid buyer GSTIN"}],
        }
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        r = client.post(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)
        assert r.status_code == 400
        body = r.json()
        assert body["error"] == "E-Invoice generation failed: Invalid buyer GSTIN"
        assert body["error_code"] == "2172"

        status = client.get(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers).json()
        assert status["status"] == "error"
        assert status["error_message"] == body["error"]
        assert status["logs"][0]["status"] == "failed"

        # error status is still editable
        r = client.put(f"/api/invoices?id={inv['id']}", json={"remarks": "fixed"}, headers=admin_headers)
        assert r.status_code == 200

    def test_cancel_without_irn(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        r = client.delete(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Cannot cancel invoice without IRN"

    def test_submit_on_create(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"], submit_to_gst=True)
        assert inv["status"] == "generated"
        assert inv["irn_no"] == IRN
        assert inv["einvoice_error"] is None

    def test_submit_on_create_failure_keeps_invoice(self, client, admin_headers, seed, provider):
        provider.generate_status = 502
        provider.generate_response = {"message": "Bad gateway"}
        inv = _create_invoice(client, admin_headers, seed["local_customer"], submit_to_gst=True)
        assert inv["status"] == "error"
        assert inv["einvoice_error"]["error"] == "Bad gateway"
        assert inv["einvoice_error"]["error_code"] == "502"
        assert client.get(f"/api/invoices/{inv['id']}", headers=admin_headers).status_code == 200

    def test_submit_on_create_with_incomplete_customer(self, client, admin_headers, seed, session):
        r = client.post(
            "/api/masters/customers",
            json={"name": "Walk-in", "state_code": "27"},
            headers=admin_headers,
        )
        customer_id = r.json()["data"]["id"]
        inv = _create_invoice(client, admin_headers, customer_id, submit_to_gst=True)
        assert inv["status"] == "draft"
        assert inv["einvoice_error"]["error"] == "Customer PIN code is required for e-invoice"
        logs = session.exec(
            select(EInvoiceTransactionLog).where(EInvoiceTransactionLog.tax_invoice_id == inv["id"])
        ).all()
        assert logs == []


def _delete_customer_unchecked(customer_id):
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        conn.exec_driver_sql("DELETE FROM master_customer WHERE id = ?", (customer_id,))
        conn.commit()
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")


class TestReferentialIntegrity:
    def test_referenced_customer_cannot_be_deleted(self, client, admin_headers, seed):
        inv = _create_invoice(client, admin_headers, seed["local_customer"])
        r = client.delete(f"/api/masters/customers?id={seed['local_customer']}", headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Customer is still referenced by other records"

        r = client.get(f"/api/invoices/{inv['id']}/pdf", headers=admin_headers)
        assert r.status_code == 200

    def test_unreferenced_customer_can_be_deleted(self, client, admin_headers, seed):
        r = client.delete(f"/api/masters/customers?id={seed['outstation_customer']}", headers=admin_headers)
        assert r.status_code == 200

    def test_missing_customer_is_not_found(self, client, admin_headers, seed, provider):
        inv = _create_invoice(client, admin_headers, seed["outstation_customer"])
        _delete_customer_unchecked(seed["outstation_customer"])

        r = client.get(f"/api/invoices/{inv['id']}/pdf", headers=admin_headers)
        assert r.status_code == 404
        assert r.json() == {"error": "Customer not found"}

        r = client.post(f"/api/invoices/{inv['id']}/einvoice", headers=admin_headers)
        assert r.status_code == 404
        assert r.json() == {"error": "Customer not found"}
        assert provider.count("/invoice") == 0
