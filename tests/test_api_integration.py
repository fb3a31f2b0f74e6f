"""
Integration tests for the Payroll Loan API
Tests end-to-end workflows using FastAPI TestClient
"""

import base64
import pytest
from fastapi.testclient import TestClient

from payroll_core.api import create_app
from payroll_core.api.auth import PayrollSystem, get_payroll_system, issue_token
from payroll_core.config import PayrollConfig


SECRET = "api-tests-jwt-secret-0123456789abcdefgh"


def _system(auth_enabled: bool) -> PayrollSystem:
    return PayrollSystem(PayrollConfig(
        use_sqlite=False,
        auth_enabled=auth_enabled,
        jwt_secret=SECRET,
        signing_secret=SECRET,
        blob_base_url="http://testserver/contracts/download",
    ))


@pytest.fixture
def system():
    return _system(auth_enabled=False)


@pytest.fixture
def client(system):
    """Create a test client with auth disabled and in-memory storage"""
    app = create_app()
    app.dependency_overrides[get_payroll_system] = lambda: system
    return TestClient(app)


LOAN_REQUEST = {
    "employee_id": "emp-1",
    "total_amount": "100.00",
    "currency": "USD",
    "installment_count": 3,
    "start_date": "2024-01-15",
}


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "loans" in r.json()["endpoints"]

    def test_request_id_echoed(self, client):
        r = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert r.headers["X-Request-ID"] == "req-42"

    def test_request_id_generated(self, client):
        r = client.get("/health")
        assert len(r.headers["X-Request-ID"]) == 32


class TestLoanFlow:
    """End-to-end loan management tests"""

    def test_create_loan(self, client):
        r = client.post("/loans", json=LOAN_REQUEST)
        assert r.status_code == 201
        data = r.json()
        assert data["status"] == "active"
        assert [i["amount"] for i in data["installments"]] == ["33.33", "33.33", "33.34"]
        assert [i["due_date"] for i in data["installments"]] == [
            "2024-02-10", "2024-03-10", "2024-04-10"
        ]
        assert data["remaining_balance"] == "100.00"

    def test_validation_error(self, client):
        r = client.post("/loans", json={**LOAN_REQUEST, "total_amount": "0"})
        assert r.status_code == 400
        assert r.json()["detail"] == "Total amount must be a positive number."

    def test_permission_error(self, client):
        r = client.post("/loans", json=LOAN_REQUEST, headers={"X-Actor-Role": "employee"})
        assert r.status_code == 403
        assert r.json()["detail"] == "You do not have permission to create loans."

    def test_pay_until_complete(self, client):
        loan = client.post("/loans", json={**LOAN_REQUEST, "already_paid": 2}).json()
        last = loan["installments"][2]

        r = client.post(f"/loans/{loan['id']}/installments/{last['id']}/pay",
                        json={"source": "kpi_bonus"})
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "paid"
        assert data["installments"][2]["payment_source"] == "kpi_bonus"
        assert data["installments"][0]["payment_source"] == "manual"

    def test_cancel_and_filter(self, client):
        loan = client.post("/loans", json=LOAN_REQUEST).json()
        client.post("/loans", json={**LOAN_REQUEST, "employee_id": "emp-2"})

        r = client.post(f"/loans/{loan['id']}/cancel")
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"
        assert r.json()["pending_count"] == 3

        cancelled = client.get("/loans", params={"status": "cancelled"}).json()["loans"]
        assert [l["id"] for l in cancelled] == [loan["id"]]
        assert len(client.get("/loans").json()["loans"]) == 2

    def test_employee_loans(self, client):
        client.post("/loans", json=LOAN_REQUEST)
        client.post("/loans", json={**LOAN_REQUEST, "employee_id": "emp-2"})

        loans = client.get("/loans/employee/emp-2").json()["loans"]
        assert len(loans) == 1
        assert loans[0]["employee_id"] == "emp-2"

    def test_get_missing_loan(self, client):
        r = client.get("/loans/missing")
        assert r.status_code == 404
        assert r.json()["detail"] == "Loan not found."


class TestContracts:
    """Contract upload and signed download"""

    def test_upload_and_download(self, client):
        payload = {
            **LOAN_REQUEST,
            "contract_file": {
                "filename": "contract.pdf",
                "content_base64": base64.b64encode(b"%PDF-1.4 signed").decode(),
            },
        }
        loan = client.post("/loans", json=payload).json()
        assert loan["has_contract"]

        url = client.get(f"/loans/{loan['id']}/contract").json()["url"]
        r = client.get(url)
        assert r.status_code == 200
        assert r.content == b"%PDF-1.4 signed"
        assert r.headers["content-type"] == "application/pdf"

    def test_download_header_escapes_filename(self, client):
        payload = {
            **LOAN_REQUEST,
            "contract_file": {
                "filename": 'signed "final" \u00e9.pdf',
                "content_base64": base64.b64encode(b"%PDF-1.4").decode(),
            },
        }
        loan = client.post("/loans", json=payload).json()
        url = client.get(f"/loans/{loan['id']}/contract").json()["url"]

        r = client.get(url)
        assert r.status_code == 200
        assert r.headers["content-disposition"] == (
            'inline; filename="signed _final_ _.pdf"; '
            "filename*=UTF-8''signed%20%22final%22%20%C3%A9.pdf"
        )

    def test_bad_base64(self, client):
        payload = {**LOAN_REQUEST, "contract_file": {"filename": "c.pdf", "content_base64": "@@@"}}
        r = client.post("/loans", json=payload)
        assert r.status_code == 400
        assert client.get("/loans").json()["loans"] == []

    def test_tampered_token(self, client):
        r = client.get("/contracts/download", params={"token": "forged"})
        assert r.status_code == 403


class TestAuthentication:
    """Bearer token resolution"""

    @pytest.fixture
    def secured(self):
        system = _system(auth_enabled=True)
        app = create_app()
        app.dependency_overrides[get_payroll_system] = lambda: system
        return TestClient(app), system

    def test_missing_token(self, secured):
        client, _ = secured
        assert client.get("/loans").status_code == 401

    def test_invalid_token(self, secured):
        client, _ = secured
        r = client.get("/loans", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401

    def test_role_from_token(self, secured):
        client, system = secured
        hr = issue_token("hr-1", "hr", system.config)
        employee = issue_token("emp-1", "employee", system.config)

        r = client.post("/loans", json=LOAN_REQUEST, headers={"Authorization": f"Bearer {hr}"})
        assert r.status_code == 201
        assert r.json()["created_by"] == "hr-1"

        r = client.post("/loans", json=LOAN_REQUEST,
                        headers={"Authorization": f"Bearer {employee}"})
        assert r.status_code == 403

    def test_header_role_ignored_when_auth_enabled(self, secured):
        client, _ = secured
        r = client.post("/loans", json=LOAN_REQUEST, headers={"X-Actor-Role": "owner"})
        assert r.status_code == 401
