"""
Tests for the HTTP API.  Dependencies are overridden with the in-memory data
service and the dummy AI client from conftest.
"""

import json

import pytest
from fastapi.testclient import TestClient

from printshop_erp.ai_client import AIClient
from printshop_erp.ai_service import AIService
from printshop_erp.api import app, error_response, get_ai_service, get_data_service
from printshop_erp.config import Settings
from printshop_erp.errors import (
    NETWORK_MESSAGE,
    AIResponseParseError,
    ConfigurationError,
    StoreError,
    ValidationError,
)

BOSS = {"X-User-Id": "boss", "X-User-Name": "Boss"}
STAFF = {"X-User-Id": "u1", "X-User-Email": "staff@example.com"}


@pytest.fixture
def client(data, ai):
    app.dependency_overrides[get_data_service] = lambda: data
    app.dependency_overrides[get_ai_service] = lambda: ai
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_session_requires_identity(client):
    assert client.get("/session").status_code == 401


def test_session_provisions_profile(client):
    resp = client.get("/session", headers=STAFF)
    assert resp.status_code == 200
    assert resp.json()["name"] == "staff"
    assert resp.json()["role"] == "user"


def test_job_creation_and_invoice_status(client):
    resp = client.post("/jobs", json={"clientName": "Acme", "title": "Flyers", "price": 5000}, headers=STAFF)
    assert resp.status_code == 201
    job = resp.json()
    assert job["jobNumber"] % 10000 == 1
    assert job["userId"] == "u1"

    resp = client.post(f"/jobs/{job['id']}/invoice-status", json={"status": "paid"}, headers=STAFF)
    assert resp.status_code == 422
    assert "invoiceStatus" in resp.json()["fields"]

    resp = client.post("/invoices/from-jobs", json={"jobIds": [job["id"]]}, headers=STAFF)
    assert resp.status_code == 201
    assert resp.json()["totalAmount"] == pytest.approx(5500)


def test_missing_required_fields_are_reported_per_field(client):
    resp = client.post("/jobs", json={"title": "Flyers"}, headers=STAFF)
    assert resp.status_code == 422
    assert resp.json()["fields"] == {"clientName": "This field is required."}


def test_generic_crud_routes(client):
    resp = client.post("/customers", json={"customerName": "Acme", "address1": "Tokyo"}, headers=STAFF)
    assert resp.status_code == 201
    customer_id = resp.json()["id"]

    resp = client.patch(f"/customers/{customer_id}", json={"note": "VIP"}, headers=STAFF)
    assert resp.json()["note"] == "VIP"
    assert [c["id"] for c in client.get("/customers", headers=STAFF).json()] == [customer_id]

    assert client.delete(f"/customers/{customer_id}", headers=STAFF).status_code == 204
    assert client.get(f"/customers/{customer_id}", headers=STAFF).status_code == 404
    assert client.get("/no_such_kind", headers=STAFF).status_code == 404


def test_application_flow_with_approver_check(client):
    route = client.post(
        "/approval_routes", json={"name": "Boss only", "routeData": {"steps": [{"approverId": "boss"}]}}, headers=STAFF
    ).json()
    resp = client.post("/applications", json={"approvalRouteId": route["id"], "formData": {"amount": 3000}}, headers=STAFF)
    assert resp.status_code == 201
    app_id = resp.json()["id"]

    assert client.post(f"/applications/{app_id}/approve", headers=STAFF).status_code == 403
    assert client.post(f"/applications/{app_id}/reject", json={"reason": " "}, headers=BOSS).status_code == 422

    resp = client.post(f"/applications/{app_id}/approve", headers=BOSS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"

    assert client.post(f"/applications/{app_id}/approve", headers=BOSS).status_code == 409
    listed = client.get("/applications", headers=STAFF).json()
    assert [a["status"] for a in listed] == ["approved"]


def test_empty_route_is_refused_without_a_record(client):
    route = client.post("/approval_routes", json={"name": "Empty", "routeData": {"steps": []}}, headers=STAFF).json()
    resp = client.post("/applications", json={"approvalRouteId": route["id"]}, headers=STAFF)
    assert resp.status_code == 500
    assert "hint" in resp.json()
    assert client.get("/applications", headers=STAFF).json() == []


def test_inbox_upload_review_and_approve(client, openai_client):
    openai_client.reply(json.dumps({"vendorName": "Paper Co", "totalAmount": 2200, "account": "消耗品費"}))
    resp = client.post("/inbox", files={"file": ("receipt.png", b"png", "image/png")}, headers=STAFF)
    assert resp.status_code == 201
    item = resp.json()
    assert item["status"] == "pending_review"

    resp = client.patch(
        f"/inbox/{item['id']}", json={"extractedData": {**item["extractedData"], "totalAmount": 2310}}, headers=STAFF
    )
    assert resp.json()["extractedData"]["totalAmount"] == 2310

    assert client.post(f"/inbox/{item['id']}/approve", headers=STAFF).json()["status"] == "approved"
    assert client.post(f"/inbox/{item['id']}/approve", headers=STAFF).status_code == 409
    assert client.get("/journal_entries", headers=STAFF).json()[0]["debit"] == 2310


def test_inbox_upload_when_ai_is_off(client, data, openai_client):
    app.dependency_overrides[get_ai_service] = lambda: AIService(
        AIClient(Settings(openai_api_key="k", ai_disabled=True), client=openai_client)
    )
    resp = client.post("/inbox", files={"file": ("receipt.png", b"png", "image/png")}, headers=STAFF)
    assert resp.status_code == 503
    assert data.list("inbox_items") == []


def test_company_analysis_is_stored_on_customer(client, openai_client, data):
    customer = client.post("/customers", json={"customerName": "Acme"}, headers=STAFF).json()
    openai_client.reply("not json at all")
    resp = client.post(f"/ai/company-analysis/{customer['id']}", headers=STAFF)
    assert resp.status_code == 200
    assert resp.json()["swot"] == "JSON解析エラー"
    assert data.get("customers", customer["id"])["aiAnalysis"]["painPointsAndNeeds"] == "not json at all"


def test_postal_label(client):
    est = client.post("/estimates", json={"customerName": "Acme", "title": "Cards"}, headers=STAFF).json()
    assert est["estimateNumber"] == 1
    resp = client.get(f"/estimates/{est['id']}/postal-label.svg", headers=STAFF)
    assert resp.headers["content-type"].startswith("image/svg+xml")
    assert "Acme様" in resp.text


def test_state_reload(client):
    client.post("/jobs", json={"clientName": "Acme", "title": "Flyers"}, headers=STAFF)
    body = client.get("/state/reload", headers=STAFF).json()
    assert body["ok"] is True
    assert body["counts"]["jobs"] == 1


def test_invoice_from_jobs_rejects_invoiced_job(client):
    job = client.post("/jobs", json={"clientName": "Acme", "title": "Flyers", "price": 5000}, headers=STAFF).json()
    assert client.post("/invoices/from-jobs", json={"jobIds": [job["id"]]}, headers=STAFF).status_code == 201

    resp = client.post("/invoices/from-jobs", json={"jobIds": [job["id"]]}, headers=STAFF)
    assert resp.status_code == 422
    assert job["id"] in resp.json()["fields"]
    assert len(client.get("/invoices", headers=STAFF).json()) == 1


def test_generic_job_writes_keep_invoice_order(client):
    job = client.post("/jobs", json={"clientName": "Acme", "title": "Flyers"}, headers=STAFF).json()
    resp = client.put("/jobs", json={"id": job["id"], "invoiceStatus": "paid"}, headers=STAFF)
    assert resp.status_code == 422
    assert client.patch(f"/jobs/{job['id']}", json={"invoiceStatus": "paid"}, headers=STAFF).status_code == 422
    assert client.get(f"/jobs/{job['id']}", headers=STAFF).json()["invoiceStatus"] == "uninvoiced"


def test_generic_application_writes_are_refused(client):
    empty = client.post("/approval_routes", json={"name": "Empty", "routeData": {"steps": []}}, headers=STAFF).json()
    resp = client.put("/applications", json={"applicantId": "u1", "approvalRouteId": empty["id"]}, headers=STAFF)
    assert resp.status_code == 422
    assert client.get("/applications", headers=STAFF).json() == []

    route = client.post(
        "/approval_routes", json={"name": "Boss", "routeData": {"steps": [{"approverId": "boss"}]}}, headers=STAFF
    ).json()
    app_id = client.post("/applications", json={"approvalRouteId": route["id"]}, headers=STAFF).json()["id"]
    client.post(f"/applications/{app_id}/reject", json={"reason": "No budget"}, headers=BOSS)

    resp = client.patch(f"/applications/{app_id}", json={"status": "approved"}, headers=STAFF)
    assert resp.status_code == 422
    assert "status" in resp.json()["fields"]
    assert client.get(f"/applications/{app_id}", headers=STAFF).json()["status"] == "rejected"


def test_generic_inbox_status_write_is_refused(client, openai_client):
    openai_client.reply(json.dumps({"vendorName": "Paper Co", "totalAmount": 2200, "account": "消耗品費"}))
    item = client.post("/inbox", files={"file": ("receipt.png", b"png", "image/png")}, headers=STAFF).json()

    resp = client.patch(f"/inbox_items/{item['id']}", json={"status": "approved"}, headers=STAFF)
    assert resp.status_code == 422
    assert client.get(f"/inbox_items/{item['id']}", headers=STAFF).json()["status"] == "pending_review"
    assert client.get("/journal_entries", headers=STAFF).json() == []


@pytest.mark.parametrize(
    "exc, status",
    [
        (StoreError("x failed: fetch failed", unavailable=True), 503),
        (StoreError("x failed: constraint"), 500),
        (ConfigurationError("OPENAI_API_KEY is not set"), 500),
        (ValidationError("bad", {"a": "required"}), 422),
        (AIResponseParseError("garbled"), 502),
    ],
)
def test_error_response_mapping(exc, status):
    code, body = error_response(exc)
    assert code == status
    if status == 503:
        assert body["detail"] == NETWORK_MESSAGE
