"""
TradeFlow Pools (TFP) - API Tests
"""

import time

import pytest
from fastapi.testclient import TestClient

import tfp_main_api
from tfp_config import settings, usd

DAY = 24 * 60 * 60
ADMIN = {"X-Caller-Id": settings.bootstrap_admin}
AMC = {"X-Caller-Id": "AMC-API"}
EXPORTER = {"X-Caller-Id": "EXP-API"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(tfp_main_api, "app_state", tfp_main_api.AppState())
    return TestClient(tfp_main_api.app)


@pytest.fixture
def verified_receivable(client):
    """Approve an exporter, grant a verifier, create and verify a $10,000 receivable."""
    client.post("/api/v1/roles", json={"caller_id": "AMC-API", "role": "verifier"}, headers=ADMIN)
    client.post("/api/v1/exporters", json={
        "exporter": "EXP-API",
        "kyc_hash": "0xkyc",
        "cac_hash": "0xcac",
        "bank_hash": "0xbank",
        "business_name": "Accra Cashew Co",
        "country": "GH"
    }, headers=ADMIN)

    response = client.post("/api/v1/receivables", json={
        "importer": "IMP-API",
        "amount_usd": usd(10_000),
        "due_date": int(time.time()) + 90 * DAY
    }, headers=EXPORTER)
    assert response.status_code == 201
    receivable_id = response.json()["id"]

    response = client.post(f"/api/v1/receivables/{receivable_id}/verify",
                           json={"risk_score": 20, "apr": 1100}, headers=AMC)
    assert response.status_code == 200
    return receivable_id


@pytest.fixture
def pool_id(client, verified_receivable):
    response = client.post("/api/v1/pools", json={
        "receivable_id": verified_receivable,
        "target_amount": usd(10_000),
        "min_investment": usd(100),
        "max_investment": usd(10_000),
        "maturity_date": int(time.time()) + 30 * DAY
    }, headers=AMC)
    assert response.status_code == 201
    return response.json()["id"]


class TestHealthEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["ledger_integrity"] == True

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "tfp_invariant_checks_total" in response.text


class TestAuthorization:

    def test_missing_caller_header(self, client):
        response = client.post("/api/v1/exporters", json={
            "exporter": "E", "kyc_hash": "k", "cac_hash": "c", "bank_hash": "b",
            "business_name": "N", "country": "NG"
        })
        assert response.status_code == 401

    def test_wrong_role(self, client):
        response = client.post("/api/v1/exporters", json={
            "exporter": "E", "kyc_hash": "k", "cac_hash": "c", "bank_hash": "b",
            "business_name": "N", "country": "NG"
        }, headers={"X-Caller-Id": "NOBODY"})
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"


class TestPoolLifecycleApi:

    def test_create_pool(self, client, pool_id):
        response = client.get(f"/api/v1/pools/{pool_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ACTIVE"
        assert body["apr"] == 1100
        assert body["exporter"] == "EXP-API"

    def test_full_lifecycle(self, client, pool_id):
        client.post("/api/v1/accounts/INV-API/deposits", json={"amount": usd(10_000)}, headers=ADMIN)
        client.post("/api/v1/accounts/IMP-API/deposits", json={"amount": usd(10_400)}, headers=ADMIN)

        response = client.post(f"/api/v1/pools/{pool_id}/investments",
                               json={"amount": usd(10_000)}, headers={"X-Caller-Id": "INV-API"})
        assert response.status_code == 200
        receipt = response.json()
        assert receipt["status"] == "FUNDED"
        assert receipt["disbursement"]["exporter_amount"] == usd(9_700)

        assert client.get("/api/v1/accounts/EXP-API").json()["balance"] == usd(9_700)

        response = client.post(f"/api/v1/pools/{pool_id}/maturity")
        assert response.json()["status"] == "FUNDED"

        response = client.post(f"/api/v1/pools/{pool_id}/payments",
                               json={"amount": usd(10_400), "payer": "IMP-API"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["status"] == "PAID"

        response = client.post(f"/api/v1/pools/{pool_id}/distribution")
        assert response.status_code == 200
        assert response.json()["payouts"] == {"INV-API": usd(10_400)}

        assert client.get(f"/api/v1/pools/{pool_id}").json()["status"] == "CLOSED"
        investment = client.get(f"/api/v1/pools/{pool_id}/investments/INV-API").json()
        assert investment["claim_tokens"] == "0"

        operations = [e["operation"] for e in client.get(f"/api/v1/pools/{pool_id}/events").json()]
        assert operations == [
            "PoolCreated", "InvestmentMade", "ExporterPaid", "PaymentRecorded", "YieldDistributed"
        ]

    def test_wrong_state_maps_to_409(self, client, pool_id):
        response = client.post(f"/api/v1/pools/{pool_id}/distribution")
        assert response.status_code == 409
        assert response.json()["error"] == "WRONG_STATE"

    def test_below_minimum_maps_to_422(self, client, pool_id):
        client.post("/api/v1/accounts/INV-API/deposits", json={"amount": usd(50)}, headers=ADMIN)
        response = client.post(f"/api/v1/pools/{pool_id}/investments",
                               json={"amount": usd(50)}, headers={"X-Caller-Id": "INV-API"})
        assert response.status_code == 422
        assert response.json()["error"] == "BELOW_MINIMUM"

    def test_unknown_pool_maps_to_404(self, client):
        response = client.get("/api/v1/pools/POOL-NOPE")
        assert response.status_code == 404

    def test_duplicate_verification_maps_to_409(self, client, verified_receivable):
        response = client.post(f"/api/v1/receivables/{verified_receivable}/verify",
                               json={"risk_score": 20, "apr": 1100}, headers=AMC)
        assert response.status_code == 409
        assert response.json()["error"] == "ALREADY_VERIFIED"

    def test_list_filters(self, client, pool_id):
        assert len(client.get("/api/v1/pools", params={"status_filter": "active"}).json()) == 1
        assert client.get("/api/v1/pools", params={"status_filter": "closed"}).json() == []
        assert client.get("/api/v1/pools", params={"status_filter": "bogus"}).status_code == 422
        assert len(client.get("/api/v1/receivables", params={"status_filter": "VERIFIED"}).json()) == 1

    def test_escrow_caller_cannot_invest(self, client, pool_id):
        response = client.post(f"/api/v1/pools/{pool_id}/investments",
                               json={"amount": usd(1_000)}, headers={"X-Caller-Id": f"ESCROW-{pool_id}"})
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"
        assert client.get(f"/api/v1/pools/{pool_id}").json()["total_invested"] == 0
