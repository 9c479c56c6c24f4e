"""Integration tests for API endpoints"""

import pytest
from fastapi.testclient import TestClient


def auth(account_id: str) -> dict:
    return {"Authorization": f"Bearer {account_id}"}


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "capping_evaluation_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"


class TestPreview:
    def test_allowed_credit(self, client: TestClient):
        response = client.post(
            "/v1/transactions/preview",
            json={"type": "Credit", "amount": "4000", "target_account_id": "res-b"},
            headers=auth("dist-a"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["sender_balance_after"] == "₹11,000"
        assert data["target_balance_after"] == "₹4,500"

    def test_refused_debit_explains_why(self, client: TestClient):
        response = client.post(
            "/v1/transactions/preview",
            json={"type": "Debit", "amount": 300, "target_account_id": "res-c"},
            headers=auth("dist-a"),
        )

        data = response.json()
        assert data["allowed"] is False
        assert data["reason"] == "TargetBelowFloorAfterDeduction"
        assert data["warning"] == "Reseller C's balance will go below capping limit of ₹1,000. Cannot perform Debit."

    def test_invalid_amount(self, client: TestClient):
        response = client.post(
            "/v1/transactions/preview",
            json={"type": "Credit", "amount": "-5", "target_account_id": "res-b"},
            headers=auth("dist-a"),
        )

        assert response.json()["reason"] == "InvalidAmount"
        assert response.json()["amount"] is None

    def test_unknown_target(self, client: TestClient):
        response = client.post(
            "/v1/transactions/preview",
            json={"type": "Credit", "amount": "10", "target_account_id": "res-zz"},
            headers=auth("dist-a"),
        )
        assert response.status_code == 404

    def test_unknown_type_fails_validation(self, client: TestClient):
        response = client.post(
            "/v1/transactions/preview",
            json={"type": "Refund", "amount": "10", "target_account_id": "res-b"},
            headers=auth("dist-a"),
        )
        assert response.status_code == 422

    def test_unauthenticated_caller(self, client: TestClient):
        response = client.post(
            "/v1/transactions/preview",
            json={"type": "Credit", "amount": "10", "target_account_id": "res-b"},
        )
        assert response.status_code == 401


class TestSubmit:
    def test_credit_settles(self, client: TestClient, ledger):
        response = client.post(
            "/v1/transactions",
            json={"type": "Credit", "amount": "4000", "target_account_id": "res-b"},
            headers=auth("dist-a"),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["sender_balance_after_cents"] == 1_100_000
        assert data["target_balance_after_cents"] == 450_000
        assert data["message"] == "Credit successful!\nDistributor A: ₹11,000\nReseller B: ₹4,500"
        assert ledger.accounts["res-b"].balance_cents == 450_000

    def test_refused_locally_is_never_sent(self, client: TestClient, ledger):
        response = client.post(
            "/v1/transactions",
            json={"type": "Credit", "amount": "6000", "target_account_id": "res-b"},
            headers=auth("dist-a"),
        )

        assert response.status_code == 422
        assert response.json()["detail"]["reason"] == "SenderBelowFloor"
        assert ledger.records == []

    def test_self_credit(self, client: TestClient):
        response = client.post(
            "/v1/transactions",
            json={"type": "Self Credit", "amount": 5000},
            headers=auth("admin-1"),
        )

        assert response.status_code == 201
        assert response.json()["message"] == "Self Credit successful!\nNew Balance: ₹7,000"
        assert response.json()["target_balance_after_cents"] is None

    def test_idempotency_key_is_forwarded(self, client: TestClient, ledger):
        headers = {**auth("dist-a"), "Idempotency-Key": "order-42"}
        body = {"type": "Credit", "amount": "1000", "target_account_id": "res-b"}

        first = client.post("/v1/transactions", json=body, headers=headers)
        second = client.post("/v1/transactions", json=body, headers=headers)

        assert first.status_code == 201
        assert first.json()["request_id"] == "order-42"
        # Ledger replays the first receipt for a repeated key
        assert second.status_code == 201
        assert second.json()["transaction_id"] == first.json()["transaction_id"]
        assert len(ledger.records) == 1


class TestHistory:
    def test_history_counts_and_search(self, client: TestClient):
        for target, amount in [("res-b", "1000"), ("res-c", "250")]:
            client.post(
                "/v1/transactions",
                json={"type": "Credit", "amount": amount, "target_account_id": target},
                headers=auth("dist-a"),
            )

        response = client.get("/v1/transactions/history", params={"search": "reseller c"}, headers=auth("dist-a"))

        data = response.json()
        assert data["total"] == 1
        assert data["counts"]["Credit"] == 1
        assert data["counts"]["Debit"] == 0
        assert data["transactions"][0]["target_name"] == "Reseller C"

    def test_history_type_filter(self, client: TestClient):
        client.post("/v1/transactions", json={"type": "Self Credit", "amount": 10}, headers=auth("admin-1"))

        response = client.get("/v1/transactions/history", params={"type": "Credit"}, headers=auth("admin-1"))

        assert response.json()["total"] == 0


class TestCapping:
    def test_get_capping(self, client: TestClient):
        response = client.get("/v1/capping", headers=auth("dist-a"))

        assert response.status_code == 200
        assert response.json()["distributor_floor"] == "₹10,000"
        assert response.json()["reseller_floor_cents"] == 100_000

    def test_admin_updates_capping(self, client: TestClient, ledger):
        response = client.put(
            "/v1/capping",
            json={"distributor_floor": "20000", "reseller_floor": 1500},
            headers=auth("admin-1"),
        )

        assert response.status_code == 200
        assert response.json()["distributor_floor"] == "₹20,000"
        assert ledger.policy_store.current.reseller_floor_cents == 150_000

    @pytest.mark.parametrize("floors", [("-1", "1000"), ("10000", "abc")])
    def test_invalid_floors_rejected_locally(self, client: TestClient, ledger, policy, floors):
        response = client.put(
            "/v1/capping",
            json={"distributor_floor": floors[0], "reseller_floor": floors[1]},
            headers=auth("admin-1"),
        )

        assert response.status_code == 422
        assert ledger.policy_store.current == policy

    def test_distributor_cannot_update(self, client: TestClient):
        response = client.put(
            "/v1/capping",
            json={"distributor_floor": "0", "reseller_floor": "0"},
            headers=auth("dist-a"),
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Only admins can update capping settings"

    def test_new_floor_applies_to_next_preview(self, client: TestClient):
        client.put(
            "/v1/capping",
            json={"distributor_floor": "14000", "reseller_floor": "1000"},
            headers=auth("admin-1"),
        )

        response = client.post(
            "/v1/transactions/preview",
            json={"type": "Credit", "amount": "2000", "target_account_id": "res-b"},
            headers=auth("dist-a"),
        )

        assert response.json()["reason"] == "SenderBelowFloor"
