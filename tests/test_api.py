"""HTTP surface: webhooks, client lifecycle and operator endpoints."""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import NOW, c2b_callback
from linkledger.api.callbacks import main as callbacks_api
from linkledger.api.clients import main as clients_api
from linkledger.api.payments import main as payments_api
from linkledger.db.engine_sync import get_sync_session
from linkledger.main import app
from linkledger.services import runtime
from linkledger.services.subscription_service import SubscriptionService


@pytest.fixture
def api(session, subscriptions, reconciliation):
    app.dependency_overrides[get_sync_session] = lambda: session
    app.dependency_overrides[clients_api.get_subscription_service] = lambda: subscriptions
    app.dependency_overrides[callbacks_api.get_reconciliation_service] = lambda: reconciliation
    app.dependency_overrides[payments_api.get_reconciliation_service] = lambda: reconciliation
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, api):
        assert api.get("/health").json() == {"status": "ok"}


class TestCallbacks:
    def test_paybill_callback_is_acknowledged_and_applied(self, api, make_client, session):
        client = make_client(billing_reference="ACC001")

        response = api.post("/api/callbacks/mobile-money-bill", json=c2b_callback(amount="250"))

        assert response.status_code == 200
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
        session.refresh(client)
        assert client.wallet_balance == Decimal("250.00")

    def test_malformed_body_is_still_acknowledged(self, api):
        response = api.post(
            "/api/callbacks/bank-bill", content=b"<xml>nope</xml>", headers={"Content-Type": "text/xml"}
        )
        assert response.status_code == 200
        assert response.json()["ResultCode"] == "0"

        stored = api.get("/api/payments", params={"status": "failed"}).json()
        assert len(stored) == 1
        assert stored[0]["external_reference"].startswith("malformed-")

    def test_unknown_gateway_is_404(self, api):
        assert api.post("/api/callbacks/carrier-pigeon", json={}).status_code == 404

    def test_manual_gateway_has_no_webhook(self, api):
        assert api.post("/api/callbacks/manual", json={"reference": "X", "amount": 1}).status_code == 404

    def test_processing_error_is_rejected_ack(self, api, reconciliation, monkeypatch):
        def explode(gateway, payload):
            raise RuntimeError("db down")

        monkeypatch.setattr(reconciliation, "reconcile", explode)
        response = api.post("/api/callbacks/mobile-money-bill", json=c2b_callback())
        assert response.status_code == 200
        assert response.json()["ResultCode"] == 1


class TestClientLifecycle:
    def test_register_approve_activate(self, api, adapter):
        created = api.post(
            "/api/clients",
            json={"name": "Jane", "monthly_rate": "1500", "phone_number": "0711000000", "ip_address": "10.0.0.9"},
        )
        assert created.status_code == 201
        client_id = created.json()["id"]
        assert created.json()["status"] == "pending"

        approved = api.post(f"/api/clients/{client_id}/approve", headers={"X-Actor": "alice"})
        assert approved.json()["client"]["approved_by"] == "alice"

        activated = api.post(f"/api/clients/{client_id}/activate")
        body = activated.json()
        assert body["transition"] == "activate"
        assert body["client"]["status"] == "active"
        assert [c[0] for c in adapter.calls] == ["restore"]

    def test_register_validates_rate(self, api):
        response = api.post("/api/clients", json={"name": "Jane", "monthly_rate": "0"})
        assert response.status_code == 422

    def test_unknown_client_is_404(self, api):
        assert api.get(f"/api/clients/{uuid.uuid4()}").status_code == 404

    def test_invalid_transition_is_409(self, api, make_client):
        client = make_client(status="pending")
        assert api.post(f"/api/clients/{client.id}/suspend").status_code == 409

    def test_reject_requires_reason(self, api, make_client):
        client = make_client(status="pending")
        assert api.post(f"/api/clients/{client.id}/reject", json={"reason": ""}).status_code == 422

    def test_suspend_then_restore(self, api, make_client, adapter):
        client = make_client()

        suspended = api.post(f"/api/clients/{client.id}/suspend").json()
        repeated = api.post(f"/api/clients/{client.id}/suspend").json()
        restored = api.post(f"/api/clients/{client.id}/restore").json()

        assert suspended["client"]["status"] == "suspended"
        assert repeated["applied"] is False
        assert restored["client"]["status"] == "active"
        assert [c[0] for c in adapter.calls] == ["suspend", "restore"]

    def test_bandwidth_update(self, api, make_client, adapter):
        client = make_client()
        response = api.put(f"/api/clients/{client.id}/bandwidth", json={"speed": "20M"})
        assert response.status_code == 200
        assert adapter.bandwidth[client.id] == "10000k/20000k"

    def test_network_retry_is_accepted(self, api, make_client):
        client = make_client(status="suspended")
        assert api.post(f"/api/clients/{client.id}/network/retry").status_code == 202

    def test_wallet_lists_transactions(self, api, make_client):
        client = make_client(billing_reference="ACC001")
        api.post("/api/callbacks/mobile-money-bill", json=c2b_callback(amount="300"))

        wallet = api.get(f"/api/clients/{client.id}/wallet").json()

        assert Decimal(wallet["balance"]) == Decimal("300.00")
        assert [t["transaction_type"] for t in wallet["transactions"]] == ["credit"]


class TestOperatorEndpoints:
    def test_match_unmatched_payment(self, api, make_client):
        client = make_client()
        api.post("/api/callbacks/mobile-money-bill", json=c2b_callback(bill_ref="ZZZ", msisdn="254799999999"))
        [held] = api.get("/api/payments", params={"status": "unmatched"}).json()

        response = api.post(f"/api/payments/{held['id']}/match", json={"client_id": str(client.id)})

        assert response.status_code == 200
        assert response.json()["status"] == "applied"

    def test_match_missing_payment_is_404(self, api, make_client):
        client = make_client()
        response = api.post("/api/payments/999/match", json={"client_id": str(client.id)})
        assert response.status_code == 404

    def test_manual_payment_needs_a_client_hint(self, api):
        response = api.post("/api/payments/manual", json={"reference": "CASH-1", "amount": "100"})
        assert response.status_code == 400

    def test_manual_payment(self, api, make_client):
        client = make_client()
        response = api.post(
            "/api/payments/manual",
            json={"reference": "CASH-1", "amount": "100", "client_id": str(client.id)},
        )
        assert response.status_code == 201
        assert response.json()["status"] == "applied"

    def test_payment_request_registration(self, api, make_client):
        client = make_client()
        response = api.post(
            "/api/payment-requests",
            json={
                "gateway": "mobile-money-push",
                "checkout_request_id": "ws_CO_42",
                "client_id": str(client.id),
                "amount": "1000",
                "phone_number": "0712345678",
            },
        )
        assert response.status_code == 201
        assert response.json()["phone_number"] == "254712345678"

    def test_failed_network_actions(self, api, make_client, adapter):
        client = make_client()
        adapter.fail_next = 3
        api.post(f"/api/clients/{client.id}/suspend")

        failed = api.get("/api/network-actions", params={"failed": "true"}).json()

        assert [(a["action"], a["attempts"]) for a in failed] == [("disconnect", 3)]

    def test_sweep_endpoint(self, api, make_client, dispatcher, notifier, settings, monkeypatch):
        client = make_client(subscription_end_date=NOW - timedelta(days=1))
        monkeypatch.setattr(
            runtime,
            "build_subscription_service",
            lambda s: SubscriptionService(s, network=dispatcher, notifier=notifier, settings=settings),
        )
        monkeypatch.setattr(runtime, "get_notifier", lambda: notifier)

        report = api.post("/api/internal/sweep").json()

        assert report["suspended"] == [str(client.id)]

    def test_sweep_endpoint_leaves_request_session_open(
        self, api, session, dispatcher, notifier, settings, monkeypatch
    ):
        monkeypatch.setattr(
            runtime,
            "build_subscription_service",
            lambda s: SubscriptionService(s, network=dispatcher, notifier=notifier, settings=settings),
        )
        monkeypatch.setattr(runtime, "get_notifier", lambda: notifier)
        closed = []
        monkeypatch.setattr(session, "close", lambda: closed.append(True))

        assert api.post("/api/internal/sweep").status_code == 200
        assert closed == []
