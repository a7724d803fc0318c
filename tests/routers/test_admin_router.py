"""Administrator API: auth, listing, cancellation and event replay"""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.middleware import setup_exception_handlers
from mocks import FIXED_NOW, fixed_clock, green_payload
from routers import admin_router
from schemas.payments import PaymentStatus, Vendor, WebhookEvent
from services.payment_service import PaymentService

TOKEN = "admin-secret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def payment_service(store):
    return PaymentService(store, clock=fixed_clock)


@pytest.fixture
def make_client(payment_service, webhook_service):
    def _make(token=TOKEN):
        app = FastAPI()
        setup_exception_handlers(app)
        admin_router.set_dependencies(payment_service, webhook_service, token)
        app.include_router(admin_router.router)
        return TestClient(app)

    yield _make
    admin_router.set_dependencies(None)


@pytest.fixture
def client(make_client):
    return make_client()


def test_missing_token_is_401(client):
    response = client.get("/api/v1/admin/health")
    assert response.status_code == 401
    assert response.json()["status"] == "error"


def test_wrong_token_is_403(client):
    response = client.get("/api/v1/admin/health", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 403


def test_admin_api_disabled_without_configured_token(make_client):
    client = make_client(token=None)
    response = client.get("/api/v1/admin/health", headers=AUTH)
    assert response.status_code == 503


def test_health(client):
    response = client.get("/api/v1/admin/health", headers=AUTH)
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ok"}


def test_list_payments_filters_by_status(client, store):
    store.add_payment(vendor_transaction_id="a")
    store.add_payment(vendor_transaction_id="b", status=PaymentStatus.COMPLETED, processed_at=FIXED_NOW)

    response = client.get("/api/v1/admin/payments", params={"status": "completed"}, headers=AUTH)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["payments"][0]["vendor_transaction_id"] == "b"


def test_list_payments_rejects_unknown_status(client):
    response = client.get("/api/v1/admin/payments", params={"status": "lost"}, headers=AUTH)
    assert response.status_code == 422


def test_statistics(client, store):
    store.add_payment(vendor_transaction_id="a", amount=7900, status=PaymentStatus.COMPLETED, processed_at=FIXED_NOW)

    response = client.get("/api/v1/admin/payments/statistics", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["data"]["total_revenue"] == 7900


def test_cancel_pending_payment(client, store):
    payment = store.add_payment(vendor_transaction_id="a")

    response = client.post(
        f"/api/v1/admin/payments/{payment.id}/cancel",
        json={"reason": "checkout abandoned"},
        headers=AUTH,
    )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"
    assert store.payments[payment.id].status is PaymentStatus.CANCELLED


def test_cancel_completed_payment_is_409(client, store):
    payment = store.add_payment(vendor_transaction_id="a", status=PaymentStatus.COMPLETED, processed_at=FIXED_NOW)

    response = client.post(f"/api/v1/admin/payments/{payment.id}/cancel", json={}, headers=AUTH)

    assert response.status_code == 409
    assert response.json()["error_code"] == "CONFLICT"


def test_cancel_unknown_payment_is_404(client):
    response = client.post("/api/v1/admin/payments/missing/cancel", json={}, headers=AUTH)
    assert response.status_code == 404


def test_replay_stored_failed_event(client, store):
    store.add_user("user_1")
    payment = store.add_payment(vendor_transaction_id="grn_tx_1", user_id="user_1", credits_amount=3)
    event = WebhookEvent(
        vendor=Vendor.GREEN,
        vendor_event_id="evt_1",
        event_type="payment.completed",
        raw_payload=green_payload(),
        received_at=FIXED_NOW,
    )
    store.events[(Vendor.GREEN, "evt_1")] = {"event": event, "status": "failed", "details": {}}

    response = client.post(
        "/api/v1/admin/webhooks/green/evt_1/replay",
        json={"reason": "user created"},
        headers=AUTH,
    )

    assert response.status_code == 200
    ack = response.json()["data"]
    assert ack["status"] == "processed"
    assert ack["paymentId"] == payment.id
    assert store.users["user_1"].credits_remaining == 3


def test_replay_unknown_event_is_404(client):
    response = client.post("/api/v1/admin/webhooks/hotmart/nope/replay", json={}, headers=AUTH)
    assert response.status_code == 404
