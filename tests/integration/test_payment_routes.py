import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.dependencies import get_paypal_service
from app.routes import payments
from app.services.payment_service import PayPalService
from tests.fakes import SIGNED_WEBHOOK_HEADERS, USER_ID, FakeNotifier, PayPalStub

CAPTURE_EVENT = {
    "id": "WH-1",
    "event_type": "PAYMENT.CAPTURE.COMPLETED",
    "resource": {"id": "CAPTURE-1", "custom_id": USER_ID},
}


@pytest.fixture
def profiles():
    repository = MagicMock()
    repository.set_pro = AsyncMock()
    return repository


@pytest.fixture
def stub():
    return PayPalStub()


@pytest.fixture
def client(build_app, stub, profiles, monkeypatch):
    monkeypatch.setattr(settings, "PAYPAL_CLIENT_ID", "client-id")
    monkeypatch.setattr(settings, "PAYPAL_CLIENT_SECRET", "client-secret")
    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "WEBHOOK-ID")

    service = PayPalService(
        transport=httpx.MockTransport(stub), profiles=profiles, notifier=FakeNotifier()
    )
    app = build_app(payments.router)
    app.dependency_overrides[get_paypal_service] = lambda: service
    return TestClient(app)


def test_create_checkout(client):
    response = client.post("/create-paypal-checkout")

    assert response.status_code == 200
    assert response.json() == {
        "orderId": "ORDER-1",
        "approvalUrl": "https://www.sandbox.paypal.com/approve/1",
    }


def test_checkout_without_paypal_credentials(client, monkeypatch):
    monkeypatch.setattr(settings, "PAYPAL_CLIENT_SECRET", None)

    response = client.post("/create-paypal-checkout")

    assert response.status_code == 503
    assert response.json()["error_code"] == "payments_not_configured"


def test_checkout_provider_failure(client, stub):
    stub.order_status = 422

    response = client.post("/create-paypal-checkout")

    assert response.status_code == 502
    assert response.json()["error_code"] == "payment_provider_error"


def test_verified_capture_upgrades_user(client, profiles):
    response = client.post(
        "/paypal-webhook",
        content=json.dumps(CAPTURE_EVENT),
        headers={**SIGNED_WEBHOOK_HEADERS, "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": True}
    profiles.set_pro.assert_awaited_once_with(USER_ID)


def test_webhook_with_invalid_signature_is_rejected(client, stub, profiles):
    stub.verification_status = "FAILURE"

    response = client.post(
        "/paypal-webhook",
        content=json.dumps(CAPTURE_EVENT),
        headers={**SIGNED_WEBHOOK_HEADERS, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_signature"
    profiles.set_pro.assert_not_awaited()


def test_webhook_without_signature_headers_is_rejected(client, profiles):
    response = client.post("/paypal-webhook", json=CAPTURE_EVENT)

    assert response.status_code == 400
    profiles.set_pro.assert_not_awaited()


def test_webhook_with_malformed_body(client):
    response = client.post(
        "/paypal-webhook", content=b"not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_json"


def test_ignored_event_is_acknowledged(client, profiles):
    event = {"id": "WH-2", "event_type": "CHECKOUT.ORDER.APPROVED", "resource": {}}

    response = client.post(
        "/paypal-webhook",
        content=json.dumps(event),
        headers={**SIGNED_WEBHOOK_HEADERS, "Content-Type": "application/json"},
    )

    assert response.json() == {"received": True, "processed": False}
    profiles.set_pro.assert_not_awaited()


def test_capture_after_approval_upgrades_user(client, stub, profiles):
    response = client.post("/capture-paypal-payment?orderId=ORDER-1")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "orderId": "ORDER-1",
        "status": "COMPLETED",
        "captureId": "CAPTURE-1",
    }
    profiles.set_pro.assert_awaited_once_with(USER_ID)


def test_capture_of_another_users_order(client, stub, profiles):
    stub.capture_custom_id = "someone-else"

    response = client.post("/capture-paypal-payment?orderId=ORDER-1")

    assert response.status_code == 403
    assert response.json()["error_code"] == "order_mismatch"
    profiles.set_pro.assert_not_awaited()


def test_capture_of_unfinished_payment(client, stub):
    stub.capture_status = "PENDING"

    response = client.post("/capture-paypal-payment?orderId=ORDER-1")

    assert response.status_code == 402
    assert response.json()["error_code"] == "payment_not_completed"


def test_capture_provider_failure(client, stub):
    stub.capture_http_status = 422

    response = client.post("/capture-paypal-payment?orderId=ORDER-1")

    assert response.status_code == 502
    assert response.json()["error_code"] == "payment_provider_error"


@pytest.mark.parametrize("query", ["", "?orderId=../v1/oauth2/token"])
def test_capture_requires_a_valid_order_id(client, query):
    response = client.post(f"/capture-paypal-payment{query}")

    assert response.status_code == 422
