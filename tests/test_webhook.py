import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

import app.api.webhook as webhook_module
from app.core.config import settings
from app.main import app
from app.schemas.response import ActionResult

client = TestClient(app)
URL = f"{settings.API_PREFIX}/paystack/webhook"


def sign(body: bytes, secret: str = "sk_test_secret") -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def post_event(payload, signature=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    headers["x-paystack-signature"] = signature if signature is not None else sign(body)
    return client.post(URL, content=body, headers=headers)


@pytest.fixture
def verified(monkeypatch, paystack):
    calls = []

    async def fake_verify(order_id, reference):
        calls.append((order_id, reference))
        return ActionResult.ok("Payment verified successfully")

    monkeypatch.setattr(webhook_module, "verify_order_payment", fake_verify)
    return calls


def test_missing_signature(paystack):
    response = client.post(URL, json={"event": "charge.success", "data": {}})

    assert response.status_code == 401
    assert response.json()["error"] == "No signature provided"


def test_invalid_signature(paystack):
    response = post_event({"event": "charge.success", "data": {}}, signature="deadbeef")

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid signature"


def test_unconfigured_secret(paystack, monkeypatch):
    from app.services.paystack_service import get_paystack_service

    monkeypatch.setattr(get_paystack_service(), "secret_key", "")

    response = post_event({"event": "charge.success", "data": {}})

    assert response.status_code == 500


def test_malformed_body(paystack):
    response = post_event(b"not json")

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid JSON payload"


def test_charge_success_verifies_the_order(verified):
    payload = {
        "event": "charge.success",
        "data": {"reference": "T123", "metadata": {"order_id": "ORD-12345678"}},
    }

    response = post_event(payload)

    assert response.status_code == 200
    assert response.json() == {"verified": True, "order_id": "ORD-12345678", "reference": "T123"}
    assert verified == [("ORD-12345678", "T123")]


def test_charge_success_reads_custom_fields(verified):
    payload = {
        "event": "charge.success",
        "data": {
            "reference": "T124",
            "metadata": {"custom_fields": [{"variable_name": "order_id", "value": "ORD-87654321"}]},
        },
    }

    response = post_event(payload)

    assert response.status_code == 200
    assert verified == [("ORD-87654321", "T124")]


def test_charge_without_order_id(verified):
    response = post_event({"event": "charge.success", "data": {"reference": "T123", "metadata": {}}})

    assert response.status_code == 400
    assert response.json()["error"] == "Order ID not found in metadata"
    assert verified == []


def test_charge_verification_failure(paystack, monkeypatch):
    async def fake_verify(order_id, reference):
        return ActionResult.fail("Payment amount mismatch")

    monkeypatch.setattr(webhook_module, "verify_order_payment", fake_verify)

    response = post_event({"event": "charge.success", "data": {"reference": "T1", "metadata": {"order_id": "ORD-1"}}})

    assert response.status_code == 400
    assert response.json()["verified"] is False
    assert response.json()["error"] == "Payment amount mismatch"


def test_transfer_event_is_reconciled(paystack, monkeypatch):
    seen = []

    async def fake_reconcile(event, data):
        seen.append((event, data["reference"]))
        return ActionResult.ok("Payout updated")

    monkeypatch.setattr(webhook_module, "reconcile_transfer_event", fake_reconcile)

    response = post_event({"event": "transfer.success", "data": {"reference": "payout_x_1"}})

    assert response.status_code == 200
    assert response.json() == {"received": True, "event": "transfer.success", "reconciled": True}
    assert seen == [("transfer.success", "payout_x_1")]


def test_transfer_for_unknown_payout_is_still_acknowledged(paystack, fake_db):
    response = post_event({"event": "transfer.failed", "data": {"reference": "payout_unknown"}})

    assert response.status_code == 200
    assert response.json()["reconciled"] is False


def test_other_events_are_acknowledged(paystack):
    response = post_event({"event": "subscription.create", "data": {}})

    assert response.status_code == 200
    assert response.json() == {"received": True, "event": "subscription.create"}
