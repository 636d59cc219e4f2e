import hashlib
import hmac
import json
import time

import pytest

from storefront.payments.registry import get_processor
from storefront.payments.stripe_client import StripeProcessor

URL = "/api/v1/payments/webhook"
SECRET = "whsec_integration"

def _sign(payload: bytes, secret: str = SECRET) -> str:
    t = int(time.time())
    v1 = hmac.new(secret.encode(), f"{t}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={t},v1={v1}"

def _event(event_type="checkout.session.completed", **obj):
    data = {
        "id": "cs_1",
        "payment_status": "paid",
        "amount_total": 37800,
        "currency": "usd",
        "payment_intent": "pi_1",
        "metadata": {"order_id": "order-1"},
        "customer_details": {"email": "buyer@example.com", "name": "Ada Buyer"},
    }
    data.update(obj)
    return json.dumps({"id": "evt_1", "object": "event", "type": event_type, "data": {"object": data}}).encode()

@pytest.fixture()
def stripe_webhooks(app):
    processor = StripeProcessor(secret_key="sk_test_x", webhook_secret=SECRET)
    app.dependency_overrides[get_processor] = lambda: processor
    yield processor
    app.dependency_overrides.pop(get_processor, None)

def test_signed_completion_marks_order_paid(client, order_store, stripe_webhooks):
    order_store.add(id="order-1", processor_reference="cs_1", user_id="u-1")
    payload = _event()

    r = client.post(URL, content=payload, headers={"Stripe-Signature": _sign(payload), "Content-Type": "application/json"})

    assert r.status_code == 200
    assert r.json() == {"received": True}
    assert order_store.orders["order-1"]["status"] == "paid"
    assert order_store.orders["order-1"]["amount_total"] == 378.0
    assert ("u-1", "order-1") in order_store.user_orders

def test_invalid_signature_is_400_without_change(client, order_store, stripe_webhooks):
    order_store.add(id="order-1", processor_reference="cs_1")
    payload = _event()

    r = client.post(URL, content=payload, headers={"Stripe-Signature": _sign(payload, "whsec_attacker")})

    assert r.status_code == 400
    assert order_store.orders["order-1"]["status"] == "pending"
    assert order_store.transition_calls == 0

def test_tampered_body_is_rejected(client, order_store, stripe_webhooks):
    order_store.add(id="order-1", processor_reference="cs_1")
    signature = _sign(_event())
    r = client.post(URL, content=_event(amount_total=1), headers={"Stripe-Signature": signature})
    assert r.status_code == 400
    assert order_store.orders["order-1"]["amount_total"] is None

def test_missing_signature_is_400(client, order_store, stripe_webhooks):
    assert client.post(URL, content=_event()).status_code == 400

def test_duplicate_delivery_is_acknowledged(client, order_store, stripe_webhooks):
    order_store.add(id="order-1", processor_reference="cs_1")
    payload = _event()
    for _ in range(2):
        r = client.post(URL, content=payload, headers={"Stripe-Signature": _sign(payload)})
        assert r.status_code == 200
    assert order_store.transition_calls == 1

def test_unknown_order_and_unknown_type_are_acknowledged(client, order_store, stripe_webhooks):
    payload = _event(id="cs_ghost", metadata={"order_id": "ghost"}, payment_intent="pi_ghost")
    assert client.post(URL, content=payload, headers={"Stripe-Signature": _sign(payload)}).status_code == 200
    payload = _event("invoice.created")
    assert client.post(URL, content=payload, headers={"Stripe-Signature": _sign(payload)}).status_code == 200

def test_store_failure_asks_for_redelivery(client, order_store, stripe_webhooks, monkeypatch):
    from storefront.errors import OrderStoreError

    def down(*args, **kwargs):
        raise OrderStoreError("down")
    monkeypatch.setattr("storefront.orders.repository.find_order_by_reference", down)
    payload = _event()
    r = client.post(URL, content=payload, headers={"Stripe-Signature": _sign(payload)})
    assert r.status_code == 500
    assert "down" not in r.text

def test_webhook_is_csrf_exempt_even_with_session_cookie(client, order_store, stripe_webhooks):
    order_store.add(id="order-1", processor_reference="cs_1")
    client.cookies.set("session", "anything")
    payload = _event()
    r = client.post(URL, content=payload, headers={"Stripe-Signature": _sign(payload)})
    assert r.status_code == 200
