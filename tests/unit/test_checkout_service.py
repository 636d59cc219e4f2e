from decimal import Decimal

import pytest

from storefront.errors import (
    CaptureNotSupportedError,
    CheckoutValidationError,
    IdempotencyConflictError,
    OrderStoreError,
    ProcessorError,
)
from storefront.payments import service
from storefront.payments.schemas import CheckoutRequest

def _request(items, **extra):
    body = {"items": items, "customerEmail": "buyer@example.com"}
    body.update(extra)
    return CheckoutRequest.model_validate(body)

def test_below_tier_one_uses_base_price(order_store, fake_processor):
    # Arrange
    req = _request([{"sku": "bpc-157", "quantity": 9}])
    # Act
    result = service.create_checkout_session(req, fake_processor)
    # Assert
    line = fake_processor.sessions[0]["lines"][0]
    assert line.unit_amount == 4200
    assert line.line_total == 9 * 4200
    order = order_store.orders[result["orderId"]]
    assert order["status"] == "pending"
    assert order["items"] == [{"sku": "bpc-157", "name": "BPC-157", "unitPrice": 42.0, "quantity": 9,
                               "image": "assets/products/bpc-157.png"}]
    assert result["processorReference"] == "ref_1"
    assert order["processor_reference"] == "ref_1"

def test_tier_two_quantity_uses_lowest_price(order_store, fake_processor):
    service.create_checkout_session(_request([{"sku": "bpc-157", "quantity": 25}]), fake_processor)
    line = fake_processor.sessions[0]["lines"][0]
    assert line.unit_amount == 2800
    assert line.line_total == 25 * 2800

def test_client_prices_are_ignored(order_store, fake_processor):
    req = _request([{"sku": "reta", "quantity": 1, "price": 0.01, "cachedUnitPrice": 0.01}])
    service.create_checkout_session(req, fake_processor)
    assert fake_processor.sessions[0]["lines"][0].unit_amount == 7000

def test_lines_are_aggregated_before_pricing(order_store, fake_processor):
    req = _request([{"sku": "reta", "quantity": 6}, {"sku": "reta-wholesale", "quantity": 4}])
    service.create_checkout_session(req, fake_processor)
    lines = fake_processor.sessions[0]["lines"]
    assert len(lines) == 1
    assert (lines[0].quantity, lines[0].unit_amount) == (10, 5600)

def test_unknown_sku_names_the_item_and_creates_nothing(order_store, fake_processor):
    req = _request([{"sku": "reta", "quantity": 1}, {"sku": "ghost", "quantity": 1}])
    with pytest.raises(CheckoutValidationError) as exc:
        service.create_checkout_session(req, fake_processor)
    assert exc.value.field == "items[1].sku"
    assert order_store.orders == {}
    assert fake_processor.sessions == []

def test_guest_needs_email(order_store, fake_processor):
    req = CheckoutRequest.model_validate({"items": [{"sku": "reta", "quantity": 1}]})
    with pytest.raises(CheckoutValidationError) as exc:
        service.create_checkout_session(req, fake_processor)
    assert exc.value.field == "customerEmail"

def test_order_is_persisted_before_processor_call(order_store, fake_processor):
    seen = {}
    real_create = fake_processor.create_session

    def spy(**kwargs):
        seen["status"] = order_store.orders[kwargs["order_id"]]["status"]
        seen["metadata"] = kwargs["metadata"]
        return real_create(**kwargs)
    fake_processor.create_session = spy

    req = _request([{"sku": "reta", "quantity": 1}], userId="u-1", metadata={"order_id": "forged", "campaign": "fall"})
    result = service.create_checkout_session(req, fake_processor)

    assert seen["status"] == "pending"
    assert seen["metadata"]["order_id"] == result["orderId"]
    assert seen["metadata"]["campaign"] == "fall"
    assert seen["metadata"]["user_id"] == "u-1"

def test_processor_failure_leaves_pending_order(order_store, fake_processor):
    fake_processor.fail_with = ProcessorError("timeout")
    with pytest.raises(ProcessorError) as exc:
        service.create_checkout_session(_request([{"sku": "reta", "quantity": 1}]), fake_processor)
    assert "timeout" not in exc.value.to_dict()["detail"]
    [order] = order_store.orders.values()
    assert order["status"] == "pending"
    assert order["processor_reference"] is None

def test_unexpected_processor_exception_is_wrapped(order_store, fake_processor):
    fake_processor.fail_with = ConnectionError("boom")
    with pytest.raises(ProcessorError):
        service.create_checkout_session(_request([{"sku": "reta", "quantity": 1}]), fake_processor)

def test_store_failure_stops_before_processor(order_store, fake_processor):
    order_store.fail_insert = True
    with pytest.raises(OrderStoreError):
        service.create_checkout_session(_request([{"sku": "reta", "quantity": 1}]), fake_processor)
    assert fake_processor.sessions == []

def test_idempotency_key_replays_same_order(order_store, fake_processor):
    req = _request([{"sku": "reta", "quantity": 2}])
    first = service.create_checkout_session(req, fake_processor, idempotency_key="key-1")
    second = service.create_checkout_session(req, fake_processor, idempotency_key="key-1")
    assert first == second
    assert len(order_store.orders) == 1
    assert len(fake_processor.sessions) == 1

def test_idempotency_key_retries_orphan_for_same_order(order_store, fake_processor):
    req = _request([{"sku": "reta", "quantity": 2}])
    fake_processor.fail_with = ProcessorError("timeout")
    with pytest.raises(ProcessorError):
        service.create_checkout_session(req, fake_processor, idempotency_key="key-1")
    fake_processor.fail_with = None

    result = service.create_checkout_session(req, fake_processor, idempotency_key="key-1")

    assert len(order_store.orders) == 1
    assert fake_processor.sessions[0]["order_id"] == result["orderId"]
    assert fake_processor.sessions[0]["idempotency_key"] == "key-1"

def test_idempotency_key_with_other_cart_conflicts(order_store, fake_processor):
    service.create_checkout_session(_request([{"sku": "reta", "quantity": 2}]), fake_processor, idempotency_key="k")
    with pytest.raises(IdempotencyConflictError):
        service.create_checkout_session(_request([{"sku": "reta", "quantity": 3}]), fake_processor, idempotency_key="k")

def test_without_key_each_call_creates_an_order(order_store, fake_processor):
    req = _request([{"sku": "reta", "quantity": 2}])
    service.create_checkout_session(req, fake_processor)
    service.create_checkout_session(req, fake_processor)
    assert len(order_store.orders) == 2

def test_redirect_urls_only_on_own_site(order_store, fake_processor, monkeypatch):
    monkeypatch.setattr(service, "BASE_URL", "https://shop.example")
    req = _request([{"sku": "reta", "quantity": 1}], successUrl="https://evil.example/x", cancelUrl="https://shop.example/cart")
    result = service.create_checkout_session(req, fake_processor)
    urls = fake_processor.sessions[0]["urls"]
    assert urls.success_url == f"https://shop.example/order-confirmation?order_id={result['orderId']}"
    assert urls.cancel_url == "https://shop.example/cart"

def test_capture_not_supported_for_redirect_processor(order_store, fake_processor):
    with pytest.raises(CaptureNotSupportedError):
        service.capture_order(fake_processor, "ref_1")

def test_capture_completed_marks_order_paid(order_store, two_phase_processor):
    created = service.create_checkout_session(_request([{"sku": "reta", "quantity": 2}]), two_phase_processor)

    status, body = service.capture_order(two_phase_processor, created["processorReference"])

    assert status == 200
    assert body == {"status": "COMPLETED", "captureId": "cap_ref_1", "orderId": created["orderId"]}
    order = order_store.orders[created["orderId"]]
    assert order["status"] == "paid"
    assert Decimal(str(order["amount_total"])) == Decimal("140.00")
    assert order["paid_at"]
    assert order["customer_email"] == "ada@example.com"

def test_capture_not_completed_returns_status_verbatim(order_store, two_phase_processor):
    created = service.create_checkout_session(_request([{"sku": "reta", "quantity": 1}]), two_phase_processor)
    two_phase_processor.capture_status = "INSTRUMENT_DECLINED"

    status, body = service.capture_order(two_phase_processor, created["processorReference"])

    assert status == 400
    assert body["status"] == "INSTRUMENT_DECLINED"
    assert body["orderId"] == created["orderId"]
    assert order_store.orders[created["orderId"]]["status"] == "pending"

def test_capture_without_order_warns(order_store, two_phase_processor):
    two_phase_processor.capture_amount = Decimal("10.00")
    status, body = service.capture_order(two_phase_processor, "ref_unknown")
    assert status == 200
    assert "warning" in body
