from storefront.orders.models import (
    OrderStatus,
    can_transition,
    build_pending_order,
    history_summary,
    public_view,
)

def test_forward_only_graph():
    assert can_transition(OrderStatus.PENDING, OrderStatus.PAID)
    assert can_transition(OrderStatus.PENDING, OrderStatus.EXPIRED)
    assert can_transition(OrderStatus.PENDING, OrderStatus.PAYMENT_FAILED)
    assert can_transition(OrderStatus.PAID, OrderStatus.PARTIALLY_REFUNDED)
    assert can_transition(OrderStatus.PARTIALLY_REFUNDED, OrderStatus.REFUNDED)
    assert not can_transition(OrderStatus.PENDING, OrderStatus.REFUNDED)
    assert not can_transition(OrderStatus.EXPIRED, OrderStatus.PAID)
    assert not can_transition(OrderStatus.PAYMENT_FAILED, OrderStatus.PAID)

def test_no_state_leads_back_to_pending():
    for status in OrderStatus:
        assert not can_transition(status, OrderStatus.PENDING)

def test_pending_order_shape():
    order = build_pending_order(
        order_id="o-1",
        processor="stripe",
        items=[{"sku": "reta", "quantity": 1}],
        currency="USD",
        customer_email="a@example.com",
    )
    assert order["status"] == "pending"
    assert order["amount_total"] is None
    assert order["processor_reference"] is None
    assert order["refunded_amount"] == 0
    assert order["user_id"] is None
    assert order["created_at"] == order["updated_at"]

def test_projections_hide_identity():
    order = build_pending_order(order_id="o-1", processor="paypal", items=[], currency="USD",
                                customer_email="a@example.com", user_id="u-1")
    view = public_view(order)
    assert view["orderId"] == "o-1"
    assert "customer_email" not in view and "user_id" not in view
    summary = history_summary(order)
    assert summary["user_id"] == "u-1"
    assert summary["order_id"] == "o-1"
