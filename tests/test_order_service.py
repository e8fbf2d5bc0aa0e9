import pytest

from conftest import HCMC, make_order, make_shipper
from dispatch.assignment.errors import AssignmentError, OrderNotFoundError
from dispatch.core.models import (
    ORDER_CANCELED,
    ORDER_COMPLETED,
    ORDER_CONFIRMED,
    ORDER_PENDING,
    SHIPPING_DELIVERED,
    SHIPPING_FAILED,
)
from dispatch.core.order_lifecycle import OrderLifecycleError
from dispatch.realtime.pubsub import ORDER_STATUS_UPDATED

CUSTOMER_HOME = (10.7500, 106.6500)


def test_calculate_order_quote(runtime):
    quote = runtime.orders.calculate_order(
        *CUSTOMER_HOME, *HCMC,
        items=[{"price": 45000, "quantity": 2}, {"price": 10000, "quantity": 1}],
    )

    assert 5.0 < quote["distance_km"] <= 10
    assert quote["shipping_fee"] == 25000
    assert quote["food_total"] == 100000
    assert quote["subtotal"] == 125000
    assert quote["estimated_delivery_time"] == round(10 + quote["distance_km"] * 4)
    assert quote["deliverable"] is True
    assert quote["distance_source"] == "fallback"


def test_calculate_order_outside_range(runtime):
    hanoi = (21.0278, 105.8342)
    quote = runtime.orders.calculate_order(*hanoi, *HCMC)
    assert quote["deliverable"] is False
    assert quote["estimated_delivery_time"] == 60


def test_create_order_fills_fee_and_earnings(runtime, repos):
    order = runtime.orders.create_order("alice", "pho-24", *HCMC, *CUSTOMER_HOME)

    stored = repos.orders.get(order.id)
    assert stored.status == ORDER_PENDING
    assert stored.shipping_fee == 25000
    assert stored.shipper_earnings == 20000
    assert stored.total == 25000


def test_create_order_rejects_undeliverable(runtime):
    with pytest.raises(AssignmentError):
        runtime.orders.create_order("alice", "pho-24", *HCMC, 21.0278, 105.8342)


def test_update_status_publishes_and_validates(runtime, repos, clock):
    events = runtime.pubsub.subscribe(ORDER_STATUS_UPDATED)
    order = make_order(repos, clock, status=ORDER_PENDING)

    runtime.orders.update_status(order.id, ORDER_CANCELED)

    assert events.get()[ORDER_STATUS_UPDATED]["status"] == ORDER_CANCELED
    with pytest.raises(OrderLifecycleError):
        runtime.orders.update_status(order.id, ORDER_CONFIRMED)
    with pytest.raises(OrderNotFoundError):
        runtime.orders.update_status("missing", ORDER_CONFIRMED)


def test_confirm_enqueues_pending_assignment(runtime, repos, clock):
    order = make_order(repos, clock, status=ORDER_PENDING)

    runtime.orders.confirm_order(order.id)

    assert repos.orders.get(order.id).status == ORDER_CONFIRMED
    assert repos.pending_assignments.find_by_order(order.id) is not None


def test_confirm_survives_enqueue_failure(runtime, repos, clock, monkeypatch):
    order = make_order(repos, clock, status=ORDER_PENDING)

    def broken(order_id, priority=1):
        raise RuntimeError("queue down")

    monkeypatch.setattr(runtime.pending, "add_pending_assignment", broken)
    confirmed = runtime.orders.confirm_order(order.id)

    assert confirmed.status == ORDER_CONFIRMED
    assert repos.pending_assignments.count() == 0


def test_cancelling_confirmed_order_removes_pending(runtime, repos, clock):
    order = make_order(repos, clock, status=ORDER_PENDING)
    runtime.orders.confirm_order(order.id)

    runtime.orders.update_status(order.id, ORDER_CANCELED)

    assert repos.pending_assignments.count() == 0


def _delivering(runtime, repos, clock):
    shipper = make_shipper(repos, clock)
    order = make_order(repos, clock, shipper_earnings=12000)
    runtime.offers.assign_order_to_shipper(order.id, shipper.id)
    return order, shipper


def test_complete_delivery_updates_shipper(runtime, repos, clock):
    order, shipper = _delivering(runtime, repos, clock)

    runtime.orders.complete_delivery(order.id, on_time=False)

    assert repos.orders.get(order.id).status == ORDER_COMPLETED
    updated = repos.shippers.get(shipper.id)
    assert updated.completed_deliveries == shipper.completed_deliveries + 1
    assert updated.late_deliveries == shipper.late_deliveries + 1
    assert updated.active_deliveries == 0
    assert updated.total_earnings == 12000
    assert repos.shipping_details.find_by_order(order.id).status == SHIPPING_DELIVERED


def test_fail_delivery_updates_shipper(runtime, repos, clock):
    order, shipper = _delivering(runtime, repos, clock)

    runtime.orders.fail_delivery(order.id)

    assert repos.orders.get(order.id).status == ORDER_CANCELED
    updated = repos.shippers.get(shipper.id)
    assert updated.failed_deliveries == shipper.failed_deliveries + 1
    assert updated.active_deliveries == 0
    assert repos.shipping_details.find_by_order(order.id).status == SHIPPING_FAILED


def test_settlement_requires_delivering_order(runtime, repos, clock):
    order = make_order(repos, clock)
    with pytest.raises(AssignmentError):
        runtime.orders.complete_delivery(order.id)
    with pytest.raises(AssignmentError):
        runtime.orders.fail_delivery(order.id)


def test_cancelling_delivering_order_settles_shipper(runtime, repos, clock):
    order, shipper = _delivering(runtime, repos, clock)

    runtime.orders.update_status(order.id, ORDER_CANCELED)

    assert repos.orders.get(order.id).status == ORDER_CANCELED
    updated = repos.shippers.get(shipper.id)
    assert updated.active_deliveries == 0
    assert updated.failed_deliveries == shipper.failed_deliveries + 1
    assert repos.shipping_details.find_by_order(order.id).status == SHIPPING_FAILED


def test_completing_via_status_update_settles_shipper(runtime, repos, clock):
    order, shipper = _delivering(runtime, repos, clock)

    runtime.orders.update_status(order.id, ORDER_COMPLETED)

    updated = repos.shippers.get(shipper.id)
    assert updated.active_deliveries == 0
    assert updated.completed_deliveries == shipper.completed_deliveries + 1
    assert repos.shipping_details.find_by_order(order.id).status == SHIPPING_DELIVERED
