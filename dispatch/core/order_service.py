"""
ORDER SERVICE

Purpose:
- Order creation and quoting (distance, shipping fee, ETA)
- Status changes guarded by the order lifecycle
- Hands confirmed orders to the pending-assignment queue
- Settles shipper stats when a delivery completes or fails

Requirements:
• Every status change publishes orderStatusUpdated
• A failure to enqueue never rolls back a confirmation
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

from dispatch.assignment.errors import AssignmentError, OrderNotFoundError
from dispatch.assignment.pending_assignments import PendingAssignmentService
from dispatch.core.models import (
    DELIVERY_ASAP,
    ORDER_CANCELED,
    ORDER_COMPLETED,
    ORDER_CONFIRMED,
    ORDER_DELIVERING,
    ORDER_PENDING,
    SHIPPING_DELIVERED,
    SHIPPING_FAILED,
    Order,
    new_id,
)
from dispatch.core.order_lifecycle import validate_transition
from dispatch.integrations.mapbox import route_distance_km
from dispatch.intelligence.geo import estimate_delivery_time
from dispatch.intelligence.system_constraints import SystemConstraintsService
from dispatch.realtime.pubsub import ORDER_STATUS_UPDATED, PubSub
from dispatch.storage.repositories import Repositories

logger = logging.getLogger(__name__)


class OrderService:

    def __init__(
        self,
        repos: Repositories,
        constraints: SystemConstraintsService,
        pending: PendingAssignmentService,
        pubsub: PubSub,
        clock: Callable[[], float] = time.time,
    ):
        self.repos = repos
        self.constraints = constraints
        self.pending = pending
        self.pubsub = pubsub
        self.clock = clock

    def _require_order(self, order_id: str) -> Order:
        order = self.repos.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    # ==================================================
    # QUOTE / CREATE
    # ==================================================

    def calculate_order(
        self,
        delivery_lat: float,
        delivery_lng: float,
        restaurant_lat: float,
        restaurant_lng: float,
        items: Iterable[Dict[str, Any]] = (),
    ) -> Dict[str, Any]:
        """
        Quote an order before it is placed.

        items: iterables of {"price": ..., "quantity": ...}

        Distance is the Mapbox driving distance when a token is
        configured, straight-line distance otherwise.
        """
        route = route_distance_km(restaurant_lat, restaurant_lng, delivery_lat, delivery_lng)
        distance = route["distance_km"]
        shipping_fee = self.constraints.calculate_shipping_fee(distance)
        food_total = sum(float(i.get("price", 0)) * int(i.get("quantity", 1)) for i in items)

        return {
            "distance_km": distance,
            "distance_source": route["source"],
            "shipping_fee": shipping_fee,
            "food_total": food_total,
            "subtotal": food_total + shipping_fee,
            "estimated_delivery_time": estimate_delivery_time(distance),
            "deliverable": self.constraints.is_distance_within_limits(distance),
        }

    def create_order(
        self,
        user_id: str,
        restaurant_id: str,
        restaurant_lat: float,
        restaurant_lng: float,
        delivery_lat: float,
        delivery_lng: float,
        items: Iterable[Dict[str, Any]] = (),
        delivery_type: str = DELIVERY_ASAP,
        requested_delivery_time: Optional[str] = None,
    ) -> Order:
        quote = self.calculate_order(delivery_lat, delivery_lng, restaurant_lat, restaurant_lng, items)
        if not quote["deliverable"]:
            raise AssignmentError(
                f"Delivery distance {quote['distance_km']}km exceeds the maximum allowed"
            )

        now = self.clock()
        order = Order(
            id=new_id(),
            user_id=user_id,
            restaurant_id=restaurant_id,
            status=ORDER_PENDING,
            total=quote["subtotal"],
            restaurant_lat=restaurant_lat,
            restaurant_lng=restaurant_lng,
            delivery_lat=delivery_lat,
            delivery_lng=delivery_lng,
            shipping_fee=quote["shipping_fee"],
            delivery_distance=quote["distance_km"],
            estimated_delivery_time=quote["estimated_delivery_time"],
            delivery_type=delivery_type,
            requested_delivery_time=requested_delivery_time,
            created_at=now,
            updated_at=now,
        )
        order.shipper_earnings = round(order.shipping_fee * order.shipper_commission_rate)

        self.repos.orders.save(order)
        logger.info(f"Order {order.id} created for user {user_id} ({quote['distance_km']}km)")
        return order

    # ==================================================
    # STATUS
    # ==================================================

    def update_status(self, order_id: str, status: str) -> Order:
        """
        Move an order to a new status.

        Ending a delivery in progress goes through settlement, so the
        shipper's active count and the shipping detail stay in step.
        """
        order = self._require_order(order_id)

        if order.status == ORDER_DELIVERING and order.is_assigned:
            if status == ORDER_COMPLETED:
                return self.complete_delivery(order_id)
            if status == ORDER_CANCELED:
                return self.fail_delivery(order_id)

        return self._set_status(order, status)

    def _set_status(self, order: Order, status: str) -> Order:
        order_id = order.id
        validate_transition(order.status, status)

        previous = order.status
        order.status = status
        order.updated_at = self.clock()
        self.repos.orders.save(order)

        if previous == ORDER_CONFIRMED and status == ORDER_CANCELED:
            self.pending.remove_pending_assignment(order_id)

        self.pubsub.publish(ORDER_STATUS_UPDATED, {ORDER_STATUS_UPDATED: order.to_dict()})
        logger.info(f"Order {order_id} status {previous} -> {status}")
        return order

    def confirm_order(self, order_id: str) -> Order:
        order = self.update_status(order_id, ORDER_CONFIRMED)

        try:
            self.pending.add_pending_assignment(order_id, priority=1)
        except Exception as e:
            logger.error(f"Failed to add order {order_id} to pending assignments: {e}")

        return order

    # ==================================================
    # DELIVERY SETTLEMENT
    # ==================================================

    def _settle_shipping_detail(self, order_id: str, status: str) -> None:
        detail = self.repos.shipping_details.find_by_order(order_id)
        if detail is not None:
            detail.status = status
            self.repos.shipping_details.save(detail)

    def complete_delivery(self, order_id: str, on_time: bool = True) -> Order:
        order = self._require_order(order_id)
        if order.status != ORDER_DELIVERING or not order.is_assigned:
            raise AssignmentError(f"Order {order_id} is not being delivered")

        order = self._set_status(order, ORDER_COMPLETED)
        self._settle_shipping_detail(order_id, SHIPPING_DELIVERED)

        shipper = self.repos.shippers.get(order.shipper_id)
        if shipper is not None:
            shipper.completed_deliveries += 1
            if on_time:
                shipper.on_time_deliveries += 1
            else:
                shipper.late_deliveries += 1
            shipper.active_deliveries = max(0, shipper.active_deliveries - 1)
            shipper.total_earnings += order.shipper_earnings or 0
            shipper.last_active_at = self.clock()
            self.repos.shippers.save(shipper)

        return order

    def fail_delivery(self, order_id: str) -> Order:
        order = self._require_order(order_id)
        if order.status != ORDER_DELIVERING or not order.is_assigned:
            raise AssignmentError(f"Order {order_id} is not being delivered")

        order = self._set_status(order, ORDER_CANCELED)
        self._settle_shipping_detail(order_id, SHIPPING_FAILED)

        shipper = self.repos.shippers.get(order.shipper_id)
        if shipper is not None:
            shipper.failed_deliveries += 1
            shipper.active_deliveries = max(0, shipper.active_deliveries - 1)
            self.repos.shippers.save(shipper)

        logger.warning(f"Delivery of order {order_id} by shipper {order.shipper_id} failed")
        return order
