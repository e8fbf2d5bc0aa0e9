# dispatch/realtime/location_tracking.py

import logging
import threading
import time
from typing import Callable, Dict, Optional

from dispatch.core.models import ShipperLocation
from dispatch.intelligence.geo import is_valid_coordinate
from dispatch.realtime.pubsub import SHIPPER_LOCATION_UPDATED, PubSub, Subscription
from dispatch.storage.repositories import OrderRepository
from security.access_guard import AccessDeniedError, require_order_access
from security.roles import CUSTOMER

logger = logging.getLogger(__name__)


class LocationTracker:
    """
    Live shipper position broadcast.

    Shippers push positions; a customer subscribes per order and only
    receives positions of the shipper currently assigned to that order.
    """

    def __init__(self, pubsub: PubSub, orders: OrderRepository, clock: Callable[[], float] = time.time):
        self.pubsub = pubsub
        self.orders = orders
        self.clock = clock
        self._lock = threading.Lock()
        self._latest: Dict[str, ShipperLocation] = {}

    def update_location(self, shipper_id: str, latitude: float, longitude: float) -> ShipperLocation:
        if not shipper_id:
            raise ValueError("shipper_id is required")
        if not is_valid_coordinate(latitude, longitude):
            raise ValueError(f"Invalid coordinates: {latitude}, {longitude}")

        location = ShipperLocation(
            shipper_id=shipper_id,
            latitude=float(latitude),
            longitude=float(longitude),
            updated_at=self.clock(),
        )

        with self._lock:
            self._latest[shipper_id] = location

        self.pubsub.publish(SHIPPER_LOCATION_UPDATED, {SHIPPER_LOCATION_UPDATED: location.to_dict()})
        return location

    def latest_location(self, shipper_id: str) -> Optional[ShipperLocation]:
        with self._lock:
            return self._latest.get(shipper_id)

    def subscribe_for_order(self, order_id: str, user_id: str) -> Subscription:
        """
        Open a location feed for an order.

        Raises:
            AccessDeniedError: order missing or not owned by user_id
        """
        order = self.orders.get(order_id)
        if order is None:
            raise AccessDeniedError(f"Order {order_id} not found")

        require_order_access(CUSTOMER, user_id, order)

        def _only_assigned_shipper(payload: Dict) -> bool:
            # Re-read so a reassignment mid-delivery switches the feed
            current = self.orders.get(order_id)
            if current is None or current.user_id != user_id:
                return False
            location = payload[SHIPPER_LOCATION_UPDATED]
            return current.shipper_id is not None and location["shipper_id"] == current.shipper_id

        logger.info(f"User {user_id} subscribed to shipper location for order {order_id}")
        return self.pubsub.subscribe(SHIPPER_LOCATION_UPDATED, _only_assigned_shipper)
