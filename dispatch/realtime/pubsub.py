"""
IN-PROCESS PUB/SUB

Purpose:
- Topic based fan-out for dispatch events (order offers, status changes,
  shipper locations)
- Each subscriber owns a thread-safe queue; publishers never block
- Optional per-subscription filter evaluated at publish time

Requirements:
• Publishing to a topic with no subscribers is a no-op
• A failing filter or handler never breaks the publisher
"""

import logging
import queue
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# ==================================================
# TOPICS
# ==================================================

ORDER_STATUS_UPDATED = "orderStatusUpdated"
ORDER_CONFIRMED_FOR_SHIPPERS = "orderConfirmedForShippers"
ORDER_ASSIGNED_TO_SHIPPER = "orderAssignedToShipper"
ORDER_REASSIGNED_TO_SHIPPERS = "orderReassignedToShippers"
SHIPPER_LOCATION_UPDATED = "shipperLocationUpdated"
PENDING_ASSIGNMENT_ABANDONED = "pendingAssignmentAbandoned"
OFFER_EXPIRED = "offerExpired"

PayloadFilter = Callable[[Dict[str, Any]], bool]


class Subscription:
    """A subscriber's inbox for one topic."""

    def __init__(self, pubsub: "PubSub", topic: str, payload_filter: Optional[PayloadFilter] = None):
        self._pubsub = pubsub
        self.topic = topic
        self.payload_filter = payload_filter
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self.closed = False

    def _offer(self, payload: Dict[str, Any]) -> None:
        if self.payload_filter is not None:
            try:
                if not self.payload_filter(payload):
                    return
            except Exception as e:
                logger.error(f"Subscription filter on '{self.topic}' failed: {e}")
                return
        self._queue.put(payload)

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next payload, or None when nothing arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        items = []
        while True:
            item = self.get()
            if item is None:
                return items
            items.append(item)

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._pubsub._unsubscribe(self)

    def __iter__(self):
        return iter(self.drain())


class PubSub:

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._handlers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = {}

    def subscribe(self, topic: str, payload_filter: Optional[PayloadFilter] = None) -> Subscription:
        subscription = Subscription(self, topic, payload_filter)
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    def on(self, topic: str, handler: Callable[[Dict[str, Any]], None]) -> None:
        """Register a synchronous callback for a topic."""
        with self._lock:
            self._handlers.setdefault(topic, []).append(handler)

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.topic, [])
            if subscription in subs:
                subs.remove(subscription)

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Deliver payload to every subscriber. Returns the number of inboxes offered."""
        with self._lock:
            subscriptions = list(self._subscriptions.get(topic, []))
            handlers = list(self._handlers.get(topic, []))

        for subscription in subscriptions:
            subscription._offer(payload)

        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Handler for '{topic}' failed: {e}")

        return len(subscriptions)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, []))
