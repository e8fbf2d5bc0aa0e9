"""
SHIPPER OFFER HOLDS

Purpose:
- Let exactly one shipper consider a confirmed order at a time
- A hold lasts offer_timeout_seconds; accept assigns, reject or expiry
  re-broadcasts the order to everyone not yet tried

Flow:
    request_order_assignment -> hold
    hold -> accept_assignment -> assign_order_to_shipper
    hold -> reject_assignment / expire_offers -> reassign
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from dispatch.assignment.errors import AssignmentConflictError, AssignmentError, OrderNotFoundError
from dispatch.core.models import (
    ORDER_CONFIRMED,
    ORDER_DELIVERING,
    SHIPPING_PENDING,
    Order,
    ShippingDetail,
    new_id,
)
from dispatch.core.order_lifecycle import validate_transition
from dispatch.realtime.pubsub import (
    OFFER_EXPIRED,
    ORDER_ASSIGNED_TO_SHIPPER,
    ORDER_REASSIGNED_TO_SHIPPERS,
    ORDER_STATUS_UPDATED,
    PubSub,
)
from dispatch.storage.repositories import Repositories

logger = logging.getLogger(__name__)

DELIVERY_ETA_SECONDS = 30 * 60
HISTORY_TTL_SECONDS = 60 * 60


@dataclass
class OfferHold:
    id: str
    order_id: str
    shipper_id: str
    created_at: float
    expires_at: float


@dataclass
class OfferHistory:
    order_id: str
    created_at: float
    rejected_shipper_ids: List[str] = field(default_factory=list)


class ShipperOfferService:

    def __init__(
        self,
        repos: Repositories,
        pubsub: PubSub,
        clock: Callable[[], float] = time.time,
        offer_timeout_seconds: float = 120,
    ):
        self.repos = repos
        self.pubsub = pubsub
        self.clock = clock
        self.offer_timeout_seconds = offer_timeout_seconds
        self._lock = threading.RLock()
        self._holds: Dict[str, OfferHold] = {}        # order_id -> hold
        self._history: Dict[str, OfferHistory] = {}   # order_id -> rejections

    # ──────────────────────────────────────────────
    # HOLD LIFECYCLE
    # ──────────────────────────────────────────────

    def request_order_assignment(self, order_id: str, shipper_id: str) -> Dict:
        """
        Place a temporary hold on an order for one shipper.

        Raises:
            OrderNotFoundError: unknown order
            AssignmentError: order not confirmed, or user is not an approved shipper
            AssignmentConflictError: order already assigned or held
        """
        shipper = self.repos.shippers.get(shipper_id)
        if shipper is None or not shipper.is_approved_shipper:
            raise AssignmentError(f"User {shipper_id} is not an approved shipper")

        with self._lock:
            order = self.repos.orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(f"Order {order_id} not found")
            if order.status != ORDER_CONFIRMED:
                raise AssignmentError(f"Order {order_id} is not available (status: {order.status})")
            if order.is_assigned:
                raise AssignmentConflictError(f"Order {order_id} is already assigned to another shipper")

            now = self.clock()
            current = self._holds.get(order_id)
            if current is not None and current.expires_at > now:
                if current.shipper_id == shipper_id:
                    raise AssignmentConflictError("You have already requested this order")
                raise AssignmentConflictError("Order is being considered by another shipper")

            hold = OfferHold(
                id=new_id(),
                order_id=order_id,
                shipper_id=shipper_id,
                created_at=now,
                expires_at=now + self.offer_timeout_seconds,
            )
            self._holds[order_id] = hold

        logger.info(f"Shipper {shipper_id} holds order {order_id} until {hold.expires_at:.0f}")
        return {
            "success": True,
            "message": "Order reserved. Please accept or reject within the time limit.",
            "assignment_id": hold.id,
            "order_id": order_id,
            "expires_at": hold.expires_at,
        }

    def _find_hold(self, assignment_id: str) -> Optional[OfferHold]:
        with self._lock:
            for hold in self._holds.values():
                if hold.id == assignment_id:
                    return hold
        return None

    def _release(self, hold: OfferHold) -> bool:
        with self._lock:
            if self._holds.get(hold.order_id) is hold:
                del self._holds[hold.order_id]
                return True
        return False

    def accept_assignment(self, assignment_id: str, shipper_id: str) -> ShippingDetail:
        """
        Turn a live hold into an assignment.

        The hold stays in place until the order, shipping detail and
        shipper rows are written, so nobody else can request the order
        in between.
        """
        with self._lock:
            hold = self._find_hold(assignment_id)
            if hold is None:
                raise AssignmentError("Assignment not found or already processed")
            if hold.shipper_id != shipper_id:
                raise AssignmentError("This assignment belongs to another shipper")

            expired = hold.expires_at <= self.clock()
            if not expired:
                try:
                    detail, order = self._commit_assignment(hold.order_id, shipper_id)
                except Exception:
                    self._release(hold)
                    raise

        if expired:
            self._expire(hold)
            raise AssignmentError("Assignment has expired")

        self._announce_assignment(order, shipper_id)
        logger.info(f"Shipper {shipper_id} accepted order {hold.order_id}")
        return detail

    def reject_assignment(self, assignment_id: str, shipper_id: str) -> bool:
        hold = self._find_hold(assignment_id)
        if hold is None:
            raise AssignmentError("Assignment not found or already processed")
        if hold.shipper_id != shipper_id:
            raise AssignmentError("This assignment belongs to another shipper")

        self._release(hold)
        self._record_rejection(hold.order_id, shipper_id)

        shipper = self.repos.shippers.get(shipper_id)
        if shipper is not None:
            shipper.rejected_orders += 1
            self.repos.shippers.save(shipper)

        logger.info(f"Shipper {shipper_id} rejected order {hold.order_id}")
        self._reassign(hold.order_id)
        return True

    def _expire(self, hold: OfferHold) -> None:
        if not self._release(hold):
            return
        self._record_rejection(hold.order_id, hold.shipper_id)

        logger.info(f"Offer {hold.id} for order {hold.order_id} expired (shipper {hold.shipper_id})")
        self.pubsub.publish(OFFER_EXPIRED, {
            "assignment_id": hold.id,
            "order_id": hold.order_id,
            "shipper_id": hold.shipper_id,
        })
        self._reassign(hold.order_id)

    def expire_offers(self) -> int:
        """Auto-reject every hold past its deadline."""
        now = self.clock()
        with self._lock:
            expired = [h for h in self._holds.values() if h.expires_at <= now]

        for hold in expired:
            self._expire(hold)
        return len(expired)

    def watch_expiry(
        self,
        stop_event: threading.Event,
        interval_seconds: float = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Expire holds on their own cadence, independent of the job batches."""
        logger.info("Offer expiry watcher started")
        while not stop_event.is_set():
            try:
                self.expire_offers()
            except Exception as e:
                logger.error(f"Offer expiry pass failed: {e}")
            sleep(interval_seconds)
        logger.info("Offer expiry watcher stopped")

    # ──────────────────────────────────────────────
    # ASSIGNMENT
    # ──────────────────────────────────────────────

    def _commit_assignment(self, order_id: str, shipper_id: str) -> Tuple[ShippingDetail, Order]:
        # check-then-write happens entirely under the lock
        with self._lock:
            order = self.repos.orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(f"Order {order_id} not found")
            if order.is_assigned:
                raise AssignmentConflictError(f"Order {order_id} is already assigned to another shipper")

            validate_transition(order.status, ORDER_DELIVERING)

            shipper = self.repos.shippers.get(shipper_id)
            if shipper is None:
                raise AssignmentError(f"Shipper {shipper_id} not found")

            now = self.clock()

            detail = ShippingDetail(
                id=new_id(),
                order_id=order_id,
                shipper_id=shipper_id,
                status=SHIPPING_PENDING,
                estimated_delivery_time=now + DELIVERY_ETA_SECONDS,
                created_at=now,
            )
            self.repos.shipping_details.save(detail)

            order.status = ORDER_DELIVERING
            order.shipper_id = shipper_id
            order.updated_at = now
            self.repos.orders.save(order)

            shipper.active_deliveries += 1
            shipper.last_active_at = now
            self.repos.shippers.save(shipper)

            self._history.pop(order_id, None)
            self._holds.pop(order_id, None)

        return detail, order

    def _announce_assignment(self, order: Order, shipper_id: str) -> None:
        self.pubsub.publish(ORDER_STATUS_UPDATED, {ORDER_STATUS_UPDATED: order.to_dict()})
        self.pubsub.publish(ORDER_ASSIGNED_TO_SHIPPER, {
            ORDER_ASSIGNED_TO_SHIPPER: order.to_dict(),
            "shipper_id": shipper_id,
        })
        logger.info(f"Order {order.id} assigned to shipper {shipper_id}")

    def assign_order_to_shipper(self, order_id: str, shipper_id: str) -> ShippingDetail:
        detail, order = self._commit_assignment(order_id, shipper_id)
        self._announce_assignment(order, shipper_id)
        return detail

    def _record_rejection(self, order_id: str, shipper_id: str) -> None:
        with self._lock:
            history = self._history.get(order_id)
            if history is None:
                history = OfferHistory(order_id=order_id, created_at=self.clock())
                self._history[order_id] = history
            if shipper_id not in history.rejected_shipper_ids:
                history.rejected_shipper_ids.append(shipper_id)

    def excluded_shippers(self, order_id: str) -> List[str]:
        with self._lock:
            history = self._history.get(order_id)
            return list(history.rejected_shipper_ids) if history else []

    def _reassign(self, order_id: str) -> bool:
        order = self.repos.orders.get(order_id)
        if order is None or order.status != ORDER_CONFIRMED or order.is_assigned:
            with self._lock:
                self._history.pop(order_id, None)
            return False

        excluded = self.excluded_shippers(order_id)
        self.pubsub.publish(ORDER_REASSIGNED_TO_SHIPPERS, {
            ORDER_REASSIGNED_TO_SHIPPERS: order.to_dict(),
            "excluded_shipper_ids": excluded,
        })

        logger.info(f"Order {order_id} reassigned, excluding {len(excluded)} shippers")
        return True

    # ──────────────────────────────────────────────
    # INSPECTION & MAINTENANCE
    # ──────────────────────────────────────────────

    def get_pending_assignment_for_shipper(self, shipper_id: str) -> Optional[Dict]:
        now = self.clock()
        with self._lock:
            for hold in self._holds.values():
                if hold.shipper_id == shipper_id and hold.expires_at > now:
                    return {
                        "assignment_id": hold.id,
                        "order_id": hold.order_id,
                        "expires_at": hold.expires_at,
                        "remaining_seconds": round(hold.expires_at - now),
                    }
        return None

    def active_holds(self) -> List[OfferHold]:
        with self._lock:
            return list(self._holds.values())

    def cleanup_expired_data(self) -> Dict[str, int]:
        now = self.clock()

        with self._lock:
            expired = [oid for oid, h in self._holds.items() if h.expires_at <= now]
            for order_id in expired:
                del self._holds[order_id]
            history_ids = list(self._history)

        stale = []
        for order_id in history_ids:
            order = self.repos.orders.get(order_id)
            with self._lock:
                history = self._history.get(order_id)
                if history is None:
                    continue
                too_old = now - history.created_at > HISTORY_TTL_SECONDS
                if order is None or order.status != ORDER_CONFIRMED or too_old:
                    del self._history[order_id]
                    stale.append(order_id)

        if expired or stale:
            logger.info(f"Offer cleanup: {len(expired)} expired holds, {len(stale)} stale histories")
        return {"expired_holds": len(expired), "stale_histories": len(stale)}
