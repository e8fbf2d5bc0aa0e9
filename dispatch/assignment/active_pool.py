"""
ACTIVE SHIPPER POOL

Purpose:
- Track shippers currently online (position, reach, score)
- Pick the best shipper for a pickup point
- Build per-order offer queues ranked by priority
- Push queued orders to a shipper as soon as they come online

Requirements:
• Only eligible shippers enter the pool (system constraints)
• A shipper is considered only within both their own reach and the
  system max delivery distance
• Shippers unseen for 5 minutes and queue entries older than 30 minutes
  are dropped by cleanup()
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from dispatch.core.models import ORDER_CONFIRMED, Order, Shipper
from dispatch.intelligence.earnings import earnings_breakdown
from dispatch.intelligence.geo import haversine_distance
from dispatch.intelligence.shipper_scoring import enhanced_score, match_score, queue_priority
from dispatch.intelligence.system_constraints import SystemConstraintsService
from dispatch.realtime.pubsub import ORDER_CONFIRMED_FOR_SHIPPERS, PubSub
from dispatch.storage.repositories import Repositories

logger = logging.getLogger(__name__)

INACTIVE_AFTER_SECONDS = 5 * 60
QUEUE_ENTRY_TTL_SECONDS = 30 * 60
MAX_OFFERS_ON_CONNECT = 3
TOP_SHIPPERS_IN_STATS = 5
RECENT_REVIEWS = 20


@dataclass
class ActiveShipper:
    shipper_id: str
    latitude: float
    longitude: float
    max_distance: float
    last_seen: float
    eligibility_score: float
    shipper: Shipper


@dataclass
class QueuedShipper:
    shipper_id: str
    priority: float
    added_at: float
    eligibility_score: float
    distance_km: float


@dataclass
class PoolResult:
    success: bool
    message: str
    score: Optional[float] = None


@dataclass
class BestShipper:
    shipper_id: str
    score: float
    distance: float


def build_offer_payload(order: Order, shipper_id: str, distance_km: float, priority: float) -> Dict:
    """Targeted offer published on orderConfirmedForShippers."""
    return {
        ORDER_CONFIRMED_FOR_SHIPPERS: order.to_dict(),
        "target_shipper_id": shipper_id,
        "distance_km": distance_km,
        "priority_score": round(priority, 2),
        "earnings": earnings_breakdown(order, distance_km),
    }


class ActiveShipperTracker:

    def __init__(
        self,
        repos: Repositories,
        constraints: SystemConstraintsService,
        pubsub: PubSub,
        clock: Callable[[], float] = time.time,
    ):
        self.repos = repos
        self.constraints = constraints
        self.pubsub = pubsub
        self.clock = clock
        self._lock = threading.RLock()
        self._active: Dict[str, ActiveShipper] = {}
        self._queues: Dict[str, List[QueuedShipper]] = {}

    # ──────────────────────────────────────────────
    # POOL MEMBERSHIP
    # ──────────────────────────────────────────────

    def add_shipper(self, shipper_id: str, lat: float, lng: float, max_distance: float) -> PoolResult:
        logger.info(f"Adding shipper {shipper_id} to active pool...")

        if not shipper_id or not isinstance(shipper_id, str):
            return PoolResult(False, "Invalid shipper ID provided")

        try:
            lat, lng, max_distance = float(lat), float(lng), float(max_distance)
        except (TypeError, ValueError):
            return PoolResult(False, "Invalid location or distance parameters")
        if any(math.isnan(v) for v in (lat, lng, max_distance)):
            return PoolResult(False, "Invalid location or distance parameters")

        shipper = self.repos.shippers.get(shipper_id)
        if shipper is None:
            logger.warning(f"Shipper {shipper_id} not found")
            return PoolResult(False, "Shipper not found")

        now = self.clock()

        # Coming online counts as activity
        shipper.last_active_at = now
        self.repos.shippers.save(shipper)

        eligibility = self.constraints.is_shipper_eligible(shipper)
        if not eligibility.eligible:
            logger.warning(f"Shipper {shipper_id} not eligible: {', '.join(eligibility.reasons)}")
            return PoolResult(
                False,
                f"Not eligible: {', '.join(eligibility.reasons)}",
                eligibility.score,
            )

        ratings = [r.rating for r in self.repos.reviews.recent_for_shipper(shipper_id, RECENT_REVIEWS)]
        score = enhanced_score(shipper, eligibility.score, ratings, now)

        with self._lock:
            self._active[shipper_id] = ActiveShipper(
                shipper_id=shipper_id,
                latitude=lat,
                longitude=lng,
                max_distance=max_distance,
                last_seen=now,
                eligibility_score=score,
                shipper=shipper,
            )

        logger.info(f"Shipper {shipper_id} added to active pool with enhanced score {score}")

        self._offer_queued_orders(shipper_id)

        return PoolResult(True, "Successfully added to shipper pool", score)

    def update_position(self, shipper_id: str, lat: float, lng: float) -> bool:
        with self._lock:
            active = self._active.get(shipper_id)
            if active is None:
                return False
            active.latitude = float(lat)
            active.longitude = float(lng)
            active.last_seen = self.clock()
        return True

    def remove_shipper(self, shipper_id: str) -> bool:
        with self._lock:
            removed = self._active.pop(shipper_id, None)

            for order_id in list(self._queues):
                remaining = [q for q in self._queues[order_id] if q.shipper_id != shipper_id]
                if remaining:
                    self._queues[order_id] = remaining
                else:
                    del self._queues[order_id]

        if removed is not None:
            shipper = self.repos.shippers.get(shipper_id)
            if shipper is not None:
                shipper.last_active_at = self.clock()
                self.repos.shippers.save(shipper)

        logger.info(f"Shipper {shipper_id} removed from active pool and queues")
        return removed is not None

    def get(self, shipper_id: str) -> Optional[ActiveShipper]:
        with self._lock:
            return self._active.get(shipper_id)

    def get_all_shippers(self) -> List[ActiveShipper]:
        with self._lock:
            return list(self._active.values())

    # ──────────────────────────────────────────────
    # MATCHING
    # ──────────────────────────────────────────────

    def _candidates(self, lat: float, lng: float):
        """Yield (active, fresh_shipper, eligibility_score, distance) within reach."""
        constraints = self.constraints.get_constraints()

        for active in self.get_all_shippers():
            distance = haversine_distance(active.latitude, active.longitude, lat, lng)
            if distance > active.max_distance or distance > constraints.max_delivery_distance:
                continue

            # Re-validate: stats may have changed since the shipper joined
            shipper = self.repos.shippers.get(active.shipper_id) or active.shipper
            eligibility = self.constraints.is_shipper_eligible(shipper)
            if not eligibility.eligible:
                continue

            yield active, shipper, distance

    def find_best_shipper(
        self,
        restaurant_lat: float,
        restaurant_lng: float,
        order_value: float = 0,
        urgency: str = "medium",
    ) -> Optional[BestShipper]:
        constraints = self.constraints.get_constraints()
        now = self.clock()
        best: Optional[BestShipper] = None

        for active, shipper, distance in self._candidates(restaurant_lat, restaurant_lng):
            score = match_score(
                eligibility_score=active.eligibility_score,
                distance_km=distance,
                max_delivery_distance=constraints.max_delivery_distance,
                active_deliveries=shipper.active_deliveries,
                last_seen=active.last_seen,
                now=now,
                order_value=order_value,
                urgency=urgency,
            )
            if best is None or score > best.score:
                best = BestShipper(active.shipper_id, score, distance)

        if best is None:
            logger.warning(f"No eligible shippers found for restaurant at {restaurant_lat}, {restaurant_lng}")
            return None

        logger.info(f"Best shipper found: {best.shipper_id} with score {best.score:.2f} at distance {best.distance:.2f}km")
        return best

    def create_shipper_queue_for_order(
        self,
        order_id: str,
        restaurant_lat: float,
        restaurant_lng: float,
        order_value: float = 0,
        urgency: str = "medium",
    ) -> List[QueuedShipper]:
        now = self.clock()
        queued: List[QueuedShipper] = []

        for active, shipper, distance in self._candidates(restaurant_lat, restaurant_lng):
            priority = queue_priority(
                eligibility_score=active.eligibility_score,
                distance_km=distance,
                active_deliveries=shipper.active_deliveries,
                order_value=order_value,
                urgency=urgency,
            )
            queued.append(QueuedShipper(
                shipper_id=active.shipper_id,
                priority=priority,
                added_at=now,
                eligibility_score=active.eligibility_score,
                distance_km=distance,
            ))

        queued.sort(key=lambda q: q.priority, reverse=True)

        with self._lock:
            if queued:
                self._queues[order_id] = list(queued)
            else:
                self._queues.pop(order_id, None)

        logger.info(f"Created shipper queue for order {order_id} with {len(queued)} eligible shippers")
        if queued:
            top = ", ".join(f"{q.shipper_id}({q.priority:.1f}, {q.distance_km:.1f}km)" for q in queued[:3])
            logger.info(f"Top 3 shippers: {top}")

        return queued

    def get_shipper_queue(self, order_id: str) -> List[QueuedShipper]:
        with self._lock:
            return list(self._queues.get(order_id, []))

    def get_next_shipper_from_queue(self, order_id: str) -> Optional[QueuedShipper]:
        with self._lock:
            queue = self._queues.get(order_id)
            if not queue:
                return None
            next_shipper = queue.pop(0)
            if not queue:
                del self._queues[order_id]
        return next_shipper

    def remove_order_from_queues(self, order_id: str) -> None:
        with self._lock:
            self._queues.pop(order_id, None)
        logger.info(f"Removed order {order_id} from shipper queues")

    def _offer_queued_orders(self, shipper_id: str) -> int:
        """Send orders already queued for this shipper (max 3 per connect)."""
        with self._lock:
            entries = [
                (order_id, q)
                for order_id, queue in self._queues.items()
                for q in queue
                if q.shipper_id == shipper_id
            ]

        sent = 0
        for order_id, entry in entries:
            if sent >= MAX_OFFERS_ON_CONNECT:
                break
            order = self.repos.orders.get(order_id)
            if order is None or order.status != ORDER_CONFIRMED or order.is_assigned:
                continue

            self.pubsub.publish(
                ORDER_CONFIRMED_FOR_SHIPPERS,
                build_offer_payload(order, shipper_id, entry.distance_km, entry.priority),
            )
            sent += 1

        if sent:
            logger.info(f"Sent {sent} pending orders to shipper {shipper_id}")
        return sent

    # ──────────────────────────────────────────────
    # STATS & MAINTENANCE
    # ──────────────────────────────────────────────

    def get_shipper_stats(self) -> Dict:
        with self._lock:
            shippers = list(self._active.values())
            queued_orders = len(self._queues)

        count = len(shippers)
        avg_score = sum(s.eligibility_score for s in shippers) / count if count else 0
        avg_active = sum(s.shipper.active_deliveries for s in shippers) / count if count else 0

        top = sorted(shippers, key=lambda s: s.eligibility_score, reverse=True)[:TOP_SHIPPERS_IN_STATS]

        distribution = {"0": 0, "1": 0, "2": 0, "3+": 0}
        for s in shippers:
            active = s.shipper.active_deliveries
            distribution[str(active) if active < 3 else "3+"] += 1

        return {
            "active_shippers": count,
            "queued_orders": queued_orders,
            "average_score": round(avg_score, 2),
            "average_active_deliveries": round(avg_active, 2),
            "top_shippers": [
                {
                    "id": s.shipper_id,
                    "score": s.eligibility_score,
                    "active_deliveries": s.shipper.active_deliveries,
                    "completed_deliveries": s.shipper.completed_deliveries,
                    "rating": s.shipper.average_rating,
                    "completion_rate": (
                        f"{s.shipper.completion_rate * 100:.1f}%" if s.shipper.total_orders > 0 else "N/A"
                    ),
                }
                for s in top
            ],
            "distribution_by_active_deliveries": distribution,
        }

    def cleanup(self) -> Dict[str, int]:
        now = self.clock()
        inactive_cutoff = now - INACTIVE_AFTER_SECONDS
        queue_cutoff = now - QUEUE_ENTRY_TTL_SECONDS

        stale = [s.shipper_id for s in self.get_all_shippers() if s.last_seen < inactive_cutoff]
        for shipper_id in stale:
            self.remove_shipper(shipper_id)

        removed_entries = 0
        with self._lock:
            for order_id in list(self._queues):
                queue = self._queues[order_id]
                valid = [q for q in queue if q.added_at > queue_cutoff]
                removed_entries += len(queue) - len(valid)
                if valid:
                    self._queues[order_id] = valid
                else:
                    del self._queues[order_id]

        if stale or removed_entries:
            logger.debug(
                f"Cleanup completed. Removed {len(stale)} inactive shippers, "
                f"{removed_entries} old queue entries"
            )
        return {"removed_shippers": len(stale), "removed_queue_entries": removed_entries}
