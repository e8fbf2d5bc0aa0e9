"""
SYSTEM CONSTRAINTS ENGINE

Purpose:
- Single source of the dispatch rules (eligibility thresholds, fee tiers,
  delivery distance and time limits)
- Versioned: every update is a new record, newest wins
- Short-lived cache so the hot matching path does not hit storage

Eligibility rules:
• Must be an active account with the shipper role
• Enough total deliveries and a high enough completion rate
• Below the concurrent delivery cap
• Rating at or above the floor
• Seen within the last 30 minutes
"""

import logging
import time
from dataclasses import dataclass, field, fields
from typing import Callable, List, Optional

from dispatch import config
from dispatch.core.models import SHIPPER_ROLE, Shipper, SystemConstraints
from dispatch.storage.repositories import ConstraintsRepository

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_WINDOW_SECONDS = 30 * 60
MAX_RESPONSE_TIME_MIN = 10

_IMMUTABLE_FIELDS = {"id", "created_at"}


@dataclass
class EligibilityResult:
    eligible: bool
    reasons: List[str] = field(default_factory=list)
    score: float = 0.0


def calculate_shipper_score(shipper: Shipper) -> float:
    """
    Rank a shipper on past performance (higher is better, max 100).

    Components:
    - Completion rate: 0-30
    - Rating: 0-25
    - Experience (total orders, saturates at 100): 0-20
    - Response time (lower is better, zero at 10 min): 0-15
    - On-time rate (1.0 with no history): 0-10
    """
    score = 0.0

    score += min(30, shipper.completion_rate * 30)
    score += min(25, (shipper.average_rating / 5) * 25)
    score += min(20, (shipper.total_orders / 100) * 20)
    score += max(0, 15 - (shipper.response_time_minutes / MAX_RESPONSE_TIME_MIN) * 15)

    timed = shipper.on_time_deliveries + shipper.late_deliveries
    on_time_rate = shipper.on_time_deliveries / timed if timed > 0 else 1
    score += on_time_rate * 10

    return round(score, 2)


class SystemConstraintsService:

    def __init__(
        self,
        repository: ConstraintsRepository,
        clock: Callable[[], float] = time.time,
        cache_seconds: int = config.CONSTRAINTS_CACHE_SECONDS,
    ):
        self.repository = repository
        self.clock = clock
        self.cache_seconds = cache_seconds
        self._cached: Optional[SystemConstraints] = None
        self._cached_at = 0.0

    def get_constraints(self) -> SystemConstraints:
        now = self.clock()

        if self._cached is not None and (now - self._cached_at) < self.cache_seconds:
            return self._cached

        constraints = self.repository.latest()
        if constraints is None:
            constraints = self._create_default_constraints()

        self._cached = constraints
        self._cached_at = now
        return constraints

    def _create_default_constraints(self) -> SystemConstraints:
        logger.info("Creating default system constraints")
        constraints = SystemConstraints(created_at=self.clock())
        return self.repository.save(constraints)

    def is_shipper_eligible(self, shipper: Optional[Shipper]) -> EligibilityResult:
        constraints = self.get_constraints()
        reasons: List[str] = []

        if shipper is None or shipper.role != SHIPPER_ROLE:
            reasons.append("User is not a shipper")
            return EligibilityResult(False, reasons, 0)

        if not shipper.is_active:
            reasons.append("Shipper account is inactive")
            return EligibilityResult(False, reasons, 0)

        total_orders = shipper.total_orders
        completion_rate = shipper.completion_rate

        if total_orders < constraints.min_total_orders:
            reasons.append(
                f"Insufficient total orders: {total_orders} < {constraints.min_total_orders}"
            )

        if completion_rate < constraints.min_completion_rate:
            reasons.append(
                f"Low completion rate: {completion_rate * 100:.1f}% < "
                f"{constraints.min_completion_rate * 100:g}%"
            )

        if shipper.active_deliveries >= constraints.max_active_deliveries:
            reasons.append(
                f"Too many active deliveries: {shipper.active_deliveries} >= "
                f"{constraints.max_active_deliveries}"
            )

        if shipper.average_rating < constraints.min_shipper_rating:
            reasons.append(
                f"Low rating: {shipper.average_rating} < {constraints.min_shipper_rating}"
            )

        cutoff = self.clock() - RECENT_ACTIVITY_WINDOW_SECONDS
        if shipper.last_active_at is None or shipper.last_active_at < cutoff:
            reasons.append("Shipper not active recently")

        score = calculate_shipper_score(shipper)
        eligible = not reasons

        logger.debug(
            f"Shipper {shipper.id} eligibility check: "
            f"{'ELIGIBLE' if eligible else 'NOT ELIGIBLE'}, Score: {score}, "
            f"Reasons: {', '.join(reasons)}"
        )

        return EligibilityResult(eligible, reasons, score)

    def calculate_shipping_fee(self, distance_km: float) -> int:
        constraints = self.get_constraints()

        if distance_km <= constraints.base_distance_km:
            return constraints.base_shipping_fee
        if distance_km <= constraints.tier2_distance_km:
            return constraints.tier2_shipping_fee
        return constraints.tier3_shipping_fee

    def is_distance_within_limits(self, distance_km: float) -> bool:
        return distance_km <= self.get_constraints().max_delivery_distance

    def get_max_delivery_time(self) -> int:
        return self.get_constraints().max_delivery_time_min

    def update_constraints(self, **updates) -> SystemConstraints:
        """Store a new constraints version on top of the current one."""
        known = {f.name for f in fields(SystemConstraints)} - _IMMUTABLE_FIELDS
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown constraint fields: {', '.join(sorted(unknown))}")

        current = self.get_constraints()
        data = current.to_dict()
        data.update(updates)
        data.pop("id")
        data["created_at"] = max(self.clock(), current.created_at + 1e-6)

        saved = self.repository.save(SystemConstraints(**data))
        self.clear_cache()

        logger.info(f"System constraints updated with ID: {saved.id}")
        return saved

    def clear_cache(self) -> None:
        self._cached = None
        self._cached_at = 0.0
