# dispatch/intelligence/shipper_scoring.py

import math
from datetime import datetime
from typing import List, Optional, Sequence

from dispatch.core.models import Shipper

URGENCY_BONUS = {
    "high": 15,
    "medium": 8,
    "low": 0,
}

RUSH_HOURS = ((11, 13), (17, 20))


def urgency_bonus(urgency: str) -> int:
    if urgency not in URGENCY_BONUS:
        raise ValueError(f"Unknown urgency '{urgency}', expected one of {sorted(URGENCY_BONUS)}")
    return URGENCY_BONUS[urgency]


def order_value_bonus(order_value: float) -> float:
    return min(10, (order_value / 100000) * 5)


def workload_penalty(active_deliveries: int) -> float:
    return math.pow(active_deliveries or 0, 1.5) * 3


def is_rush_hour(hour: int) -> bool:
    return any(start <= hour <= end for start, end in RUSH_HOURS)


def enhanced_score(
    shipper: Shipper,
    base_score: float,
    recent_ratings: Sequence[float],
    now: float,
) -> float:
    """
    Adjust the eligibility score with recent reviews, activity and workload.

    recent_ratings must be newest first.
    """
    score = base_score
    ratings: List[float] = list(recent_ratings)

    if len(ratings) >= 5:
        window = ratings[:10]
        recent_average = sum(window) / len(window)
        if recent_average > 4.5:
            score += 10
        elif recent_average > 4.0:
            score += 5
        elif recent_average < 3.0:
            score -= 15

    if len(ratings) >= 10:
        mean = sum(ratings) / len(ratings)
        variance = sum((r - mean) ** 2 for r in ratings) / len(ratings)
        std_dev = math.sqrt(variance)
        if std_dev < 0.5:
            score += 5
        elif std_dev > 1.5:
            score -= 5

    last_active = shipper.last_active_at or 0
    minutes_inactive = (now - last_active) / 60
    if minutes_inactive < 5:
        score += 5
    elif minutes_inactive < 15:
        score += 2

    if shipper.active_deliveries >= 3:
        score -= shipper.active_deliveries * 5

    return max(0, round(score, 2))


def match_score(
    eligibility_score: float,
    distance_km: float,
    max_delivery_distance: float,
    active_deliveries: int,
    last_seen: float,
    now: float,
    order_value: float = 0,
    urgency: str = "medium",
    hour: Optional[int] = None,
) -> float:
    """Final score used to pick the single best shipper for a pickup point."""
    score = eligibility_score

    if max_delivery_distance > 0:
        score -= (distance_km / max_delivery_distance) * 25

    score += urgency_bonus(urgency)
    score += order_value_bonus(order_value)
    score -= workload_penalty(active_deliveries)

    if last_seen > now - 5 * 60:
        score += 8

    if hour is None:
        hour = datetime.fromtimestamp(now).hour
    if is_rush_hour(hour):
        score += 5

    return max(0, score)


def queue_priority(
    eligibility_score: float,
    distance_km: float,
    active_deliveries: int,
    order_value: float = 0,
    urgency: str = "medium",
) -> float:
    """Priority of a shipper inside one order's offer queue."""
    priority = eligibility_score
    priority += max(0, 50 - distance_km * 3)
    priority -= workload_penalty(active_deliveries)
    priority += order_value_bonus(order_value)
    priority += urgency_bonus(urgency)
    return max(0, priority)
