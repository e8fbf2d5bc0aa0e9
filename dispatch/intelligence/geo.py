# dispatch/intelligence/geo.py

import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0

# Checkout fee formula
LINEAR_FEE_BASE = 15000
LINEAR_FEE_BASE_KM = 2
LINEAR_FEE_PER_KM = 5000

# Delivery time estimate (minutes)
ETA_BASE_MIN = 10
ETA_PER_KM_MIN = 4
ETA_FLOOR_MIN = 10
ETA_CEILING_MIN = 60


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points.

    Returns:
        float: Distance in kilometers, rounded to 0.1 km
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return round(EARTH_RADIUS_KM * c, 1)


def estimate_delivery_time(distance: Optional[float]) -> int:
    """10 min base + 4 min per km, clamped to [10, 60]."""
    if distance is None or (isinstance(distance, float) and math.isnan(distance)):
        return 0

    minutes = round(ETA_BASE_MIN + distance * ETA_PER_KM_MIN)
    return max(ETA_FLOOR_MIN, min(minutes, ETA_CEILING_MIN))


def linear_shipping_fee(distance: float) -> int:
    """Flat fee up to 2 km, then a surcharge per started km."""
    if distance <= LINEAR_FEE_BASE_KM:
        return LINEAR_FEE_BASE
    return LINEAR_FEE_BASE + math.ceil(distance - LINEAR_FEE_BASE_KM) * LINEAR_FEE_PER_KM


def is_valid_coordinate(lat, lng) -> bool:
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180
