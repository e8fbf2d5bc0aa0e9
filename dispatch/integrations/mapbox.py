"""
MAPBOX GEOCODING + DIRECTIONS

Purpose:
- Turn a Vietnamese street address into coordinates
- Driving distance / duration between restaurant and customer
- Graceful fallback to straight-line distance if API unavailable
- Short-term caching to avoid rate limits

Requirements:
• Never hardcode API keys (MAPBOX_ACCESS_TOKEN env var)
• Timeout protection (10s max)
• Cache geocoding responses (1 hour)
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import requests

from dispatch import config
from dispatch.intelligence.geo import haversine_distance

logger = logging.getLogger(__name__)

MAPBOX_BASE_URL = "https://api.mapbox.com"

# In-memory cache
_geocode_cache: Dict[str, Tuple[float, Optional[Dict[str, float]]]] = {}


def _get_cache_key(*parts: Optional[str]) -> str:
    return "|".join((p or "").strip().lower() for p in parts)


def _get_from_cache(cache_key: str) -> Tuple[bool, Optional[Dict[str, float]]]:
    if cache_key not in _geocode_cache:
        return False, None

    timestamp, data = _geocode_cache[cache_key]
    if time.time() - timestamp >= config.GEOCODE_CACHE_SECONDS:
        del _geocode_cache[cache_key]
        return False, None

    logger.info(f"Geocode cache hit for {cache_key}")
    return True, data


def clear_geocode_cache() -> None:
    _geocode_cache.clear()


def geocode(street: str, ward: str, district: str, city: str) -> Optional[Dict[str, float]]:
    """
    Geocode an address in Vietnam.

    Returns:
        dict: {"lat": ..., "lng": ...} or None if not found / API unavailable
    """
    token = config.MAPBOX_ACCESS_TOKEN
    if not token:
        logger.warning("MAPBOX_ACCESS_TOKEN not configured, geocoding disabled")
        return None

    cache_key = _get_cache_key(street, ward, district, city)
    hit, cached = _get_from_cache(cache_key)
    if hit:
        return cached

    address = ", ".join(p for p in (street, ward, district, city) if p)
    url = f"{MAPBOX_BASE_URL}/geocoding/v5/mapbox.places/{quote(address)}.json"
    params = {
        "access_token": token,
        "country": "vn",
        "limit": 1,
        "types": "address,place",
    }

    try:
        response = requests.get(url, params=params, timeout=config.MAPBOX_TIMEOUT_SECONDS)
        response.raise_for_status()
        features = response.json().get("features") or []

    except requests.exceptions.Timeout:
        logger.error("Mapbox geocoding timeout")
        return None

    except requests.exceptions.HTTPError as e:
        logger.error(f"Mapbox geocoding HTTP error: {e.response.status_code if e.response is not None else e}")
        return None

    except requests.exceptions.RequestException as e:
        logger.error(f"Mapbox geocoding error: {str(e)}")
        return None

    if not features:
        logger.warning(f"No geocoding result for address: {address}")
        result = None
    else:
        lng, lat = features[0]["center"]
        result = {"lat": lat, "lng": lng}

    _geocode_cache[cache_key] = (time.time(), result)
    return result


def get_distance_and_duration(
    origin: Dict[str, float],
    destination: Dict[str, float],
) -> Optional[Dict[str, float]]:
    """
    Driving distance and duration via the Directions API.

    Args:
        origin, destination: {"lat": ..., "lng": ...}

    Returns:
        dict: {"distance_km": ..., "duration_min": ...} or None
    """
    token = config.MAPBOX_ACCESS_TOKEN
    if not token:
        logger.debug("MAPBOX_ACCESS_TOKEN not configured, directions disabled")
        return None

    # Mapbox uses lng,lat order
    coordinates = f"{origin['lng']},{origin['lat']};{destination['lng']},{destination['lat']}"
    url = f"{MAPBOX_BASE_URL}/directions/v5/mapbox/driving/{coordinates}"

    try:
        response = requests.get(
            url,
            params={"access_token": token, "overview": "false"},
            timeout=config.MAPBOX_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        routes = response.json().get("routes") or []

    except requests.exceptions.RequestException as e:
        logger.error(f"Mapbox directions error: {str(e)}")
        return None

    if not routes:
        logger.warning("Mapbox returned no route")
        return None

    route = routes[0]
    return {
        "distance_km": round(route["distance"] / 1000, 1),
        "duration_min": round(route["duration"] / 60),
    }


def route_distance_km(
    origin_lat: float,
    origin_lng: float,
    dest_lat: float,
    dest_lng: float,
) -> Dict[str, Any]:
    """Road distance when Mapbox answers, straight-line distance otherwise."""
    route = get_distance_and_duration(
        {"lat": origin_lat, "lng": origin_lng},
        {"lat": dest_lat, "lng": dest_lng},
    )
    if route is not None:
        return {"distance_km": route["distance_km"], "duration_min": route["duration_min"], "source": "mapbox"}

    return {
        "distance_km": haversine_distance(origin_lat, origin_lng, dest_lat, dest_lng),
        "duration_min": None,
        "source": "fallback",
    }
