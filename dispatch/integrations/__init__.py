"""
Integrations Package

External service integrations for geocoding and routing.
"""

from dispatch.integrations.mapbox import geocode, get_distance_and_duration, route_distance_km

__all__ = [
    'geocode',
    'get_distance_and_duration',
    'route_distance_km',
]
