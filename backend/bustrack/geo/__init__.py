"""
Geo Package

Great-circle math and the coordinate/route validator.

Usage:
    from bustrack.geo import haversine_distance_meters, RouteValidator
"""

from .geo_math import (
    EARTH_RADIUS_METERS,
    haversine_distance_meters,
    bearing_degrees,
    bearing_change,
    weighted_centroid,
)
from .route_validator import RouteValidator

__all__ = [
    "EARTH_RADIUS_METERS",
    "haversine_distance_meters",
    "bearing_degrees",
    "bearing_change",
    "weighted_centroid",
    "RouteValidator",
]
