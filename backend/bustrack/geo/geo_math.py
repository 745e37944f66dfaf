"""
Geo-Math Utilities

Pure functions over latitude/longitude in degrees. Callers supply valid
degree ranges; nothing here raises for out-of-range input.
"""

import math
from typing import Sequence, Tuple

import numpy as np

EARTH_RADIUS_METERS = 6371000.0


def haversine_distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two GPS points"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def bearing_degrees(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial bearing from point 1 to point 2, in [0, 360)"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    delta_lambda = math.radians(lng2 - lng1)

    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)

    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def bearing_change(a: float, b: float) -> float:
    """Smallest absolute difference between two bearings, in [0, 180]"""
    change = abs(b - a) % 360.0
    return 360.0 - change if change > 180.0 else change


def weighted_centroid(points: Sequence[Tuple[float, float]], weights: Sequence[float]) -> Tuple[float, float]:
    """
    Weighted mean of (lat, lng) points

    Raises:
        ValueError: if the weights sum to zero (callers guard this first)
    """
    coords = np.asarray(points, dtype=float)
    w = np.asarray(weights, dtype=float)
    if coords.size == 0 or w.sum() <= 0:
        raise ValueError("weighted centroid needs a positive total weight")

    lat, lng = np.average(coords, axis=0, weights=w)
    return float(lat), float(lng)
