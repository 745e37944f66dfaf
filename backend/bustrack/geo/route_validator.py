"""
Coordinate / Route Validator

Stateless decision functions over configuration and reference stop data.
Every outcome is a ``ValidationCheck``; nothing here raises for bad input.
"""

import math
from typing import Any, Dict, List, Optional, Sequence

from bustrack.config import TrackingSettings
from bustrack.models import Stop, ValidationCheck
from .geo_math import haversine_distance_meters


CIRCLE_STYLE = {
    "color": "#1a73e8",
    "fillColor": "rgba(26, 115, 232, 0.2)",
    "weight": 2,
}

CORRIDOR_STYLE = {
    "color": "#ff6b35",
    "fillColor": "rgba(255, 107, 53, 0.1)",
    "weight": 1,
}


class RouteValidator:
    """
    Validate GPS samples against the operating region, stop radii and
    speed limits

    Usage:
        validator = RouteValidator(settings)
        check = validator.validate_coordinate_bounds(23.79, 90.36)
        if not check.valid:
            print(check.reason)
    """

    def __init__(self, settings: TrackingSettings, stops: Optional[Sequence[Stop]] = None):
        self.settings = settings
        self.stops: List[Stop] = list(stops if stops is not None else settings.stops)

    def validate_coordinate_bounds(self, lat: float, lng: float) -> ValidationCheck:
        """Point must be finite, non-null-island and inside the region box"""
        name = "coordinates"

        if lat is None or lng is None or not (math.isfinite(lat) and math.isfinite(lng)):
            return ValidationCheck.failed(name, "Coordinates are not finite numbers")

        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            return ValidationCheck.failed(name, "Coordinates out of range")

        if lat == 0.0 and lng == 0.0:
            return ValidationCheck.failed(name, "Null island coordinates (0, 0)")

        region = self.settings.region
        if not region.contains(lat, lng):
            return ValidationCheck.failed(name, "Coordinates outside the operating region")

        return ValidationCheck.passed(name)

    def validate_against_stop(self, lat: float, lng: float, stop: Stop) -> ValidationCheck:
        """Valid iff the point lies within the stop's coverage radius"""
        name = "stop"

        if not (math.isfinite(lat) and math.isfinite(lng)):
            return ValidationCheck.failed(name, "Coordinates are not finite numbers", stopName=stop.name)

        distance = haversine_distance_meters(lat, lng, stop.latitude, stop.longitude)
        details = {
            "stopName": stop.name,
            "distanceMeters": round(distance, 2),
            "radius": stop.radius,
        }

        if distance <= stop.radius:
            return ValidationCheck.passed(name, **details)

        return ValidationCheck.failed(
            name,
            f"{round(distance)}m from {stop.name}, outside its {stop.radius:.0f}m radius",
            **details
        )

    def validate_speed(self, speed_mps: Optional[float]) -> ValidationCheck:
        """Missing speed is accepted; otherwise 0 <= speed <= max"""
        name = "speed"

        if speed_mps is None:
            return ValidationCheck.skipped(name, "No speed reported")

        if not math.isfinite(speed_mps) or speed_mps < 0:
            return ValidationCheck.failed(name, "Speed is not a valid number", speedMps=speed_mps)

        limit = self.settings.max_speed_mps
        details = {"speedMps": speed_mps, "speedKmh": round(speed_mps * 3.6, 1)}
        if speed_mps > limit:
            return ValidationCheck.failed(
                name,
                f"Speed {speed_mps * 3.6:.0f} km/h exceeds {limit * 3.6:.0f} km/h",
                **details
            )

        return ValidationCheck.passed(name, **details)

    def validate_accuracy(self, accuracy_meters: float) -> ValidationCheck:
        """Advisory only: reported back to the device, never scored"""
        name = "accuracy"
        limit = self.settings.max_accuracy_meters

        if accuracy_meters > limit:
            return ValidationCheck.failed(
                name,
                f"GPS accuracy too poor ({accuracy_meters:.0f}m, limit {limit:.0f}m)",
                accuracyMeters=accuracy_meters
            )
        return ValidationCheck.passed(name, accuracyMeters=accuracy_meters)

    def find_nearest_stop(self, lat: float, lng: float) -> Optional[Dict[str, Any]]:
        """Closest reference stop and whether the point is inside its radius"""
        if not self.stops or not (math.isfinite(lat) and math.isfinite(lng)):
            return None

        nearest = min(
            self.stops,
            key=lambda s: haversine_distance_meters(lat, lng, s.latitude, s.longitude)
        )
        distance = haversine_distance_meters(lat, lng, nearest.latitude, nearest.longitude)
        return {
            "stop": nearest,
            "distanceMeters": round(distance, 2),
            "withinRadius": distance <= nearest.radius,
        }

    def generate_geofencing_boundaries(self, include_corridors: bool = False,
                                       corridor_width: float = 100.0) -> List[Dict[str, Any]]:
        """
        Map overlay shapes for the reference stops

        Each circle is ``{type, stopName, center{lat, lng}, radius, style}``.
        With ``include_corridors`` consecutive stops are also joined by a
        corridor polyline.
        """
        boundaries: List[Dict[str, Any]] = [
            {
                "type": "circle",
                "stopName": stop.name,
                "center": {"lat": stop.latitude, "lng": stop.longitude},
                "radius": stop.radius,
                "style": dict(CIRCLE_STYLE),
            }
            for stop in self.stops
        ]

        if include_corridors:
            for start, end in zip(self.stops, self.stops[1:]):
                boundaries.append({
                    "type": "corridor",
                    "name": f"{start.name} -> {end.name}",
                    "path": [
                        {"lat": start.latitude, "lng": start.longitude},
                        {"lat": end.latitude, "lng": end.longitude},
                    ],
                    "width": corridor_width,
                    "style": dict(CORRIDOR_STYLE),
                })

        return boundaries
