"""
Movement Analysis

Secondary behavioral signals derived from a device's recent track:
- movement consistency: does the track look like a bus (speed profile,
  smooth speed changes, few sharp turns)?
- clustering: do other devices on the same bus report nearby positions?

Both are smoothed into the trust ledger; neither gates validation.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from bustrack.config import TrackingSettings
from bustrack.geo import bearing_change, bearing_degrees, haversine_distance_meters
from bustrack.models import MovementPattern

# (latitude, longitude, recorded_at)
TrackPoint = Tuple[float, float, float]

MAX_SPEED_VARIANCE = 400.0
MAX_SPEED_JUMP_KMH = 30.0
MAX_AVG_TURN_DEGREES = 45.0
MAX_TURN_DEGREES = 120.0
WALKING_AVG_KMH = 8.0
WALKING_MAX_KMH = 15.0
BUS_WITH_STOPS_MAX_AVG_KMH = 40.0
ISOLATED_CLUSTERING_SCORE = 0.3


@dataclass
class Movement:
    distance_meters: float
    seconds: float
    speed_kmh: float
    bearing: float


@dataclass
class MovementAnalysis:
    pattern: MovementPattern
    is_bus_like: bool
    pattern_confidence: float
    speed_consistent: bool
    direction_consistent: bool
    confidence: float
    avg_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0

    def to_dict(self):
        return {
            "pattern": self.pattern.value,
            "isBusLike": self.is_bus_like,
            "speedConsistent": self.speed_consistent,
            "directionConsistent": self.direction_consistent,
            "confidence": round(self.confidence, 3),
            "avgSpeedKmh": round(self.avg_speed_kmh, 2),
            "maxSpeedKmh": round(self.max_speed_kmh, 2),
        }


def build_movements(points: Sequence[TrackPoint]) -> List[Movement]:
    """Pairwise segments of a time-ordered track; zero-duration pairs are dropped"""
    ordered = sorted(points, key=lambda p: p[2])
    movements: List[Movement] = []

    for (lat1, lng1, t1), (lat2, lng2, t2) in zip(ordered, ordered[1:]):
        seconds = t2 - t1
        if seconds <= 0:
            continue
        distance = haversine_distance_meters(lat1, lng1, lat2, lng2)
        movements.append(Movement(
            distance_meters=distance,
            seconds=seconds,
            speed_kmh=distance / seconds * 3.6,
            bearing=bearing_degrees(lat1, lng1, lat2, lng2),
        ))

    return movements


def classify_pattern(speeds_kmh: Sequence[float], settings: TrackingSettings) -> Tuple[MovementPattern, bool, float]:
    """Return (pattern, is_bus_like, pattern confidence)"""
    if not speeds_kmh:
        return MovementPattern.NO_MOVEMENT_DATA, False, 0.0

    speeds = np.asarray(speeds_kmh, dtype=float)
    avg_speed = float(speeds.mean())
    max_speed = float(speeds.max())
    stationary = int((speeds < settings.min_moving_speed_kmh).sum())
    moving = len(speeds) - stationary

    if max_speed > settings.max_bus_speed_kmh:
        return MovementPattern.TOO_FAST, False, 0.2
    if stationary == len(speeds):
        return MovementPattern.STATIONARY, False, 0.1
    if avg_speed < WALKING_AVG_KMH and max_speed < WALKING_MAX_KMH:
        return MovementPattern.WALKING, False, 0.3
    if moving > 0 and stationary > 0 and WALKING_AVG_KMH <= avg_speed <= BUS_WITH_STOPS_MAX_AVG_KMH:
        return MovementPattern.BUS_WITH_STOPS, True, 0.9
    return MovementPattern.BUS_LIKE, True, 0.8


def is_speed_consistent(speeds_kmh: Sequence[float]) -> bool:
    if len(speeds_kmh) < 2:
        return True
    speeds = np.asarray(speeds_kmh, dtype=float)
    max_jump = float(np.abs(np.diff(speeds)).max())
    return float(speeds.var()) < MAX_SPEED_VARIANCE and max_jump < MAX_SPEED_JUMP_KMH


def is_direction_consistent(bearings: Sequence[float]) -> bool:
    if len(bearings) < 3:
        return True
    changes = [bearing_change(a, b) for a, b in zip(bearings, bearings[1:])]
    return sum(changes) / len(changes) < MAX_AVG_TURN_DEGREES and max(changes) < MAX_TURN_DEGREES


def analyze_movement(points: Sequence[TrackPoint], settings: TrackingSettings) -> Optional[MovementAnalysis]:
    """
    Score how bus-like a track is, in [0, 1]

    Returns None when the track has fewer than two usable points.
    """
    movements = build_movements(points)
    if not movements:
        return None

    speeds = [m.speed_kmh for m in movements]
    pattern, is_bus_like, pattern_confidence = classify_pattern(speeds, settings)
    speed_ok = is_speed_consistent(speeds)
    direction_ok = is_direction_consistent([m.bearing for m in movements])

    confidence = 0.0
    if is_bus_like:
        confidence += pattern_confidence * 0.5
    if speed_ok:
        confidence += 0.25
    if direction_ok:
        confidence += 0.25

    return MovementAnalysis(
        pattern=pattern,
        is_bus_like=is_bus_like,
        pattern_confidence=pattern_confidence,
        speed_consistent=speed_ok,
        direction_consistent=direction_ok,
        confidence=min(1.0, confidence),
        avg_speed_kmh=sum(speeds) / len(speeds),
        max_speed_kmh=max(speeds),
    )


def clustering_score(lat: float, lng: float, others: Sequence[Tuple[float, float]], radius_meters: float) -> float:
    """
    Fraction of other devices on the same bus reporting within ``radius_meters``

    A device with no peers to compare against gets a neutral-low score.
    """
    if not others:
        return ISOLATED_CLUSTERING_SCORE

    nearby = sum(
        1 for other_lat, other_lng in others
        if haversine_distance_meters(lat, lng, other_lat, other_lng) <= radius_meters
    )
    return nearby / len(others)
