"""
Ingestion Package

Location submission pipeline and the movement/clustering analysis feeding
secondary trust signals.

Usage:
    from bustrack.ingestion import LocationIngestionPipeline
"""

from .movement import (
    Movement,
    MovementAnalysis,
    analyze_movement,
    build_movements,
    classify_pattern,
    clustering_score,
    is_direction_consistent,
    is_speed_consistent,
)
from .pipeline import LocationIngestionPipeline

__all__ = [
    "Movement",
    "MovementAnalysis",
    "analyze_movement",
    "build_movements",
    "classify_pattern",
    "clustering_score",
    "is_direction_consistent",
    "is_speed_consistent",
    "LocationIngestionPipeline",
]
