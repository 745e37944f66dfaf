"""
Session quality metrics
"""

from typing import Optional


def accuracy_rate(locations_contributed: int, valid_locations: int) -> float:
    """Share of a session's samples that validated; 0 when nothing was sent"""
    if not locations_contributed:
        return 0.0
    return valid_locations / locations_contributed


def quality_score(locations_contributed: int, valid_locations: int,
                  duration_minutes: float, average_accuracy: Optional[float]) -> float:
    """
    Weighted blend in [0, 1]:
    40% accuracy rate, 30% duration (capped at 60 min), 30% GPS accuracy.

    A session without any validated sample is scored as if its GPS accuracy
    were 100m, which contributes nothing.
    """
    rate = accuracy_rate(locations_contributed, valid_locations)
    duration_component = min(1.0, max(0.0, duration_minutes) / 60.0)
    avg_accuracy = 100.0 if average_accuracy is None else average_accuracy
    accuracy_component = max(0.0, (100.0 - avg_accuracy) / 100.0)

    score = rate * 0.4 + duration_component * 0.3 + accuracy_component * 0.3
    return max(0.0, min(1.0, score))
