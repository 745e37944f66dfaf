"""
Sessions Package

Tracking session lifecycle and quality metrics.

Usage:
    from bustrack.sessions import SessionTracker, quality_score
"""

from .session_metrics import accuracy_rate, quality_score
from .session_tracker import SessionTracker

__all__ = [
    "accuracy_rate",
    "quality_score",
    "SessionTracker",
]
