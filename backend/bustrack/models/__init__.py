"""
Data Models Package

Pydantic input models and dataclass result types shared by the tracking core,
the API routers and the WebSocket layer.

Usage:
    from bustrack.models import LocationSubmission, PositionStatus, Stop
"""

from .coordinates import BoundingBox, Stop
from .tracking import (
    TOKEN_PATTERN,
    PositionStatus,
    CheckOutcome,
    MovementPattern,
    LocationSubmission,
    ValidationCheck,
    TrustDeltaBreakdown,
    IngestionResult,
    DeviceRegistration,
    TokenValidation,
    DeviceTrustView,
    SessionResult,
    SweepResult,
    CurrentPositionView,
)

__all__ = [
    "BoundingBox",
    "Stop",
    "TOKEN_PATTERN",
    "PositionStatus",
    "CheckOutcome",
    "MovementPattern",
    "LocationSubmission",
    "ValidationCheck",
    "TrustDeltaBreakdown",
    "IngestionResult",
    "DeviceRegistration",
    "TokenValidation",
    "DeviceTrustView",
    "SessionResult",
    "SweepResult",
    "CurrentPositionView",
]
