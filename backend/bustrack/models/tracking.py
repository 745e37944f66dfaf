"""
Tracking Data Models

Input contract for location submissions and the typed results returned by
the tracking core. Results are plain dataclasses with ``to_dict()`` producing
camelCase payloads for the API and WebSocket layers.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


TOKEN_PATTERN = re.compile(r"^[a-f0-9]{64}$")

# Epoch values above this are treated as milliseconds
MILLISECOND_THRESHOLD = 1e11


class PositionStatus(str, Enum):
    """Published status of a bus position"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    NO_DATA = "no_data"


class CheckOutcome(str, Enum):
    """Outcome of a single validation check"""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class MovementPattern(str, Enum):
    """Classification of a device's recent track"""
    BUS_LIKE = "bus_like"
    BUS_WITH_STOPS = "bus_with_stops"
    TOO_FAST = "too_fast"
    STATIONARY = "stationary"
    WALKING = "walking"
    NO_MOVEMENT_DATA = "no_movement_data"


# ============================================
# Input
# ============================================

class LocationSubmission(BaseModel):
    """
    One raw GPS report from a contributing device

    Coordinates are only type-checked here; range and NaN handling belong to
    the validator so that bad coordinates count against the device instead
    of being rejected outright.
    """
    bus_id: str = Field(min_length=1, max_length=64)
    device_token: str
    latitude: float
    longitude: float
    accuracy_meters: float
    speed_mps: Optional[float] = None
    heading: Optional[float] = None
    timestamp: float
    session_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "bus_id": "B1",
                "device_token": "9f" * 32,
                "latitude": 23.7937,
                "longitude": 90.3629,
                "accuracy_meters": 12.0,
                "speed_mps": 8.3,
                "timestamp": 1721376000.0,
                "session_id": None
            }
        }

    @field_validator("device_token")
    @classmethod
    def _check_token(cls, value: str) -> str:
        value = value.strip().lower()
        if not TOKEN_PATTERN.match(value):
            raise ValueError("device token must be 64 hex characters")
        return value

    @field_validator("accuracy_meters")
    @classmethod
    def _check_accuracy(cls, value: float) -> float:
        if not math.isfinite(value) or value < 0:
            raise ValueError("accuracy must be a finite, non-negative number of meters")
        return value

    @field_validator("speed_mps")
    @classmethod
    def _check_speed(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not math.isfinite(value):
            raise ValueError("speed must be a finite number")
        return value

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("timestamp must be a positive epoch value")
        if value > MILLISECOND_THRESHOLD:
            return value / 1000.0
        return value


# ============================================
# Validation results
# ============================================

@dataclass
class ValidationCheck:
    """Result of one validator check; never raised, always returned"""
    name: str
    outcome: CheckOutcome
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ran(self) -> bool:
        return self.outcome != CheckOutcome.SKIPPED

    @property
    def valid(self) -> bool:
        """Skipped checks count as valid"""
        return self.outcome != CheckOutcome.FAILED

    @classmethod
    def passed(cls, name: str, **details) -> 'ValidationCheck':
        return cls(name=name, outcome=CheckOutcome.PASSED, details=details)

    @classmethod
    def failed(cls, name: str, reason: str, **details) -> 'ValidationCheck':
        return cls(name=name, outcome=CheckOutcome.FAILED, reason=reason, details=details)

    @classmethod
    def skipped(cls, name: str, reason: str = None) -> 'ValidationCheck':
        return cls(name=name, outcome=CheckOutcome.SKIPPED, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "outcome": self.outcome.value,
            "reason": self.reason,
            **self.details,
        }


@dataclass
class TrustDeltaBreakdown:
    """Per-check trust deltas and their sum"""
    components: Dict[str, float] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return round(sum(self.components.values()), 6)

    def to_dict(self) -> Dict[str, Any]:
        return {"components": dict(self.components), "total": self.total}


@dataclass
class IngestionResult:
    """Outcome of one location submission"""
    success: bool
    sample_id: int
    bus_id: str
    is_validated: bool
    reputation_weight: float
    validation_results: Dict[str, ValidationCheck]
    trust_delta: TrustDeltaBreakdown
    trust_score: float
    reputation_updated: bool
    session_id: Optional[str] = None
    messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sampleId": self.sample_id,
            "busId": self.bus_id,
            "isValidated": self.is_validated,
            "reputationWeight": round(self.reputation_weight, 4),
            "validationResults": {
                name: check.to_dict() for name, check in self.validation_results.items()
            },
            "trustDelta": self.trust_delta.to_dict(),
            "trustScore": round(self.trust_score, 4),
            "reputationUpdated": self.reputation_updated,
            "sessionId": self.session_id,
            "messages": list(self.messages),
        }


# ============================================
# Devices
# ============================================

@dataclass
class DeviceRegistration:
    """Issued device token"""
    token: str
    device_id: int
    token_hash: str
    created: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "deviceId": self.device_id,
            "created": self.created,
        }


@dataclass
class TokenValidation:
    valid: bool
    device_id: Optional[int] = None
    token_hash: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "deviceId": self.device_id, "reason": self.reason}


@dataclass
class DeviceTrustView:
    """Public view of a device's standing"""
    reputation_score: float
    trust_score: float
    is_trusted: bool
    total_contributions: int
    accurate_contributions: int
    movement_consistency: float
    clustering_score: float
    last_activity: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reputationScore": round(self.reputation_score, 4),
            "trustScore": round(self.trust_score, 4),
            "isTrusted": self.is_trusted,
            "totalContributions": self.total_contributions,
            "accurateContributions": self.accurate_contributions,
            "movementConsistency": round(self.movement_consistency, 4),
            "clusteringScore": round(self.clustering_score, 4),
            "lastActivity": self.last_activity,
        }


# ============================================
# Sessions
# ============================================

@dataclass
class SessionResult:
    """Result of starting or ending a tracking session"""
    session_id: str
    bus_id: str
    is_active: bool
    created: bool = False
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    locations_contributed: int = 0
    valid_locations: int = 0
    accuracy_rate: float = 0.0
    quality_score: Optional[float] = None
    trust_adjustment: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "busId": self.bus_id,
            "isActive": self.is_active,
            "created": self.created,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "locationsContributed": self.locations_contributed,
            "validLocations": self.valid_locations,
            "accuracyRate": round(self.accuracy_rate, 4),
            "qualityScore": None if self.quality_score is None else round(self.quality_score, 4),
            "trustAdjustment": self.trust_adjustment,
        }


@dataclass
class SweepResult:
    ended: int = 0
    deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"sessionsEnded": self.ended, "sessionsDeleted": self.deleted}


# ============================================
# Positions
# ============================================

@dataclass
class CurrentPositionView:
    """Published read model for one bus"""
    bus_id: str
    status: PositionStatus
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    confidence_level: float = 0.0
    active_trackers: int = 0
    trusted_trackers: int = 0
    average_trust_score: float = 0.0
    movement_consistency: float = 0.0
    sample_count: int = 0
    last_known_location: Optional[Dict[str, Any]] = None
    last_updated: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "busId": self.bus_id,
            "status": self.status.value,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "confidenceLevel": self.confidence_level,
            "activeTrackers": self.active_trackers,
            "trustedTrackers": self.trusted_trackers,
            "averageTrustScore": self.average_trust_score,
            "movementConsistency": self.movement_consistency,
            "sampleCount": self.sample_count,
            "lastKnownLocation": self.last_known_location,
            "lastUpdated": self.last_updated,
        }
