"""
Device Routes - Anonymous device identity

Endpoints:
- POST /api/devices/register - Issue a token for a browser fingerprint
- POST /api/devices/validate - Check a token
- GET /api/devices/{token}/trust - Reputation and trust of a device
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from bustrack.services.tracking_service import TrackingService
from .dependencies import get_service

router = APIRouter(prefix="/api/devices", tags=["devices"])


# ============================================
# Request/Response Models
# ============================================

class RegisterDeviceRequest(BaseModel):
    """Browser fingerprint collected by the client"""
    fingerprint: Dict[str, Any] = Field(
        ...,
        description="Screen, platform, language, canvas/WebGL digests and feature flags"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "fingerprint": {
                    "screen": {"width": 1080, "height": 2340, "colorDepth": 24},
                    "navigator": {"platform": "Linux armv8l", "language": "bn-BD", "hardwareConcurrency": 8},
                    "timezone": "Asia/Dhaka",
                    "features": {"localStorage": True, "geolocation": True}
                }
            }
        }


class RegisterDeviceResponse(BaseModel):
    token: str
    deviceId: int
    created: bool


class ValidateTokenRequest(BaseModel):
    token: str


class ValidateTokenResponse(BaseModel):
    valid: bool
    deviceId: Optional[int] = None
    reason: Optional[str] = None


class DeviceTrustResponse(BaseModel):
    reputationScore: float
    trustScore: float
    isTrusted: bool
    totalContributions: int
    accurateContributions: int
    movementConsistency: float
    clusteringScore: float
    lastActivity: Optional[float] = None


# ============================================
# Endpoints
# ============================================

@router.post("/register", response_model=RegisterDeviceResponse)
def register_device(request: RegisterDeviceRequest, service: TrackingService = Depends(get_service)):
    """
    Register a device

    The same fingerprint always maps to the same token; registering twice
    returns the existing device with ``created=false``.
    """
    return service.register_device(request.fingerprint).to_dict()


@router.post("/validate", response_model=ValidateTokenResponse)
def validate_token(request: ValidateTokenRequest, service: TrackingService = Depends(get_service)):
    return service.validate_device_token(request.token).to_dict()


@router.get("/{token}/trust", response_model=DeviceTrustResponse)
def get_device_trust(token: str, service: TrackingService = Depends(get_service)):
    return service.get_device_trust(token).to_dict()
