"""
Location Routes - Crowd-sourced GPS submissions

Endpoints:
- POST /api/locations - Submit one location sample
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from bustrack.services.tracking_service import TrackingService
from .dependencies import get_service

router = APIRouter(prefix="/api", tags=["locations"])


class LocationSubmitRequest(BaseModel):
    """
    One GPS reading

    Only shape is checked here. Out-of-region or impossible coordinates are
    accepted and scored against the device rather than rejected.
    """
    busId: str = Field(..., description="Bus being tracked")
    deviceToken: str = Field(..., description="Token from /api/devices/register")
    latitude: float
    longitude: float
    accuracy: float = Field(..., description="Reported GPS accuracy in meters")
    speed: Optional[float] = Field(None, description="Reported speed in m/s")
    heading: Optional[float] = None
    timestamp: float = Field(..., description="Epoch seconds or milliseconds")
    sessionId: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "busId": "B1",
                "deviceToken": "9f" * 32,
                "latitude": 23.7937,
                "longitude": 90.3629,
                "accuracy": 12.0,
                "speed": 8.3,
                "timestamp": 1721376000000,
                "sessionId": None
            }
        }


class LocationSubmitResponse(BaseModel):
    success: bool
    sampleId: int
    busId: str
    isValidated: bool
    reputationWeight: float
    validationResults: Dict[str, Dict[str, Any]]
    trustDelta: Dict[str, Any]
    trustScore: float
    reputationUpdated: bool
    sessionId: Optional[str] = None
    messages: List[str] = []


@router.post("/locations", response_model=LocationSubmitResponse)
def submit_location(request: LocationSubmitRequest, service: TrackingService = Depends(get_service)):
    """
    Submit a location sample

    Failed validation still stores the sample (``isValidated=false``) and
    lowers the device's trust; only malformed input is rejected with 422.
    """
    result = service.submit_location({
        "bus_id": request.busId,
        "device_token": request.deviceToken,
        "latitude": request.latitude,
        "longitude": request.longitude,
        "accuracy_meters": request.accuracy,
        "speed_mps": request.speed,
        "heading": request.heading,
        "timestamp": request.timestamp,
        "session_id": request.sessionId,
    })
    return result.to_dict()
