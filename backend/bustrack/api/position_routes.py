"""
Position Routes - Published bus positions

Endpoints:
- GET /api/buses/positions - Current position of every known bus
- GET /api/buses/{bus_id}/position - Current position of one bus
- GET /api/buses/{bus_id}/history - Daily rollups for one bus
- GET /api/geofences - Stop circles (and optional corridors) for the map
"""

import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from bustrack.services.tracking_service import TrackingService
from .dependencies import get_service

router = APIRouter(prefix="/api", tags=["positions"])


class PositionResponse(BaseModel):
    busId: str
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    confidenceLevel: float
    activeTrackers: int
    trustedTrackers: int
    averageTrustScore: float
    movementConsistency: float
    sampleCount: int
    lastKnownLocation: Optional[Dict[str, Any]] = None
    lastUpdated: Optional[float] = None


class PositionListResponse(BaseModel):
    count: int
    positions: List[PositionResponse]
    timestamp: float


@router.get("/buses/positions", response_model=PositionListResponse)
def get_all_positions(service: TrackingService = Depends(get_service)):
    views = service.get_all_current_positions()
    return {
        "count": len(views),
        "positions": [v.to_dict() for v in views],
        "timestamp": time.time(),
    }


@router.get("/buses/{bus_id}/position", response_model=PositionResponse)
def get_position(bus_id: str, service: TrackingService = Depends(get_service)):
    """
    Current best-estimate position

    Missing or stale data is reported through ``status`` (``no_data`` or
    ``inactive``), never as an error.
    """
    return service.get_current_position(bus_id).to_dict()


@router.get("/buses/{bus_id}/history")
def get_history(bus_id: str,
                limit: int = Query(30, ge=1, le=365, description="Most recent days to return"),
                service: TrackingService = Depends(get_service)):
    rollups = service.get_daily_history(bus_id, limit)
    return {"busId": bus_id, "count": len(rollups), "days": rollups}


@router.get("/geofences")
def get_geofences(includeCorridors: bool = Query(False, description="Add corridors between consecutive stops"),
                  service: TrackingService = Depends(get_service)):
    geofences = service.get_geofences(include_corridors=includeCorridors)
    return {"count": len(geofences), "geofences": geofences}
