"""
Session Routes - Tracking sessions

Endpoints:
- POST /api/sessions/start - Start (or resume) tracking a bus
- POST /api/sessions/{session_id}/end - Stop tracking
- GET /api/buses/{bus_id}/sessions - Active sessions for a bus
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from bustrack.services.tracking_service import TrackingService
from .dependencies import get_service

router = APIRouter(prefix="/api", tags=["sessions"])


# ============================================
# Request/Response Models
# ============================================

class StartSessionRequest(BaseModel):
    deviceToken: str
    busId: str = Field(..., min_length=1)
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        description="Client context such as app version or boarding stop"
    )


class SessionResponse(BaseModel):
    sessionId: str
    busId: str
    isActive: bool
    created: bool
    startedAt: Optional[float] = None
    endedAt: Optional[float] = None
    locationsContributed: int
    validLocations: int
    accuracyRate: float
    qualityScore: Optional[float] = None
    trustAdjustment: float


class ActiveSessionsResponse(BaseModel):
    busId: str
    count: int
    sessions: List[SessionResponse]


# ============================================
# Endpoints
# ============================================

@router.post("/sessions/start", response_model=SessionResponse)
def start_session(request: StartSessionRequest, service: TrackingService = Depends(get_service)):
    """
    Start tracking a bus

    A device has at most one active session per bus; starting again returns
    the existing session with ``created=false``.
    """
    return service.start_tracking_session(request.deviceToken, request.busId, request.metadata).to_dict()


@router.post("/sessions/{session_id}/end", response_model=SessionResponse)
def end_session(session_id: str, service: TrackingService = Depends(get_service)):
    return service.end_tracking_session(session_id).to_dict()


@router.get("/buses/{bus_id}/sessions", response_model=ActiveSessionsResponse)
def get_active_sessions(bus_id: str, service: TrackingService = Depends(get_service)):
    sessions = service.get_active_sessions(bus_id)
    return {
        "busId": bus_id,
        "count": len(sessions),
        "sessions": [s.to_dict() for s in sessions],
    }
