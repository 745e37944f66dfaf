"""
Admin & Monitoring Routes

Endpoints:
- GET /api/tracking/statistics - Collection statistics for today
- GET /api/tracking/stats - In-process submission counters
- POST /api/tracking/cleanup - Run retention now
- PUT /api/admin/devices/{token_hash}/trust - Override a device's trust score
- GET /api/admin/settings - List business settings
- PUT /api/admin/settings/{key} - Change a business setting

Admin authentication happens upstream of this service.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from bustrack.database.settings_store import VALUE_TYPES, SettingsStore
from bustrack.services.tracking_service import TrackingService
from .dependencies import get_service, get_store

router = APIRouter(prefix="/api", tags=["admin"])


# ============================================
# Request/Response Models
# ============================================

class TrustOverrideRequest(BaseModel):
    trustScore: float = Field(..., ge=0.0, le=1.0)


class SettingUpdateRequest(BaseModel):
    value: Any
    valueType: Optional[str] = Field(None, description=f"One of {', '.join(VALUE_TYPES)}")
    description: Optional[str] = None


class CleanupResponse(BaseModel):
    sessionsEnded: int
    sessionsDeleted: int
    samplesRolledUp: int
    samplesDeleted: int
    rollupsDeleted: int
    devicesArchived: int


# ============================================
# Monitoring
# ============================================

@router.get("/tracking/statistics")
def get_statistics(service: TrackingService = Depends(get_service)):
    return service.get_collection_statistics()


@router.get("/tracking/stats")
def get_counters(service: TrackingService = Depends(get_service)):
    return service.get_stats()


@router.post("/tracking/cleanup", response_model=CleanupResponse)
def run_cleanup(service: TrackingService = Depends(get_service)):
    return service.cleanup_old_data()


# ============================================
# Admin
# ============================================

@router.put("/admin/devices/{token_hash}/trust")
def override_trust(token_hash: str, request: TrustOverrideRequest,
                   service: TrackingService = Depends(get_service)):
    return service.set_device_trust(token_hash, request.trustScore).to_dict()


@router.get("/admin/settings")
def list_settings(store: SettingsStore = Depends(get_store)) -> Dict[str, Any]:
    return {"settings": store.all()}


@router.put("/admin/settings/{key}")
def update_setting(key: str, request: SettingUpdateRequest,
                   store: SettingsStore = Depends(get_store),
                   service: TrackingService = Depends(get_service)):
    """Persist a setting and rebuild the tracking components with it"""
    try:
        value = store.set(key, request.value, request.valueType, request.description)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    service.apply_business_settings(store)
    return {"key": key, "value": value}
