"""
Shared route dependencies and error mapping

Tracking errors are translated to HTTP statuses in one place so routes can
call the facade directly.
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from bustrack.database.settings_store import SettingsStore
from bustrack.exceptions import (
    DeviceNotFoundError,
    InvalidSubmissionError,
    SessionNotFoundError,
    TrackingError,
    TransientStorageError,
    UnknownDeviceError,
)
from bustrack.services.tracking_service import TrackingService, get_tracking_service

logger = logging.getLogger(__name__)


# ============================================
# Component References
# ============================================

_settings_store: Optional[SettingsStore] = None


def set_settings_store(store: Optional[SettingsStore]):
    global _settings_store
    _settings_store = store


def get_service() -> TrackingService:
    service = get_tracking_service()
    if service is None:
        raise HTTPException(status_code=503, detail="Tracking service not initialized")
    return service


def get_store() -> SettingsStore:
    if _settings_store is None:
        raise HTTPException(status_code=503, detail="Settings store not initialized")
    return _settings_store


# ============================================
# Error Mapping
# ============================================

ERROR_STATUS = (
    (InvalidSubmissionError, 422),
    (UnknownDeviceError, 401),
    (DeviceNotFoundError, 404),
    (SessionNotFoundError, 404),
    (TransientStorageError, 503),
)


def status_for(error: TrackingError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(TrackingError, tracking_error_handler)
