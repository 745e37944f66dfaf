"""
API Routes Package

This module exports all FastAPI routers for the bus tracking service.
"""

from .device_routes import router as device_router
from .location_routes import router as location_router
from .session_routes import router as session_router
from .position_routes import router as position_router
from .admin_routes import router as admin_router
from .dependencies import register_error_handlers, set_settings_store

__all__ = [
    "device_router",
    "location_router",
    "session_router",
    "position_router",
    "admin_router",
    "register_error_handlers",
    "set_settings_store",
]
