"""
Crowd-Sourced Bus Tracking
Main FastAPI Application Entry Point

Initializes FastAPI, Socket.IO, the database, the tracking service and the
background broadcast/maintenance tasks.
"""

import os
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    logger=False,
    engineio_logger=False,
    ping_interval=25,
    ping_timeout=60
)

START_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown"""

    # Startup
    print("=" * 60)
    print("[STARTUP] Crowd-Sourced Bus Tracking")
    print("=" * 60)

    from bustrack.database import init_db, SessionLocal, SettingsCache, SettingsStore
    init_db()
    print("[OK] Database initialized")

    from bustrack.config import get_config, TrackingSettings
    cfg = get_config()
    settings = TrackingSettings.from_config(cfg)
    print("[OK] Configuration loaded")

    store = SettingsStore(SessionLocal, SettingsCache(ttl_seconds=cfg.get('tracking.settingsCacheTtl', 300)))
    added = store.initialize_defaults()
    settings = settings.with_overrides(store)
    print(f"[OK] Business settings loaded ({added} defaults added)")

    from bustrack.services import (
        DatabaseScheduleProvider,
        init_tracking_service,
        init_broadcast_service,
        init_maintenance_service,
    )
    schedule = DatabaseScheduleProvider(SessionLocal, utc_offset_minutes=settings.utc_offset_minutes)
    tracking_service = init_tracking_service(settings=settings, session_factory=SessionLocal, schedule=schedule)

    from bustrack.api import set_settings_store
    set_settings_store(store)
    print(f"[OK] Tracking service initialized ({len(settings.stops)} reference stops)")

    # Initialize WebSocket emitter and handlers
    from bustrack.websocket import WebSocketEmitter, WebSocketHandlers, set_emitter, set_handlers

    ws_emitter = WebSocketEmitter(sio)
    ws_handlers = WebSocketHandlers(sio, ws_emitter, tracking_service)
    set_emitter(ws_emitter)
    set_handlers(ws_handlers)
    print("[OK] WebSocket emitter and handlers initialized")

    broadcast_service = init_broadcast_service(tracking_service, ws_emitter, settings.broadcast_interval)
    maintenance_service = init_maintenance_service(
        tracking_service, settings.sweep_interval, settings.cleanup_interval
    )
    await broadcast_service.start()
    await maintenance_service.start()
    print("[OK] Background services started")

    print("=" * 60)
    print("[SERVER] Ready at http://localhost:8000")
    print("[DOCS] API docs at http://localhost:8000/docs")
    print("[WS] WebSocket ready for connections")
    print("=" * 60)

    yield

    # Shutdown
    print("[SHUTDOWN] Shutting down...")

    await broadcast_service.stop()
    await maintenance_service.stop()

    print("[SHUTDOWN] Complete")


# Create FastAPI application
app = FastAPI(
    title="Bus Tracking API",
    description="Crowd-sourced real-time bus positions",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",
        "*"
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Include API Routers
# ============================================

from bustrack.api import (  # noqa: E402
    device_router,
    location_router,
    session_router,
    position_router,
    admin_router,
    register_error_handlers,
)

register_error_handlers(app)

# Device routes: /api/devices/register, /api/devices/validate, /api/devices/{token}/trust
app.include_router(device_router)

# Location routes: /api/locations
app.include_router(location_router)

# Session routes: /api/sessions/*, /api/buses/{bus_id}/sessions
app.include_router(session_router)

# Position routes: /api/buses/positions, /api/buses/{bus_id}/position, /api/geofences
app.include_router(position_router)

# Admin routes: /api/tracking/*, /api/admin/*
app.include_router(admin_router)


# ============================================
# Root Endpoints
# ============================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint - API information"""
    return {
        "name": "Crowd-Sourced Bus Tracking",
        "version": "1.0.0",
        "status": "operational",
        "documentation": "/docs",
        "websocket": "ws://localhost:8000",
        "endpoints": {
            "devices": "/api/devices/*",
            "locations": "/api/locations",
            "sessions": "/api/sessions/*",
            "positions": "/api/buses/positions",
            "geofences": "/api/geofences",
            "statistics": "/api/tracking/statistics",
            "admin": "/api/admin/*"
        }
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint"""
    from bustrack.services import get_tracking_service
    from bustrack.websocket import get_handlers

    handlers = get_handlers()

    return {
        "status": "healthy",
        "timestamp": time.time(),
        "uptime": time.time() - START_TIME,
        "tracking": "ready" if get_tracking_service() else "not_initialized",
        "websocket": {
            "connected_clients": handlers.get_connected_clients() if handlers else 0,
            "status": "ready"
        }
    }


@app.get("/ws/stats", tags=["websocket"])
async def websocket_stats():
    """Get WebSocket and background service statistics"""
    from bustrack.services import get_broadcast_service, get_maintenance_service
    from bustrack.websocket import get_emitter, get_handlers

    emitter = get_emitter()
    handlers = get_handlers()
    broadcast = get_broadcast_service()
    maintenance = get_maintenance_service()

    return {
        "emitter": emitter.get_stats() if emitter else None,
        "clients": handlers.get_connected_clients() if handlers else 0,
        "broadcast": broadcast.get_statistics() if broadcast else None,
        "maintenance": maintenance.get_statistics() if maintenance else None,
        "timestamp": time.time()
    }


# ============================================
# Create Socket.IO ASGI app
# ============================================

sio_app = socketio.ASGIApp(sio, app)


# ============================================
# WebSocket Event Reference (handled by WebSocketHandlers)
# ============================================
#
# Server → Client Events:
#   - connection:success   : Connection established
#   - bus:position         : One bus position (room bus:{busId})
#   - bus:positions        : All bus positions (broadcast)
#   - bus:status_changed   : Bus moved between active/no_data/inactive
#   - subscribe:response   : Subscription acknowledgement
#
# Client → Server Events:
#   - subscribe:bus        : {busId} join a bus room
#   - unsubscribe:bus      : {busId} leave a bus room


# ============================================
# Entry Point
# ============================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bustrack.main:sio_app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
