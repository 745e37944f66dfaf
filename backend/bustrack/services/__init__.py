"""
Services Package

Facade and background services for bus tracking.

Services:
- TrackingService: One transaction per operation over the tracking core
- ScheduleProvider: Route/stop context (static or database-backed)
- PositionBroadcastService: Periodic WebSocket position push
- MaintenanceService: Periodic session sweep and data retention
"""

from .schedule_provider import (
    ScheduleProvider,
    StaticScheduleProvider,
    DatabaseScheduleProvider,
)

from .tracking_service import (
    TrackingService,
    init_tracking_service,
    get_tracking_service,
)

from .position_broadcast import (
    PositionBroadcastService,
    init_broadcast_service,
    get_broadcast_service,
)

from .maintenance import (
    MaintenanceService,
    init_maintenance_service,
    get_maintenance_service,
)

__all__ = [
    # Schedules
    "ScheduleProvider",
    "StaticScheduleProvider",
    "DatabaseScheduleProvider",

    # Facade
    "TrackingService",
    "init_tracking_service",
    "get_tracking_service",

    # Background
    "PositionBroadcastService",
    "init_broadcast_service",
    "get_broadcast_service",
    "MaintenanceService",
    "init_maintenance_service",
    "get_maintenance_service",
]
