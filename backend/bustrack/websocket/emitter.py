"""
WebSocket Event Emitter

Centralized server -> client emission for bus positions. Each bus has its
own Socket.IO room (``bus:{busId}``); the full position list is broadcast
to everyone.
"""

import time
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from bustrack.models import CurrentPositionView, PositionStatus
from .events import (
    BusPositionData,
    BusPositionsData,
    BusStatusChangedData,
    ServerEvent,
    bus_room,
)

logger = logging.getLogger(__name__)


class WebSocketEmitter:
    """
    Emit position events and keep delivery statistics

    Emission errors are counted and logged, never raised into the caller's
    loop.
    """

    def __init__(self, sio):
        """
        Args:
            sio: Socket.IO AsyncServer instance
        """
        self.sio = sio

        # bus_id -> {sid, ...}
        self._subscriptions: Dict[str, Set[str]] = defaultdict(set)

        # Statistics
        self._emit_count = 0
        self._error_count = 0
        self._last_emit_time = 0.0

    # ============================================
    # Connection Events
    # ============================================

    async def emit_connection_success(self, sid: str):
        await self._emit(
            ServerEvent.CONNECTION_SUCCESS.value,
            {
                "message": "Connected to bus tracking",
                "timestamp": time.time(),
                "serverVersion": "1.0.0"
            },
            room=sid
        )

    # ============================================
    # Position Events
    # ============================================

    async def emit_bus_position(self, view: CurrentPositionView, room: str = None):
        """Send one bus position to its room (or to ``room`` if given)"""
        data = BusPositionData(**view.to_dict())
        await self._emit(ServerEvent.BUS_POSITION.value, data.model_dump(), room or bus_room(view.bus_id))

    async def emit_bus_positions(self, views: List[CurrentPositionView]):
        data = BusPositionsData(
            positions=[BusPositionData(**v.to_dict()) for v in views],
            count=len(views),
            timestamp=time.time()
        )
        await self._emit(ServerEvent.BUS_POSITIONS.value, data.model_dump())

    async def emit_status_changed(self, view: CurrentPositionView, previous: Optional[PositionStatus]):
        data = BusStatusChangedData(
            busId=view.bus_id,
            previousStatus=previous.value if previous else None,
            status=view.status.value,
            confidenceLevel=view.confidence_level,
            timestamp=time.time()
        )
        await self._emit(ServerEvent.BUS_STATUS_CHANGED.value, data.model_dump())

    # ============================================
    # Subscription Management
    # ============================================

    def add_subscription(self, sid: str, bus_id: str):
        self._subscriptions[bus_id].add(sid)

    def remove_subscription(self, sid: str, bus_id: str = None):
        """Remove one subscription, or all of a client's when ``bus_id`` is None"""
        if bus_id is not None:
            self._subscriptions[bus_id].discard(sid)
            if not self._subscriptions[bus_id]:
                del self._subscriptions[bus_id]
            return

        for bus in list(self._subscriptions):
            self._subscriptions[bus].discard(sid)
            if not self._subscriptions[bus]:
                del self._subscriptions[bus]

    def get_subscribers(self, bus_id: str) -> Set[str]:
        return set(self._subscriptions.get(bus_id, set()))

    # ============================================
    # Internal
    # ============================================

    async def _emit(self, event: str, data: Any, room: str = None):
        try:
            if room:
                await self.sio.emit(event, data, room=room)
            else:
                await self.sio.emit(event, data)

            self._emit_count += 1
            self._last_emit_time = time.time()

        except Exception as e:
            self._error_count += 1
            logger.error(f"[WS] Failed to emit {event}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get emitter statistics"""
        return {
            "totalEmits": self._emit_count,
            "errorCount": self._error_count,
            "lastEmitTime": self._last_emit_time,
            "subscribedBuses": len(self._subscriptions),
            "totalSubscribers": sum(len(s) for s in self._subscriptions.values())
        }


# Global emitter instance (initialized in main.py)
emitter: Optional[WebSocketEmitter] = None


def get_emitter() -> Optional[WebSocketEmitter]:
    """Get the global WebSocket emitter instance"""
    return emitter


def set_emitter(e: WebSocketEmitter):
    """Set the global WebSocket emitter instance"""
    global emitter
    emitter = e
