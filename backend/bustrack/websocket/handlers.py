"""
WebSocket Client Event Handlers

Clients subscribe to individual buses; subscribing pushes the currently
published position right away so the map does not wait for the next
broadcast tick.
"""

import time
import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .emitter import WebSocketEmitter
from .events import ClientEvent, ServerEvent, SubscribeBusRequest, bus_room

logger = logging.getLogger(__name__)


class WebSocketHandlers:
    """
    Handle client -> server events

    Usage:
        handlers = WebSocketHandlers(sio, emitter, tracking_service)
    """

    def __init__(self, sio, emitter: WebSocketEmitter, tracking_service=None):
        self.sio = sio
        self.emitter = emitter
        self.tracking_service = tracking_service

        self._clients: Dict[str, Dict[str, Any]] = {}

        self._register_handlers()

    def _register_handlers(self):
        self.sio.on(ClientEvent.CONNECT.value, self.handle_connect)
        self.sio.on(ClientEvent.DISCONNECT.value, self.handle_disconnect)
        self.sio.on(ClientEvent.SUBSCRIBE_BUS.value, self.handle_subscribe_bus)
        self.sio.on(ClientEvent.UNSUBSCRIBE_BUS.value, self.handle_unsubscribe_bus)

    # ============================================
    # Connection Handlers
    # ============================================

    async def handle_connect(self, sid: str, environ: Dict, auth: Optional[Dict] = None):
        self._clients[sid] = {
            "sid": sid,
            "connected_at": time.time(),
            "remote_addr": environ.get("REMOTE_ADDR", "unknown"),
            "buses": set(),
        }
        logger.info(f"[WS] Client connected: {sid}")
        await self.emitter.emit_connection_success(sid)

    async def handle_disconnect(self, sid: str, *args):
        self._clients.pop(sid, None)
        self.emitter.remove_subscription(sid)
        logger.info(f"[WS] Client disconnected: {sid}")

    # ============================================
    # Subscriptions
    # ============================================

    async def handle_subscribe_bus(self, sid: str, data: Dict):
        """
        Args:
            data: {busId: "B1"}
        """
        try:
            request = SubscribeBusRequest(**(data or {}))
        except ValidationError as e:
            await self._respond(sid, "error", None, str(e))
            return

        await self.sio.enter_room(sid, bus_room(request.busId))
        self.emitter.add_subscription(sid, request.busId)
        if sid in self._clients:
            self._clients[sid]["buses"].add(request.busId)

        await self._respond(sid, "subscribed", request.busId)

        if self.tracking_service is not None:
            view = await asyncio.to_thread(self.tracking_service.get_stored_position, request.busId)
            if view is not None:
                await self.emitter.emit_bus_position(view, room=sid)

    async def handle_unsubscribe_bus(self, sid: str, data: Dict):
        try:
            request = SubscribeBusRequest(**(data or {}))
        except ValidationError as e:
            await self._respond(sid, "error", None, str(e))
            return

        await self.sio.leave_room(sid, bus_room(request.busId))
        self.emitter.remove_subscription(sid, request.busId)
        if sid in self._clients:
            self._clients[sid]["buses"].discard(request.busId)

        await self._respond(sid, "unsubscribed", request.busId)

    async def _respond(self, sid: str, status: str, bus_id: Optional[str], message: str = None):
        await self.sio.emit(ServerEvent.SUBSCRIBE_RESPONSE.value, {
            "status": status,
            "busId": bus_id,
            "message": message,
            "timestamp": time.time()
        }, room=sid)

    def get_connected_clients(self) -> int:
        return len(self._clients)


# Global handlers instance (initialized in main.py)
handlers: Optional[WebSocketHandlers] = None


def get_handlers() -> Optional[WebSocketHandlers]:
    """Get the global WebSocket handlers instance"""
    return handlers


def set_handlers(h: WebSocketHandlers):
    """Set the global WebSocket handlers instance"""
    global handlers
    handlers = h
