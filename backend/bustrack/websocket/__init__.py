"""
WebSocket Package

Real-time bus position push over Socket.IO.

Components:
- events: Event names and payload models
- emitter: Server -> Client emission
- handlers: Client -> Server subscriptions

Usage:
    from bustrack.websocket import WebSocketEmitter, WebSocketHandlers

    emitter = WebSocketEmitter(sio)
    handlers = WebSocketHandlers(sio, emitter, tracking_service)
"""

from .events import ServerEvent, ClientEvent, bus_room
from .emitter import WebSocketEmitter, get_emitter, set_emitter
from .handlers import WebSocketHandlers, get_handlers, set_handlers

__all__ = [
    "ServerEvent",
    "ClientEvent",
    "bus_room",
    "WebSocketEmitter",
    "WebSocketHandlers",
    "get_emitter",
    "set_emitter",
    "get_handlers",
    "set_handlers",
]
