"""
Position Broadcast Service

Background task that recomputes every known bus on a fixed cadence and
pushes the result to WebSocket clients.

Broadcasts:
- bus:position - to each bus room, every interval
- bus:positions - all buses in one message, every interval
- bus:status_changed - when a bus moves between active/no_data/inactive
"""

import time
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from bustrack.models import CurrentPositionView, PositionStatus

if TYPE_CHECKING:
    from bustrack.websocket.emitter import WebSocketEmitter
    from .tracking_service import TrackingService

logger = logging.getLogger(__name__)


class PositionBroadcastService:
    """
    Usage:
        service = PositionBroadcastService(tracking_service, ws_emitter, 10.0)
        await service.start()
        # ... later ...
        await service.stop()
    """

    def __init__(self,
                 tracking_service: 'TrackingService',
                 ws_emitter: 'WebSocketEmitter' = None,
                 broadcast_interval: float = 10.0):
        self.tracking_service = tracking_service
        self.ws_emitter = ws_emitter
        self.broadcast_interval = broadcast_interval

        self._running = False
        self._task: Optional[asyncio.Task] = None

        # Statistics
        self.total_broadcasts = 0
        self.total_status_changes = 0
        self.error_count = 0
        self.last_broadcast_time = 0.0

    def set_ws_emitter(self, emitter: 'WebSocketEmitter'):
        self.ws_emitter = emitter

    async def start(self):
        """Start the background broadcast task"""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._broadcast_loop())
        logger.info(f"[WS] Position broadcast started (every {self.broadcast_interval}s)")

    async def stop(self):
        """Stop the background broadcast task"""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("[WS] Position broadcast stopped")

    async def _broadcast_loop(self):
        while self._running:
            try:
                await self.broadcast_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.error_count += 1
                logger.error(f"[WS] Position broadcast error: {e}")

            await asyncio.sleep(self.broadcast_interval)

    async def broadcast_once(self, now: Optional[float] = None) -> List[CurrentPositionView]:
        """Recompute all buses (off the event loop) and emit the results"""
        results: List[Tuple[CurrentPositionView, Optional[PositionStatus]]] = await asyncio.to_thread(
            self.tracking_service.refresh_all_positions, now
        )
        views = [view for view, _ in results]

        if self.ws_emitter:
            for view, previous in results:
                await self.ws_emitter.emit_bus_position(view)
                if previous != view.status:
                    await self.ws_emitter.emit_status_changed(view, previous)
                    self.total_status_changes += 1

            await self.ws_emitter.emit_bus_positions(views)

        self.total_broadcasts += 1
        self.last_broadcast_time = time.time()
        return views

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'totalBroadcasts': self.total_broadcasts,
            'totalStatusChanges': self.total_status_changes,
            'errorCount': self.error_count,
            'lastBroadcastTime': self.last_broadcast_time,
            'broadcastInterval': self.broadcast_interval
        }


# Global broadcast service instance
_broadcast_service: Optional[PositionBroadcastService] = None


def get_broadcast_service() -> Optional[PositionBroadcastService]:
    return _broadcast_service


def init_broadcast_service(tracking_service: 'TrackingService', ws_emitter=None,
                           interval: float = 10.0) -> PositionBroadcastService:
    """Initialize the global broadcast service"""
    global _broadcast_service
    _broadcast_service = PositionBroadcastService(tracking_service, ws_emitter, interval)
    return _broadcast_service
