"""
Maintenance Service

Background retention work:
- stale-session sweep every ``sweep_interval`` seconds
- full cleanup (sweep, sample rollups, rollup purge, device archival)
  every ``cleanup_interval`` seconds
"""

import time
import asyncio
import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .tracking_service import TrackingService

logger = logging.getLogger(__name__)


class MaintenanceService:

    def __init__(self,
                 tracking_service: 'TrackingService',
                 sweep_interval: float = 300.0,
                 cleanup_interval: float = 3600.0):
        self.tracking_service = tracking_service
        self.sweep_interval = sweep_interval
        self.cleanup_interval = cleanup_interval

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_cleanup: Optional[float] = None

        # Statistics
        self.total_sweeps = 0
        self.total_cleanups = 0
        self.error_count = 0
        self.last_result: Optional[Dict[str, int]] = None

    async def start(self):
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"[CLEANUP] Maintenance started (sweep {self.sweep_interval}s, cleanup {self.cleanup_interval}s)"
        )

    async def stop(self):
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("[CLEANUP] Maintenance stopped")

    async def _loop(self):
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.error_count += 1
                logger.error(f"[CLEANUP] Maintenance error: {e}")

            await asyncio.sleep(self.sweep_interval)

    def cleanup_due(self, now: float) -> bool:
        return self._last_cleanup is None or now - self._last_cleanup >= self.cleanup_interval

    async def run_once(self, now: Optional[float] = None) -> Dict[str, int]:
        """Run a sweep, or a full cleanup when one is due"""
        now = time.time() if now is None else now

        if self.cleanup_due(now):
            result = await asyncio.to_thread(self.tracking_service.cleanup_old_data, now)
            self._last_cleanup = now
            self.total_cleanups += 1
        else:
            result = await asyncio.to_thread(self.tracking_service.sweep_stale_sessions, now)
            self.total_sweeps += 1
            if result.get("sessionsEnded"):
                logger.info(f"[CLEANUP] Swept {result['sessionsEnded']} stale sessions")

        self.last_result = result
        return result

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'totalSweeps': self.total_sweeps,
            'totalCleanups': self.total_cleanups,
            'errorCount': self.error_count,
            'lastResult': self.last_result,
            'sweepInterval': self.sweep_interval,
            'cleanupInterval': self.cleanup_interval
        }


_maintenance_service: Optional[MaintenanceService] = None


def get_maintenance_service() -> Optional[MaintenanceService]:
    return _maintenance_service


def init_maintenance_service(tracking_service: 'TrackingService', sweep_interval: float = 300.0,
                             cleanup_interval: float = 3600.0) -> MaintenanceService:
    global _maintenance_service
    _maintenance_service = MaintenanceService(tracking_service, sweep_interval, cleanup_interval)
    return _maintenance_service
