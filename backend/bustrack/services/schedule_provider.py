"""
Schedule Providers

Route/stop context consumed by the ingestion pipeline and the position
aggregator. Schedules themselves are owned by the admin/CRUD side; this
module only reads them.

Two implementations:
- StaticScheduleProvider: in-memory, used by tests and single-route setups
- DatabaseScheduleProvider: reads ``bus_schedules`` rows
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

from bustrack.database.models import BusSchedule
from bustrack.models import Stop

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


class ScheduleProvider:
    """Interface for schedule lookups; ``now`` is always passed explicitly"""

    def is_currently_active(self, bus_id: str, now: float) -> bool:
        raise NotImplementedError

    def expected_stop_for(self, bus_id: str, now: float) -> Optional[Stop]:
        raise NotImplementedError

    def bus_ids(self) -> List[str]:
        """Buses this provider knows about"""
        return []


class StaticScheduleProvider(ScheduleProvider):
    """
    Fixed schedule context

    Args:
        active_buses: Buses in service; None means every bus is in service
        expected_stops: Stop each bus is expected at right now
    """

    def __init__(self, active_buses: Optional[Iterable[str]] = None,
                 expected_stops: Optional[Dict[str, Stop]] = None):
        self.active_buses = set(active_buses) if active_buses is not None else None
        self.expected_stops: Dict[str, Stop] = dict(expected_stops or {})

    def is_currently_active(self, bus_id: str, now: float) -> bool:
        return self.active_buses is None or bus_id in self.active_buses

    def expected_stop_for(self, bus_id: str, now: float) -> Optional[Stop]:
        return self.expected_stops.get(bus_id)

    def set_active(self, bus_id: str, active: bool):
        if self.active_buses is None:
            self.active_buses = set()
        if active:
            self.active_buses.add(bus_id)
        else:
            self.active_buses.discard(bus_id)

    def bus_ids(self) -> List[str]:
        return sorted((self.active_buses or set()) | set(self.expected_stops))


class DatabaseScheduleProvider(ScheduleProvider):
    """
    Schedule lookups against ``bus_schedules``

    Service windows and stop ETAs are local "HH:MM" times in the operating
    region; ``utc_offset_minutes`` converts epoch ``now`` to local time.
    A window whose end is before its start runs past midnight.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, utc_offset_minutes: int = 360,
                 stop_match_minutes: int = 15, unscheduled_active: bool = False):
        from bustrack.database.database import SessionLocal

        self._session_factory = session_factory or SessionLocal
        self.tz = timezone(timedelta(minutes=utc_offset_minutes))
        self.stop_match_minutes = stop_match_minutes
        self.unscheduled_active = unscheduled_active

    def _local(self, now: float) -> datetime:
        return datetime.fromtimestamp(now, tz=self.tz)

    def _schedules(self, bus_id: str) -> List[BusSchedule]:
        db = self._session_factory()
        try:
            rows = (
                db.query(BusSchedule)
                .filter(BusSchedule.bus_id == bus_id, BusSchedule.is_active.is_(True))
                .all()
            )
            db.expunge_all()
            return rows
        finally:
            db.close()

    def _runs_now(self, schedule: BusSchedule, local: datetime) -> bool:
        days = [d.lower() for d in (schedule.days_of_week or [])]
        if days and WEEKDAYS[local.weekday()] not in days:
            return False

        current = local.hour * 60 + local.minute
        start, end = _minutes(schedule.start_time), _minutes(schedule.end_time)
        if start <= end:
            return start <= current <= end
        return current >= start or current <= end

    def _running(self, bus_id: str, now: float) -> List[BusSchedule]:
        local = self._local(now)
        return [s for s in self._schedules(bus_id) if self._runs_now(s, local)]

    def is_currently_active(self, bus_id: str, now: float) -> bool:
        schedules = self._schedules(bus_id)
        if not schedules:
            return self.unscheduled_active
        local = self._local(now)
        return any(self._runs_now(s, local) for s in schedules)

    def expected_stop_for(self, bus_id: str, now: float) -> Optional[Stop]:
        """Stop whose ETA is closest to now, if within the match tolerance"""
        local = self._local(now)
        current = local.hour * 60 + local.minute

        best: Optional[Stop] = None
        best_gap = None
        for schedule in self._running(bus_id, now):
            for raw in schedule.stops or []:
                stop = Stop(**raw)
                if not stop.eta:
                    continue
                gap = abs(_minutes(stop.eta) - current)
                gap = min(gap, 1440 - gap)
                if gap <= self.stop_match_minutes and (best_gap is None or gap < best_gap):
                    best, best_gap = stop, gap

        return best

    def bus_ids(self) -> List[str]:
        db = self._session_factory()
        try:
            rows = (
                db.query(BusSchedule.bus_id)
                .filter(BusSchedule.is_active.is_(True))
                .distinct()
                .all()
            )
            return sorted(bus_id for (bus_id,) in rows)
        finally:
            db.close()
