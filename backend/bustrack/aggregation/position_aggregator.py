"""
Position Aggregator

Answers "where is bus X right now, and how sure are we". Recent validated
samples are fused into a reputation-weighted centroid; the result is upserted
into ``bus_current_positions``, the read model every consumer polls.

Recomputation has no side effects beyond that single upsert, so it is safe
to run on every read and on a timer at the same time: given the same samples
it always writes the same answer (last writer wins).
"""

import math
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bustrack.config import TrackingSettings
from bustrack.database.models import BusCurrentPosition, BusLocation, DeviceToken
from bustrack.geo import weighted_centroid
from bustrack.models import CurrentPositionView, PositionStatus
from bustrack.sessions import SessionTracker

logger = logging.getLogger(__name__)


def _snapshot(lat: float, lng: float, recorded_at: float) -> Dict[str, Any]:
    return {"latitude": lat, "longitude": lng, "recordedAt": recorded_at}


class PositionAggregator:
    """
    Compute and publish the current position of a bus

    Usage:
        aggregator = PositionAggregator(settings, sessions, schedule)
        view = aggregator.compute_current_position(db, "B1", now)
        db.commit()
    """

    def __init__(self, settings: TrackingSettings, sessions: SessionTracker, schedule):
        self.settings = settings
        self.sessions = sessions
        self.schedule = schedule

    # ============================================
    # Recomputation
    # ============================================

    def compute_current_position(self, db: Session, bus_id: str, now: float) -> CurrentPositionView:
        stored = db.get(BusCurrentPosition, bus_id)

        if not self.schedule.is_currently_active(bus_id, now):
            view = CurrentPositionView(
                bus_id=bus_id,
                status=PositionStatus.INACTIVE,
                last_known_location=self._last_known_location(db, bus_id, stored),
                last_updated=now,
            )
            return self._publish(db, view)

        since = now - self.settings.recency_window_seconds
        samples = (
            db.query(BusLocation)
            .filter(
                BusLocation.bus_id == bus_id,
                BusLocation.is_validated.is_(True),
                BusLocation.recorded_at >= since,
            )
            .order_by(BusLocation.recorded_at, BusLocation.id)
            .all()
        )

        # zero-weight samples cannot move a weighted mean
        weighted = [s for s in samples if s.reputation_weight > 0]
        if not weighted:
            return self._publish(db, self._no_data_view(db, bus_id, stored, now))

        latitude, longitude = weighted_centroid(
            [(s.latitude, s.longitude) for s in weighted],
            [s.reputation_weight for s in weighted],
        )

        average_weight = sum(s.reputation_weight for s in weighted) / len(weighted)
        contributing = sorted({s.device_token_hash for s in weighted})
        trusted_devices = {
            s.device_token_hash for s in weighted
            if s.reputation_weight >= self.settings.trusted_threshold
        }

        active_trackers = self.sessions.count_active_trackers(db, bus_id, now)
        trusted_trackers = min(len(trusted_devices), active_trackers)

        view = CurrentPositionView(
            bus_id=bus_id,
            status=PositionStatus.ACTIVE,
            latitude=latitude,
            longitude=longitude,
            confidence_level=self.confidence_level(active_trackers, average_weight),
            active_trackers=active_trackers,
            trusted_trackers=trusted_trackers,
            average_trust_score=round(average_weight, 4),
            movement_consistency=self._movement_consistency(db, contributing),
            sample_count=len(weighted),
            last_known_location=_snapshot(latitude, longitude, max(s.recorded_at for s in weighted)),
            last_updated=now,
        )
        return self._publish(db, view)

    def confidence_level(self, active_trackers: int, average_weight: float) -> float:
        s = self.settings
        confidence = (
            s.confidence_base
            + min(s.confidence_tracker_cap, active_trackers * s.confidence_per_tracker)
            + s.confidence_weight_factor * average_weight
        )
        return round(max(0.0, min(1.0, confidence)), 4)

    def decayed_confidence(self, recorded_at: float, now: float) -> float:
        """
        Confidence of a stale last-known location, floored

        Decays per whole elapsed minute, so recomputations within the same
        minute publish the same value.
        """
        minutes = math.floor(max(0.0, now - recorded_at) / 60.0)
        decay = 1.0 - minutes / self.settings.no_data_decay_minutes
        return round(max(self.settings.no_data_confidence_floor, min(1.0, decay)), 4)

    def _no_data_view(self, db: Session, bus_id: str, stored: Optional[BusCurrentPosition],
                      now: float) -> CurrentPositionView:
        last_known = self._last_known_location(db, bus_id, stored)
        confidence = 0.0
        if last_known is not None:
            confidence = self.decayed_confidence(last_known["recordedAt"], now)

        return CurrentPositionView(
            bus_id=bus_id,
            status=PositionStatus.NO_DATA,
            confidence_level=confidence,
            last_known_location=last_known,
            last_updated=now,
        )

    def _last_known_location(self, db: Session, bus_id: str,
                             stored: Optional[BusCurrentPosition]) -> Optional[Dict[str, Any]]:
        """Most recent validated sample, else the frozen snapshot kept after purges"""
        latest = (
            db.query(BusLocation)
            .filter(BusLocation.bus_id == bus_id, BusLocation.is_validated.is_(True))
            .order_by(BusLocation.recorded_at.desc(), BusLocation.id.desc())
            .first()
        )
        if latest is not None:
            return _snapshot(latest.latitude, latest.longitude, latest.recorded_at)
        if stored is not None and stored.last_known_location:
            return dict(stored.last_known_location)
        return None

    def _movement_consistency(self, db: Session, device_hashes: List[str]) -> float:
        if not device_hashes:
            return 0.0
        values = [
            value or 0.0 for (value,) in
            db.query(DeviceToken.movement_consistency)
            .filter(DeviceToken.token_hash.in_(device_hashes))
            .all()
        ]
        return round(sum(values) / len(values), 4) if values else 0.0

    def _publish(self, db: Session, view: CurrentPositionView) -> CurrentPositionView:
        """
        Upsert the read model row

        A concurrent first insert for the same bus raises IntegrityError on
        flush; the transaction runner retries and the retry takes the update
        path.
        """
        row = db.get(BusCurrentPosition, view.bus_id)
        if row is None:
            row = BusCurrentPosition(bus_id=view.bus_id)
            db.add(row)

        row.latitude = view.latitude
        row.longitude = view.longitude
        row.confidence_level = view.confidence_level
        row.status = view.status.value
        row.active_trackers = view.active_trackers
        row.trusted_trackers = view.trusted_trackers
        row.average_trust_score = view.average_trust_score
        row.movement_consistency = view.movement_consistency
        row.sample_count = view.sample_count
        row.last_known_location = view.last_known_location
        row.last_updated = view.last_updated
        db.flush()

        logger.debug(f"[AGGREGATE] {view.bus_id}: {view.status.value} confidence={view.confidence_level}")
        return view

    # ============================================
    # Reads
    # ============================================

    def get_stored_position(self, db: Session, bus_id: str, now: float) -> Optional[CurrentPositionView]:
        """
        Stored row as a view; an ``active`` row past the freshness window is
        reported as ``no_data`` with its coordinates withdrawn
        """
        row = db.get(BusCurrentPosition, bus_id)
        if row is None:
            return None

        view = self.row_to_view(row)
        if view.is_active and now - row.last_updated > self.settings.freshness_window_seconds:
            view.status = PositionStatus.NO_DATA
            view.latitude = None
            view.longitude = None
        return view

    @staticmethod
    def row_to_view(row: BusCurrentPosition) -> CurrentPositionView:
        return CurrentPositionView(
            bus_id=row.bus_id,
            status=PositionStatus(row.status),
            latitude=row.latitude,
            longitude=row.longitude,
            confidence_level=row.confidence_level,
            active_trackers=row.active_trackers,
            trusted_trackers=row.trusted_trackers,
            average_trust_score=row.average_trust_score,
            movement_consistency=row.movement_consistency,
            sample_count=row.sample_count,
            last_known_location=dict(row.last_known_location) if row.last_known_location else None,
            last_updated=row.last_updated,
        )

    def known_bus_ids(self, db: Session) -> List[str]:
        """Buses with any sample, any published position, or a schedule"""
        bus_ids = {bus_id for (bus_id,) in db.query(BusLocation.bus_id).distinct().all()}
        bus_ids.update(bus_id for (bus_id,) in db.query(BusCurrentPosition.bus_id).all())
        bus_ids.update(self.schedule.bus_ids())
        return sorted(bus_ids)
