"""
Tracking Session Tracker

Bookkeeping of device+bus engagement windows. Sessions feed the aggregator's
active-tracker count and a quality score that nudges device trust when a
session ends.

At most one active session per (device, bus) is guaranteed by a partial
unique index. A concurrent duplicate insert surfaces as ``IntegrityError``
on flush; the transaction runner retries once, and the retry finds the
winner's session.
"""

import secrets
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from bustrack.config import TrackingSettings
from bustrack.database.models import TrackingSession
from bustrack.exceptions import SessionNotFoundError
from bustrack.geo import haversine_distance_meters
from bustrack.models import SessionResult, SweepResult
from bustrack.trust.trust_policy import session_quality_adjustment
from .session_metrics import accuracy_rate, quality_score

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class SessionTracker:
    """
    Start, end, update and sweep tracking sessions

    Methods take the caller's SQLAlchemy session and an explicit ``now``.
    """

    def __init__(self, settings: TrackingSettings):
        self.settings = settings

    @staticmethod
    def generate_session_id(token_hash: str, bus_id: str, now: float) -> str:
        return f"{token_hash[:8]}_{bus_id}_{int(now)}_{secrets.token_hex(4)}"

    # ============================================
    # Lookups
    # ============================================

    def _find_active(self, db: Session, token_hash: str, bus_id: str) -> Optional[TrackingSession]:
        return (
            db.query(TrackingSession)
            .filter(
                TrackingSession.device_token_hash == token_hash,
                TrackingSession.bus_id == bus_id,
                TrackingSession.is_active.is_(True),
            )
            .first()
        )

    def get(self, db: Session, session_id: str, for_update: bool = False) -> TrackingSession:
        query = db.query(TrackingSession).filter(TrackingSession.session_id == session_id)
        if for_update:
            query = query.with_for_update()
        row = query.first()
        if row is None:
            raise SessionNotFoundError(f"Unknown tracking session {session_id}")
        return row

    def get_active_sessions_for_bus(self, db: Session, bus_id: str, now: float) -> List[TrackingSession]:
        """Active sessions on a bus with activity inside the tracker window"""
        since = now - self.settings.active_tracker_window_seconds
        return (
            db.query(TrackingSession)
            .filter(
                TrackingSession.bus_id == bus_id,
                TrackingSession.is_active.is_(True),
                TrackingSession.last_activity_at >= since,
            )
            .order_by(TrackingSession.started_at)
            .all()
        )

    def count_active_trackers(self, db: Session, bus_id: str, now: float) -> int:
        """Distinct devices with a live session on the bus"""
        since = now - self.settings.active_tracker_window_seconds
        return (
            db.query(func.count(func.distinct(TrackingSession.device_token_hash)))
            .filter(
                TrackingSession.bus_id == bus_id,
                TrackingSession.is_active.is_(True),
                TrackingSession.last_activity_at >= since,
            )
            .scalar()
        ) or 0

    # ============================================
    # Lifecycle
    # ============================================

    def start_session(self, db: Session, token_hash: str, bus_id: str,
                      metadata: Optional[Dict[str, Any]], trust_score: float, now: float) -> SessionResult:
        """
        Open a session, or return the device's existing active one on this bus

        An active session that has gone stale is closed first so the new one
        can take its place.
        """
        existing = self._find_active(db, token_hash, bus_id)
        if existing is not None:
            if now - existing.last_activity_at <= self.settings.session_timeout_seconds:
                return self.to_result(existing, now, created=False)

            existing.is_active = False
            existing.ended_at = existing.last_activity_at
            db.flush()
            logger.info(f"[SESSION] Closed stale session {existing.session_id} before restart")

        row = TrackingSession(
            session_id=self.generate_session_id(token_hash, bus_id, now),
            device_token_hash=token_hash,
            bus_id=bus_id,
            started_at=now,
            is_active=True,
            last_activity_at=now,
            locations_contributed=0,
            valid_locations=0,
            total_distance_covered=0.0,
            trust_score_at_start=trust_score,
            session_metadata=metadata or {},
        )
        db.add(row)
        db.flush()

        logger.info(f"[SESSION] Started {row.session_id} (device {token_hash[:8]}, bus {bus_id})")
        return self.to_result(row, now, created=True)

    def end_session(self, db: Session, session_id: str, now: float) -> SessionResult:
        """
        Close a session; ending an already-ended session is a no-op

        The result carries the session-quality trust adjustment for the
        caller to apply through the ledger.
        """
        row = self.get(db, session_id, for_update=True)
        if not row.is_active:
            return self.to_result(row, now)

        row.is_active = False
        row.ended_at = now
        db.flush()

        result = self.to_result(row, now)
        result.trust_adjustment = session_quality_adjustment(
            self.settings.policy, result.quality_score, row.locations_contributed
        )
        logger.info(
            f"[SESSION] Ended {session_id}: {row.valid_locations}/{row.locations_contributed} valid, "
            f"quality {result.quality_score:.2f}"
        )
        return result

    def record_sample(self, db: Session, row: TrackingSession, lat: float, lng: float,
                      accuracy_meters: float, is_validated: bool, now: float):
        """
        Fold one accepted sample into the session counters

        Only validated samples move the average accuracy, distance and last
        point; every sample counts as a contribution.
        """
        row.locations_contributed = (row.locations_contributed or 0) + 1
        row.last_activity_at = now

        if is_validated:
            previous_valid = row.valid_locations or 0
            row.valid_locations = previous_valid + 1

            if row.average_accuracy is None or previous_valid == 0:
                row.average_accuracy = accuracy_meters
            else:
                row.average_accuracy = (row.average_accuracy * previous_valid + accuracy_meters) / row.valid_locations

            if row.last_latitude is not None and row.last_longitude is not None:
                row.total_distance_covered = (row.total_distance_covered or 0.0) + haversine_distance_meters(
                    row.last_latitude, row.last_longitude, lat, lng
                )
            row.last_latitude = lat
            row.last_longitude = lng

        db.flush()

    def sweep_stale_sessions(self, db: Session, now: float) -> SweepResult:
        """
        Force-end idle sessions and delete expired ones

        Both steps are set-based statements, so overlapping sweeps or a
        racing ``end_session`` all converge on ``is_active = False``.
        """
        idle_cutoff = now - self.settings.session_timeout_seconds
        ended = (
            db.query(TrackingSession)
            .filter(
                TrackingSession.is_active.is_(True),
                TrackingSession.last_activity_at < idle_cutoff,
            )
            .update(
                {
                    TrackingSession.is_active: False,
                    TrackingSession.ended_at: TrackingSession.last_activity_at,
                },
                synchronize_session=False,
            )
        )

        retention_cutoff = now - self.settings.session_retention_days * SECONDS_PER_DAY
        deleted = (
            db.query(TrackingSession)
            .filter(
                TrackingSession.is_active.is_(False),
                TrackingSession.started_at < retention_cutoff,
            )
            .delete(synchronize_session=False)
        )

        if ended or deleted:
            logger.info(f"[SESSION] Sweep ended {ended} idle and deleted {deleted} expired sessions")
        return SweepResult(ended=ended, deleted=deleted)

    # ============================================
    # Views
    # ============================================

    @staticmethod
    def duration_minutes(row: TrackingSession, now: float) -> float:
        end = row.ended_at if row.ended_at is not None else now
        return max(0.0, end - row.started_at) / 60.0

    def to_result(self, row: TrackingSession, now: float, created: bool = False) -> SessionResult:
        return SessionResult(
            session_id=row.session_id,
            bus_id=row.bus_id,
            is_active=row.is_active,
            created=created,
            started_at=row.started_at,
            ended_at=row.ended_at,
            locations_contributed=row.locations_contributed or 0,
            valid_locations=row.valid_locations or 0,
            accuracy_rate=accuracy_rate(row.locations_contributed or 0, row.valid_locations or 0),
            quality_score=quality_score(
                row.locations_contributed or 0,
                row.valid_locations or 0,
                self.duration_minutes(row, now),
                row.average_accuracy,
            ),
        )
