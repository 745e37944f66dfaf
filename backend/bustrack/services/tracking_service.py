"""
Tracking Service

Facade over the tracking core. Every public operation is one unit of work:
it opens a fresh SQLAlchemy session through ``run_in_transaction`` and
commits, or rolls back entirely and raises.

Operations:
- register_device / validate_device_token
- submit_location
- start_tracking_session / end_tracking_session / get_active_sessions
- get_current_position / get_all_current_positions / refresh_all_positions
- get_device_trust / set_device_trust
- get_geofences
- get_collection_statistics
- cleanup_old_data
"""

import time
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from bustrack.aggregation import PositionAggregator
from bustrack.config import TrackingSettings
from bustrack.database.database import SessionLocal, run_in_transaction
from bustrack.database.models import BusCurrentPosition, BusLocation, DeviceToken, TrackingSession
from bustrack.database.settings_store import SettingsStore
from bustrack.exceptions import DeviceNotFoundError, InvalidSubmissionError, UnknownDeviceError
from bustrack.geo import RouteValidator
from bustrack.history import LocationHistory
from bustrack.ingestion import LocationIngestionPipeline
from bustrack.models import (
    CurrentPositionView,
    DeviceRegistration,
    DeviceTrustView,
    IngestionResult,
    LocationSubmission,
    PositionStatus,
    SessionResult,
    TokenValidation,
)
from bustrack.sessions import SessionTracker
from bustrack.trust import DeviceTokenService, DeviceTrustLedger
from .schedule_provider import ScheduleProvider, StaticScheduleProvider

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
HIGH_QUALITY_SESSION = 0.7


class TrackingService:
    """
    Crowd-sourced bus tracking facade

    Usage:
        service = TrackingService(settings, schedule=DatabaseScheduleProvider())
        registration = service.register_device(fingerprint)
        service.submit_location({"bus_id": "B1", "device_token": registration.token, ...})
        view = service.get_current_position("B1")
    """

    def __init__(self,
                 settings: Optional[TrackingSettings] = None,
                 session_factory: Optional[sessionmaker] = None,
                 schedule: Optional[ScheduleProvider] = None,
                 secret: Optional[str] = None):
        self._session_factory = session_factory or SessionLocal
        self.schedule = schedule or StaticScheduleProvider()
        self._secret = secret
        self._build_components(settings or TrackingSettings.from_config())

        # Statistics
        self.total_submissions = 0
        self.validated_submissions = 0
        self.rejected_submissions = 0
        self.last_cleanup: Optional[Dict[str, Any]] = None

    def _build_components(self, settings: TrackingSettings):
        self.settings = settings
        self.validator = RouteValidator(settings)
        self.ledger = DeviceTrustLedger(settings)
        self.tokens = DeviceTokenService(self.ledger, self._secret)
        self.sessions = SessionTracker(settings)
        self.pipeline = LocationIngestionPipeline(
            settings, self.validator, self.ledger, self.tokens, self.sessions, self.schedule
        )
        self.aggregator = PositionAggregator(settings, self.sessions, self.schedule)
        self.history = LocationHistory(settings)

    def apply_business_settings(self, store: SettingsStore):
        """Rebuild components with admin-edited settings layered on top"""
        self._build_components(self.settings.with_overrides(store))
        logger.info("[TRACKING] Business settings applied")

    def _run(self, work):
        return run_in_transaction(work, self._session_factory)

    @staticmethod
    def _now(now: Optional[float]) -> float:
        return time.time() if now is None else now

    # ============================================
    # Devices
    # ============================================

    def register_device(self, fingerprint: Dict[str, Any], now: Optional[float] = None) -> DeviceRegistration:
        now = self._now(now)

        def work(db: Session) -> DeviceRegistration:
            try:
                return self.tokens.register(db, fingerprint, now)
            except ValueError as e:
                raise InvalidSubmissionError(str(e)) from e

        return self._run(work)

    def validate_device_token(self, token: str) -> TokenValidation:
        return self._run(lambda db: self.tokens.validate(db, token))

    def get_device_trust(self, token: str) -> DeviceTrustView:
        if not self.tokens.is_valid_format(token):
            raise InvalidSubmissionError("Invalid token format")

        def work(db: Session) -> DeviceTrustView:
            validation = self.tokens.validate(db, token)
            if not validation.valid:
                raise DeviceNotFoundError(validation.reason or "Device not found")
            return self.ledger.to_view(self.ledger.get(db, validation.token_hash))

        return self._run(work)

    def set_device_trust(self, token_hash: str, score: float) -> DeviceTrustView:
        """Moderator override of a device's trust score"""
        def work(db: Session) -> DeviceTrustView:
            return self.ledger.to_view(self.ledger.set_trust_score(db, token_hash, score))

        return self._run(work)

    # ============================================
    # Ingestion
    # ============================================

    def submit_location(self, sample: Union[LocationSubmission, Dict[str, Any]],
                        now: Optional[float] = None) -> IngestionResult:
        if not isinstance(sample, LocationSubmission):
            try:
                sample = LocationSubmission(**sample)
            except ValidationError as e:
                self.rejected_submissions += 1
                raise InvalidSubmissionError(str(e)) from e

        now = self._now(now)
        try:
            result = self._run(lambda db: self.pipeline.ingest(db, sample, now))
        except (InvalidSubmissionError, UnknownDeviceError):
            self.rejected_submissions += 1
            raise

        self.total_submissions += 1
        if result.is_validated:
            self.validated_submissions += 1
        return result

    # ============================================
    # Sessions
    # ============================================

    def start_tracking_session(self, token: str, bus_id: str,
                               metadata: Optional[Dict[str, Any]] = None,
                               now: Optional[float] = None) -> SessionResult:
        if not bus_id or not str(bus_id).strip():
            raise InvalidSubmissionError("bus_id is required")
        now = self._now(now)

        def work(db: Session) -> SessionResult:
            validation = self.tokens.validate(db, token)
            if not validation.valid:
                raise UnknownDeviceError(validation.reason or "Device token not registered")
            device = self.ledger.get(db, validation.token_hash)
            return self.sessions.start_session(
                db, validation.token_hash, bus_id, metadata, device.trust_score, now
            )

        return self._run(work)

    def end_tracking_session(self, session_id: str, now: Optional[float] = None) -> SessionResult:
        now = self._now(now)

        def work(db: Session) -> SessionResult:
            result = self.sessions.end_session(db, session_id, now)
            if result.trust_adjustment:
                row = self.sessions.get(db, session_id)
                self.ledger.apply_trust_delta(db, row.device_token_hash, result.trust_adjustment)
            return result

        return self._run(work)

    def get_active_sessions(self, bus_id: str, now: Optional[float] = None) -> List[SessionResult]:
        now = self._now(now)

        def work(db: Session) -> List[SessionResult]:
            return [
                self.sessions.to_result(row, now)
                for row in self.sessions.get_active_sessions_for_bus(db, bus_id, now)
            ]

        return self._run(work)

    # ============================================
    # Positions
    # ============================================

    def get_current_position(self, bus_id: str, now: Optional[float] = None) -> CurrentPositionView:
        """Recompute and publish; stale or missing data is a status, never an error"""
        now = self._now(now)
        return self._run(lambda db: self.aggregator.compute_current_position(db, bus_id, now))

    def get_all_current_positions(self, now: Optional[float] = None) -> List[CurrentPositionView]:
        return [view for view, _ in self.refresh_all_positions(now)]

    def refresh_all_positions(self, now: Optional[float] = None) -> List[Tuple[CurrentPositionView, Optional[PositionStatus]]]:
        """
        Recompute every known bus

        Returns (view, previous status) pairs so push consumers can detect
        status transitions. The previous status is what readers saw, i.e.
        after freshness demotion.
        """
        now = self._now(now)

        def work(db: Session):
            results = []
            for bus_id in self.aggregator.known_bus_ids(db):
                previous = self.aggregator.get_stored_position(db, bus_id, now)
                view = self.aggregator.compute_current_position(db, bus_id, now)
                results.append((view, previous.status if previous else None))
            return results

        return self._run(work)

    def get_stored_position(self, bus_id: str, now: Optional[float] = None) -> Optional[CurrentPositionView]:
        now = self._now(now)
        return self._run(lambda db: self.aggregator.get_stored_position(db, bus_id, now))

    def get_daily_history(self, bus_id: str, limit: int = 30) -> List[Dict[str, Any]]:
        return self._run(lambda db: self.history.get_daily_rollups(db, bus_id, limit))

    # ============================================
    # Reference data
    # ============================================

    def get_geofences(self, include_corridors: bool = False) -> List[Dict[str, Any]]:
        return self.validator.generate_geofencing_boundaries(include_corridors=include_corridors)

    # ============================================
    # Monitoring
    # ============================================

    def get_collection_statistics(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = self._now(now)
        day_start = self.history.day_start(now)

        def work(db: Session) -> Dict[str, Any]:
            active_sessions = (
                db.query(func.count(TrackingSession.id))
                .filter(TrackingSession.is_active.is_(True))
                .scalar()
            )
            locations_today = (
                db.query(func.count(BusLocation.id))
                .filter(BusLocation.recorded_at >= day_start)
                .scalar()
            )
            valid_today, avg_accuracy = (
                db.query(func.count(BusLocation.id), func.avg(BusLocation.accuracy_meters))
                .filter(BusLocation.recorded_at >= day_start, BusLocation.is_validated.is_(True))
                .one()
            )
            sessions_today = (
                db.query(TrackingSession)
                .filter(TrackingSession.started_at >= day_start)
                .all()
            )
            high_quality = sum(
                1 for row in sessions_today
                if self.sessions.to_result(row, now).quality_score > HIGH_QUALITY_SESSION
            )
            tracked_devices = (
                db.query(func.count(DeviceToken.id))
                .filter(DeviceToken.archived_at.is_(None))
                .scalar()
            )
            trusted_devices = (
                db.query(func.count(DeviceToken.id))
                .filter(DeviceToken.archived_at.is_(None), DeviceToken.is_trusted.is_(True))
                .scalar()
            )
            buses_with_position = (
                db.query(func.count(BusCurrentPosition.bus_id))
                .filter(
                    BusCurrentPosition.status == PositionStatus.ACTIVE.value,
                    BusCurrentPosition.last_updated >= now - self.settings.freshness_window_seconds,
                )
                .scalar()
            )

            return {
                "activeSessions": active_sessions or 0,
                "locationsToday": locations_today or 0,
                "validLocationsToday": valid_today or 0,
                "averageAccuracyToday": round(avg_accuracy, 2) if avg_accuracy is not None else None,
                "sessionsToday": len(sessions_today),
                "highQualitySessionsToday": high_quality,
                "trackedDevices": tracked_devices or 0,
                "trustedDevices": trusted_devices or 0,
                "busesWithPosition": buses_with_position or 0,
                "timestamp": now,
            }

        return self._run(work)

    def get_stats(self) -> Dict[str, Any]:
        """In-process submission counters"""
        return {
            "totalSubmissions": self.total_submissions,
            "validatedSubmissions": self.validated_submissions,
            "rejectedSubmissions": self.rejected_submissions,
            "validationRate": (
                self.validated_submissions / self.total_submissions
                if self.total_submissions else 0.0
            ),
            "lastCleanup": self.last_cleanup,
        }

    # ============================================
    # Retention
    # ============================================

    def sweep_stale_sessions(self, now: Optional[float] = None) -> Dict[str, int]:
        now = self._now(now)
        return self._run(lambda db: self.sessions.sweep_stale_sessions(db, now).to_dict())

    def cleanup_old_data(self, now: Optional[float] = None) -> Dict[str, int]:
        """
        Apply every retention window and return what was removed

        - sessions: idle ones force-ended, expired ones deleted
        - raw samples: rolled up per bus/day, then deleted
        - rollups: deleted past their own window
        - devices: soft-archived after long inactivity (never deleted)
        """
        now = self._now(now)

        def work(db: Session) -> Dict[str, int]:
            counts: Dict[str, int] = {}
            counts.update(self.sessions.sweep_stale_sessions(db, now).to_dict())
            counts.update(self.history.roll_up_and_purge(db, now))
            counts["rollupsDeleted"] = self.history.purge_rollups(db, now)

            idle_cutoff = now - self.settings.device_retention_days * SECONDS_PER_DAY
            counts["devicesArchived"] = (
                db.query(DeviceToken)
                .filter(
                    DeviceToken.archived_at.is_(None),
                    DeviceToken.last_activity < idle_cutoff,
                )
                .update({DeviceToken.archived_at: now}, synchronize_session=False)
            )
            return counts

        counts = self._run(work)
        self.last_cleanup = {**counts, "timestamp": now}
        logger.info(f"[CLEANUP] {counts}")
        return counts


# Global service instance (initialized in main.py)
_tracking_service: Optional[TrackingService] = None


def init_tracking_service(**kwargs) -> TrackingService:
    """Create the global tracking service"""
    global _tracking_service
    _tracking_service = TrackingService(**kwargs)
    return _tracking_service


def get_tracking_service() -> Optional[TrackingService]:
    """Get the global tracking service instance"""
    return _tracking_service
