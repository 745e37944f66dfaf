"""
Location Ingestion Pipeline

Turns one raw submission into a stored, judged ``BusLocation`` and moves the
contributing device's trust accordingly. Everything runs on the caller's
SQLAlchemy session: the sample, the ledger updates and the session counters
are committed together by the caller or not at all.

Steps:
1. Resolve the device (unknown token -> UnknownDeviceError)
2. Check the optional session belongs to this device and bus
3. Run coordinate, stop, speed, accuracy and schedule checks
4. Snapshot the device trust as the sample's reputation weight
5. Store the sample (validated = coordinates AND speed)
6. Apply the summed trust delta and record the contribution outcome
7. Smooth movement/clustering signals into the ledger
8. Update session counters
"""

import math
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from bustrack.config import TrackingSettings
from bustrack.database.models import BusLocation, TrackingSession
from bustrack.exceptions import InvalidSubmissionError, SessionNotFoundError, UnknownDeviceError
from bustrack.geo import RouteValidator
from bustrack.models import IngestionResult, LocationSubmission, ValidationCheck
from bustrack.sessions import SessionTracker
from bustrack.trust import DeviceTokenService, DeviceTrustLedger, compute_trust_delta
from .movement import analyze_movement, clustering_score

logger = logging.getLogger(__name__)

# Stored in place of NaN/inf coordinates, which columns cannot hold
NON_FINITE_PLACEHOLDER = 0.0


class LocationIngestionPipeline:
    """
    Validate, store and score location submissions

    Usage:
        pipeline = LocationIngestionPipeline(settings, validator, ledger, tokens, sessions, schedule)
        result = pipeline.ingest(db, submission, now)
        db.commit()
    """

    def __init__(self, settings: TrackingSettings, validator: RouteValidator,
                 ledger: DeviceTrustLedger, tokens: DeviceTokenService,
                 sessions: SessionTracker, schedule):
        self.settings = settings
        self.validator = validator
        self.ledger = ledger
        self.tokens = tokens
        self.sessions = sessions
        self.schedule = schedule

    def ingest(self, db: Session, submission: LocationSubmission, now: float) -> IngestionResult:
        # 1. Device
        validation = self.tokens.validate(db, submission.device_token)
        if not validation.valid:
            raise UnknownDeviceError(validation.reason or "Device token not registered")
        token_hash = validation.token_hash

        # 2. Session ownership (locked so counters serialize per session)
        session_row = None
        if submission.session_id:
            session_row = self._resolve_session(db, submission, token_hash)

        # 3. Checks
        checks = self.run_checks(submission, now)
        is_validated = checks["coordinates"].valid and checks["speed"].valid

        # 4. Weight snapshot, taken before this sample moves trust
        device = self.ledger.get(db, token_hash)
        reputation_weight = device.trust_score

        # 5. Sample; non-finite coordinates are kept raw in the summary only
        latitude, longitude = submission.latitude, submission.longitude
        summary = {name: check.outcome.value for name, check in checks.items()}
        if not (math.isfinite(latitude) and math.isfinite(longitude)):
            summary["rawCoordinates"] = {"latitude": repr(latitude), "longitude": repr(longitude)}
            latitude, longitude = NON_FINITE_PLACEHOLDER, NON_FINITE_PLACEHOLDER

        sample = BusLocation(
            bus_id=submission.bus_id,
            device_token_hash=token_hash,
            session_id=submission.session_id,
            latitude=latitude,
            longitude=longitude,
            accuracy_meters=submission.accuracy_meters,
            speed_mps=submission.speed_mps,
            heading=submission.heading,
            recorded_at=submission.timestamp,
            received_at=now,
            reputation_weight=reputation_weight,
            is_validated=is_validated,
            validation_summary=summary,
        )
        db.add(sample)
        db.flush()

        # 6. Trust
        breakdown = compute_trust_delta(self.settings.policy, checks)
        self.ledger.apply_trust_delta(db, token_hash, breakdown.total)
        device = self.ledger.record_contribution_outcome(db, token_hash, is_validated, now=now)

        # 7. Behavioral signals
        if is_validated:
            self._update_behavior(db, token_hash, submission)

        # 8. Session counters
        if session_row is not None:
            self.sessions.record_sample(
                db, session_row,
                submission.latitude, submission.longitude,
                submission.accuracy_meters, is_validated, now
            )

        messages = [
            check.reason for check in checks.values()
            if check.reason and not check.valid
        ]

        logger.info(
            f"[INGEST] bus={submission.bus_id} device={token_hash[:8]} "
            f"validated={is_validated} weight={reputation_weight:.2f} delta={breakdown.total:+.2f}"
        )

        return IngestionResult(
            success=True,
            sample_id=sample.id,
            bus_id=submission.bus_id,
            is_validated=is_validated,
            reputation_weight=reputation_weight,
            validation_results=checks,
            trust_delta=breakdown,
            trust_score=device.trust_score,
            reputation_updated=True,
            session_id=submission.session_id,
            messages=messages,
        )

    def run_checks(self, submission: LocationSubmission, now: float) -> Dict[str, ValidationCheck]:
        """
        All per-sample checks, keyed by name

        ``stop`` runs only when the schedule knows where the bus should be;
        ``accuracy`` and ``schedule`` are advisory and never scored.
        """
        lat, lng = submission.latitude, submission.longitude
        checks: Dict[str, ValidationCheck] = {
            "coordinates": self.validator.validate_coordinate_bounds(lat, lng),
        }

        expected_stop = self.schedule.expected_stop_for(submission.bus_id, now)
        if expected_stop is not None:
            checks["stop"] = self.validator.validate_against_stop(lat, lng, expected_stop)
        else:
            checks["stop"] = ValidationCheck.skipped("stop", "No expected stop for this bus right now")

        checks["speed"] = self.validator.validate_speed(submission.speed_mps)
        checks["accuracy"] = self.validator.validate_accuracy(submission.accuracy_meters)

        if self.schedule.is_currently_active(submission.bus_id, now):
            checks["schedule"] = ValidationCheck.passed("schedule")
        else:
            checks["schedule"] = ValidationCheck.failed("schedule", "Bus is not scheduled to run now")

        return checks

    def _resolve_session(self, db: Session, submission: LocationSubmission, token_hash: str) -> TrackingSession:
        try:
            row = self.sessions.get(db, submission.session_id, for_update=True)
        except SessionNotFoundError:
            raise InvalidSubmissionError(f"Unknown session {submission.session_id}") from None

        if row.device_token_hash != token_hash:
            raise InvalidSubmissionError("Session belongs to a different device")
        if row.bus_id != submission.bus_id:
            raise InvalidSubmissionError("Session is for a different bus")
        if not row.is_active:
            raise InvalidSubmissionError("Session has ended")
        return row

    def _recent_track(self, db: Session, token_hash: str, bus_id: str, since: float) -> List[Tuple[float, float, float]]:
        rows = (
            db.query(BusLocation.latitude, BusLocation.longitude, BusLocation.recorded_at)
            .filter(
                BusLocation.device_token_hash == token_hash,
                BusLocation.bus_id == bus_id,
                BusLocation.is_validated.is_(True),
                BusLocation.recorded_at >= since,
            )
            .order_by(BusLocation.recorded_at)
            .all()
        )
        return [(lat, lng, t) for lat, lng, t in rows]

    def _peer_positions(self, db: Session, token_hash: str, submission: LocationSubmission) -> List[Tuple[float, float]]:
        """Latest validated position of every other device on the bus near this sample's time"""
        window = self.settings.clustering_window_seconds
        latest = (
            db.query(
                BusLocation.device_token_hash,
                func.max(BusLocation.recorded_at).label("recorded_at"),
            )
            .filter(
                BusLocation.bus_id == submission.bus_id,
                BusLocation.device_token_hash != token_hash,
                BusLocation.is_validated.is_(True),
                BusLocation.recorded_at >= submission.timestamp - window,
                BusLocation.recorded_at <= submission.timestamp + window,
            )
            .group_by(BusLocation.device_token_hash)
            .subquery()
        )
        rows = (
            db.query(BusLocation.device_token_hash, BusLocation.latitude, BusLocation.longitude)
            .join(
                latest,
                (BusLocation.device_token_hash == latest.c.device_token_hash)
                & (BusLocation.recorded_at == latest.c.recorded_at),
            )
            .filter(BusLocation.bus_id == submission.bus_id)
            .all()
        )

        seen = {}
        for device_hash, lat, lng in rows:
            seen.setdefault(device_hash, (lat, lng))
        return list(seen.values())

    def _update_behavior(self, db: Session, token_hash: str, submission: LocationSubmission):
        since = submission.timestamp - self.settings.movement_window_seconds
        analysis = analyze_movement(self._recent_track(db, token_hash, submission.bus_id, since), self.settings)

        clustering = clustering_score(
            submission.latitude,
            submission.longitude,
            self._peer_positions(db, token_hash, submission),
            self.settings.clustering_radius_meters,
        )

        self.ledger.update_behavior_signals(
            db, token_hash,
            movement_consistency=analysis.confidence if analysis else None,
            clustering_score=clustering,
        )
