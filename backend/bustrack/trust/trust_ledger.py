"""
Device Trust Ledger

Single source of truth for how much each contributing device is believed.
All methods operate on a caller-supplied SQLAlchemy session so ledger writes
join the caller's transaction; nothing here commits.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from bustrack.config import TrackingSettings
from bustrack.database.models import DeviceToken
from bustrack.exceptions import DeviceNotFoundError
from bustrack.models import DeviceTrustView

logger = logging.getLogger(__name__)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class DeviceTrustLedger:
    """
    Per-device reputation and trust bookkeeping

    Trust is delta-managed (policy lives elsewhere), reputation is the plain
    accurate/total ratio. Every write clamps to [0, 1] instead of rejecting.
    """

    def __init__(self, settings: TrackingSettings):
        self.settings = settings

    # ============================================
    # Lookup / registration
    # ============================================

    def get(self, db: Session, token_hash: str, for_update: bool = False) -> DeviceToken:
        query = db.query(DeviceToken).filter(DeviceToken.token_hash == token_hash)
        if for_update:
            query = query.with_for_update()
        device = query.first()
        if device is None:
            raise DeviceNotFoundError(f"Unknown device {token_hash[:8]}")
        return device

    def find(self, db: Session, token_hash: str) -> Optional[DeviceToken]:
        return db.query(DeviceToken).filter(DeviceToken.token_hash == token_hash).first()

    def get_or_create(self, db: Session, token_hash: str,
                      fingerprint_summary: Optional[Dict[str, Any]], now: float) -> DeviceToken:
        """
        Return the device, registering it with neutral seed scores if unseen

        Existing devices get their activity refreshed and are un-archived.
        """
        device = self.find(db, token_hash)
        if device is not None:
            device.last_activity = now
            device.archived_at = None
            return device

        seed = self.settings.trust_seed
        device = DeviceToken(
            token_hash=token_hash,
            fingerprint_summary=fingerprint_summary or {},
            reputation_score=seed,
            trust_score=seed,
            is_trusted=seed >= self.settings.trusted_threshold,
            total_contributions=0,
            accurate_contributions=0,
            movement_consistency=0.0,
            clustering_score=0.0,
            last_activity=now,
            created_at=now,
        )
        db.add(device)
        db.flush()
        logger.info(f"[TRUST] Registered device {token_hash[:8]} (seed {seed})")
        return device

    # ============================================
    # Score updates
    # ============================================

    def record_contribution_outcome(self, db: Session, token_hash: str, was_accurate: bool,
                                    now: Optional[float] = None) -> DeviceToken:
        device = self.get(db, token_hash)

        device.total_contributions = (device.total_contributions or 0) + 1
        if was_accurate:
            device.accurate_contributions = (device.accurate_contributions or 0) + 1

        device.reputation_score = clamp(device.accurate_contributions / device.total_contributions)
        if now is not None:
            device.last_activity = now
            device.archived_at = None

        db.flush()
        return device

    def apply_trust_delta(self, db: Session, token_hash: str, delta: float) -> DeviceToken:
        device = self.get(db, token_hash)
        previous = device.trust_score
        self._set_trust(device, previous + delta)
        db.flush()

        if delta:
            logger.debug(f"[TRUST] {token_hash[:8]} trust {previous:.2f} -> {device.trust_score:.2f} ({delta:+.2f})")
        return device

    def set_trust_score(self, db: Session, token_hash: str, new_score: float) -> DeviceToken:
        """Administrative override, bypasses the delta policy"""
        device = self.get(db, token_hash)
        self._set_trust(device, new_score)
        db.flush()
        logger.info(f"[TRUST] Admin override for {token_hash[:8]}: trust = {device.trust_score:.2f}")
        return device

    def update_behavior_signals(self, db: Session, token_hash: str,
                                movement_consistency: Optional[float] = None,
                                clustering_score: Optional[float] = None) -> DeviceToken:
        """Exponentially smooth the secondary behavioral signals"""
        device = self.get(db, token_hash)
        alpha = self.settings.behavior_smoothing

        if movement_consistency is not None:
            device.movement_consistency = clamp(
                (1 - alpha) * (device.movement_consistency or 0.0) + alpha * movement_consistency
            )
        if clustering_score is not None:
            device.clustering_score = clamp(
                (1 - alpha) * (device.clustering_score or 0.0) + alpha * clustering_score
            )

        db.flush()
        return device

    def _set_trust(self, device: DeviceToken, score: float):
        device.trust_score = clamp(score)
        device.is_trusted = device.trust_score >= self.settings.trusted_threshold

    # ============================================
    # Views
    # ============================================

    @staticmethod
    def to_view(device: DeviceToken) -> DeviceTrustView:
        return DeviceTrustView(
            reputation_score=device.reputation_score,
            trust_score=device.trust_score,
            is_trusted=device.is_trusted,
            total_contributions=device.total_contributions,
            accurate_contributions=device.accurate_contributions,
            movement_consistency=device.movement_consistency or 0.0,
            clustering_score=device.clustering_score or 0.0,
            last_activity=device.last_activity,
        )
