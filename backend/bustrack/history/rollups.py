"""
Location History Rollups

Raw samples are only kept for a short window. Before they are purged, each
(bus, local day) group is folded into a ``LocationDailyRollup`` row so daily
volume, accuracy and coverage survive the purge.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import numpy as np
from sqlalchemy.orm import Session

from bustrack.config import TrackingSettings
from bustrack.database.models import BusLocation, LocationDailyRollup

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


class LocationHistory:
    """
    Roll up and purge raw location samples

    Usage:
        history = LocationHistory(settings)
        counts = history.roll_up_and_purge(db, now)
    """

    def __init__(self, settings: TrackingSettings):
        self.settings = settings
        self.tz = timezone(timedelta(minutes=settings.utc_offset_minutes))

    def local_day(self, timestamp: float) -> str:
        return datetime.fromtimestamp(timestamp, tz=self.tz).strftime("%Y-%m-%d")

    def day_start(self, now: float) -> float:
        """Epoch of local midnight for the day containing ``now``"""
        local = datetime.fromtimestamp(now, tz=self.tz)
        return local.replace(hour=0, minute=0, second=0, microsecond=0).timestamp()

    def roll_up_and_purge(self, db: Session, now: float) -> Dict[str, int]:
        cutoff = now - self.settings.sample_retention_hours * SECONDS_PER_HOUR
        samples = db.query(BusLocation).filter(BusLocation.recorded_at < cutoff).all()
        if not samples:
            return {"samplesRolledUp": 0, "samplesDeleted": 0}

        groups: Dict[Tuple[str, str], List[BusLocation]] = defaultdict(list)
        for sample in samples:
            groups[(sample.bus_id, self.local_day(sample.recorded_at))].append(sample)

        for (bus_id, day), group in groups.items():
            self._merge(db, bus_id, day, group, now)

        deleted = (
            db.query(BusLocation)
            .filter(BusLocation.recorded_at < cutoff)
            .delete(synchronize_session=False)
        )
        logger.info(f"[CLEANUP] Rolled up {len(samples)} samples into {len(groups)} daily rows, deleted {deleted}")
        return {"samplesRolledUp": len(samples), "samplesDeleted": deleted}

    def _merge(self, db: Session, bus_id: str, day: str, group: List[BusLocation], now: float):
        row = (
            db.query(LocationDailyRollup)
            .filter(LocationDailyRollup.bus_id == bus_id, LocationDailyRollup.day == day)
            .first()
        )
        if row is None:
            row = LocationDailyRollup(
                bus_id=bus_id, day=day, total_samples=0, validated_samples=0,
                distinct_devices=0, weight_sum=0.0, device_hashes=[], updated_at=now
            )
            db.add(row)

        previous_total = row.total_samples or 0
        previous_valid = row.validated_samples or 0
        previous_weight = row.weight_sum or 0.0

        accuracies = np.array([s.accuracy_meters for s in group], dtype=float)
        if row.average_accuracy is None or previous_total == 0:
            row.average_accuracy = float(accuracies.mean())
        else:
            row.average_accuracy = float(
                (row.average_accuracy * previous_total + accuracies.sum()) / (previous_total + len(group))
            )

        validated = [s for s in group if s.is_validated]
        row.total_samples = previous_total + len(group)
        row.validated_samples = previous_valid + len(validated)

        weights = np.array([s.reputation_weight for s in validated], dtype=float)
        batch_weight = float(weights.sum()) if validated else 0.0
        if batch_weight > 0:
            batch_lat = float(np.average([s.latitude for s in validated], weights=weights))
            batch_lng = float(np.average([s.longitude for s in validated], weights=weights))
            if previous_weight > 0 and row.centroid_latitude is not None:
                total = previous_weight + batch_weight
                row.centroid_latitude = (row.centroid_latitude * previous_weight + batch_lat * batch_weight) / total
                row.centroid_longitude = (row.centroid_longitude * previous_weight + batch_lng * batch_weight) / total
            else:
                row.centroid_latitude = batch_lat
                row.centroid_longitude = batch_lng

        row.weight_sum = previous_weight + batch_weight
        if row.validated_samples:
            row.average_weight = row.weight_sum / row.validated_samples

        devices = set(row.device_hashes or [])
        devices.update(s.device_token_hash for s in group)
        row.device_hashes = sorted(devices)
        row.distinct_devices = len(devices)
        row.updated_at = now
        db.flush()

    def purge_rollups(self, db: Session, now: float) -> int:
        cutoff_day = self.local_day(now - self.settings.rollup_retention_days * SECONDS_PER_DAY)
        return (
            db.query(LocationDailyRollup)
            .filter(LocationDailyRollup.day < cutoff_day)
            .delete(synchronize_session=False)
        )

    def get_daily_rollups(self, db: Session, bus_id: str, limit: int = 30) -> List[Dict[str, Any]]:
        rows = (
            db.query(LocationDailyRollup)
            .filter(LocationDailyRollup.bus_id == bus_id)
            .order_by(LocationDailyRollup.day.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "busId": row.bus_id,
                "day": row.day,
                "totalSamples": row.total_samples,
                "validatedSamples": row.validated_samples,
                "distinctDevices": row.distinct_devices,
                "averageAccuracy": row.average_accuracy,
                "averageWeight": row.average_weight,
                "centroid": (
                    {"latitude": row.centroid_latitude, "longitude": row.centroid_longitude}
                    if row.centroid_latitude is not None else None
                ),
            }
            for row in rows
        ]
