"""
Configuration Management System

Loads YAML and JSON files from the config directory and exposes them through
dot-notation lookups. ``TrackingSettings`` and ``TrustPolicy`` are the typed
views the tracking core actually consumes.
"""

import os
import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Any, List, Optional, TYPE_CHECKING

import yaml

from bustrack.models.coordinates import BoundingBox, Stop

if TYPE_CHECKING:
    from bustrack.database.settings_store import SettingsStore

logger = logging.getLogger(__name__)


class ConfigManager:
    """
    Manage application configuration from YAML and JSON files

    Provides:
    - Load all config files on startup
    - Dot notation access: config.get('tracking.validation.maxSpeedMps')
    - Hot reload capability
    """

    def __init__(self, config_dir: str = None):
        """
        Args:
            config_dir: Path to config directory
                (default: $BUSTRACK_CONFIG_DIR or backend/config)
        """
        config_dir = config_dir or os.getenv("BUSTRACK_CONFIG_DIR")
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = Path(__file__).parent.parent / "config"

        self.configs: Dict[str, Any] = {}
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files from config directory"""
        if not self.config_dir.exists():
            logger.warning(f"[CONFIG] Directory not found: {self.config_dir}, using defaults")
            return

        for yaml_file in sorted(self.config_dir.glob("*.yaml")):
            with open(yaml_file, 'r') as f:
                self.configs[yaml_file.stem] = yaml.safe_load(f) or {}
            logger.info(f"[CONFIG] Loaded: {yaml_file.name}")

        for json_file in sorted(self.config_dir.glob("*.json")):
            with open(json_file, 'r') as f:
                self.configs[json_file.stem] = json.load(f)
            logger.info(f"[CONFIG] Loaded: {json_file.name}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot notation key

        Examples:
            config.get('tracking.region.minLat')
            config.get('tracking.trust.deltas.speedFailed')
        """
        value = self.configs
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def get_tracking_config(self) -> Dict[str, Any]:
        """Get tracking configuration section"""
        return self.configs.get('tracking', {})

    def reload(self):
        """Reload all configuration files"""
        self.configs.clear()
        self._load_all_configs()
        logger.info("[CONFIG] Configuration reloaded")

    def set(self, key: str, value: Any):
        """
        Set a configuration value (runtime only, not persisted)
        """
        keys = key.split('.')
        config = self.configs

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    return data.get(name) or {}


@dataclass(frozen=True)
class TrustPolicy:
    """
    Signed trust deltas applied after each submission, plus the
    session-quality adjustment applied when a session ends.
    """
    coordinates_valid: float = 0.10
    coordinates_invalid: float = -0.20
    stop_passed: float = 0.15
    stop_failed: float = -0.15
    speed_passed: float = 0.10
    speed_failed: float = -0.30

    session_quality_bonus: float = 0.05
    session_quality_penalty: float = -0.05
    high_quality_threshold: float = 0.7
    low_quality_threshold: float = 0.3
    min_session_contributions: int = 5

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrustPolicy':
        deltas = _section(data, 'deltas')
        quality = _section(data, 'sessionQuality')
        defaults = cls()
        return cls(
            coordinates_valid=float(deltas.get('coordinatesValid', defaults.coordinates_valid)),
            coordinates_invalid=float(deltas.get('coordinatesInvalid', defaults.coordinates_invalid)),
            stop_passed=float(deltas.get('stopPassed', defaults.stop_passed)),
            stop_failed=float(deltas.get('stopFailed', defaults.stop_failed)),
            speed_passed=float(deltas.get('speedPassed', defaults.speed_passed)),
            speed_failed=float(deltas.get('speedFailed', defaults.speed_failed)),
            session_quality_bonus=float(quality.get('bonus', defaults.session_quality_bonus)),
            session_quality_penalty=float(quality.get('penalty', defaults.session_quality_penalty)),
            high_quality_threshold=float(quality.get('highThreshold', defaults.high_quality_threshold)),
            low_quality_threshold=float(quality.get('lowThreshold', defaults.low_quality_threshold)),
            min_session_contributions=int(quality.get('minContributions', defaults.min_session_contributions)),
        )


@dataclass(frozen=True)
class TrackingSettings:
    """Typed, immutable view of the tracking configuration"""

    region: BoundingBox = field(default_factory=lambda: BoundingBox(
        min_lat=20.5, max_lat=26.5, min_lng=88.0, max_lng=92.7
    ))
    utc_offset_minutes: int = 360

    max_speed_mps: float = 22.2
    max_accuracy_meters: float = 100.0

    recency_window_seconds: float = 120.0
    freshness_window_seconds: float = 300.0
    active_tracker_window_seconds: float = 7200.0
    session_timeout_seconds: float = 7200.0
    movement_window_seconds: float = 300.0
    clustering_window_seconds: float = 120.0

    session_retention_days: int = 30
    sample_retention_hours: int = 24
    rollup_retention_days: int = 90
    device_retention_days: int = 180

    trust_seed: float = 0.5
    trusted_threshold: float = 0.7
    behavior_smoothing: float = 0.3
    policy: TrustPolicy = field(default_factory=TrustPolicy)

    confidence_base: float = 0.3
    confidence_per_tracker: float = 0.15
    confidence_tracker_cap: float = 0.4
    confidence_weight_factor: float = 0.3
    no_data_confidence_floor: float = 0.1
    no_data_decay_minutes: float = 60.0

    clustering_radius_meters: float = 25.0
    min_moving_speed_kmh: float = 5.0
    max_bus_speed_kmh: float = 60.0

    broadcast_interval: float = 10.0
    sweep_interval: float = 300.0
    cleanup_interval: float = 3600.0

    stops: List[Stop] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrackingSettings':
        """Build settings from the ``tracking`` config section (camelCase keys)"""
        defaults = cls()
        region = _section(data, 'region')
        validation = _section(data, 'validation')
        windows = _section(data, 'windows')
        retention = _section(data, 'retention')
        trust = _section(data, 'trust')
        confidence = _section(data, 'confidence')
        movement = _section(data, 'movement')
        background = _section(data, 'background')

        return cls(
            region=BoundingBox(
                min_lat=float(region.get('minLat', defaults.region.min_lat)),
                max_lat=float(region.get('maxLat', defaults.region.max_lat)),
                min_lng=float(region.get('minLng', defaults.region.min_lng)),
                max_lng=float(region.get('maxLng', defaults.region.max_lng)),
            ),
            utc_offset_minutes=int(region.get('utcOffsetMinutes', defaults.utc_offset_minutes)),
            max_speed_mps=float(validation.get('maxSpeedMps', defaults.max_speed_mps)),
            max_accuracy_meters=float(validation.get('maxAccuracyMeters', defaults.max_accuracy_meters)),
            recency_window_seconds=float(windows.get('recency', defaults.recency_window_seconds)),
            freshness_window_seconds=float(windows.get('freshness', defaults.freshness_window_seconds)),
            active_tracker_window_seconds=float(windows.get('activeTracker', defaults.active_tracker_window_seconds)),
            session_timeout_seconds=float(windows.get('sessionTimeout', defaults.session_timeout_seconds)),
            movement_window_seconds=float(windows.get('movement', defaults.movement_window_seconds)),
            clustering_window_seconds=float(windows.get('clustering', defaults.clustering_window_seconds)),
            session_retention_days=int(retention.get('sessionDays', defaults.session_retention_days)),
            sample_retention_hours=int(retention.get('sampleHours', defaults.sample_retention_hours)),
            rollup_retention_days=int(retention.get('rollupDays', defaults.rollup_retention_days)),
            device_retention_days=int(retention.get('deviceDays', defaults.device_retention_days)),
            trust_seed=float(trust.get('seed', defaults.trust_seed)),
            trusted_threshold=float(trust.get('trustedThreshold', defaults.trusted_threshold)),
            behavior_smoothing=float(trust.get('behaviorSmoothing', defaults.behavior_smoothing)),
            policy=TrustPolicy.from_dict(trust),
            confidence_base=float(confidence.get('base', defaults.confidence_base)),
            confidence_per_tracker=float(confidence.get('perTracker', defaults.confidence_per_tracker)),
            confidence_tracker_cap=float(confidence.get('trackerCap', defaults.confidence_tracker_cap)),
            confidence_weight_factor=float(confidence.get('weightFactor', defaults.confidence_weight_factor)),
            no_data_confidence_floor=float(confidence.get('noDataFloor', defaults.no_data_confidence_floor)),
            no_data_decay_minutes=float(confidence.get('noDataDecayMinutes', defaults.no_data_decay_minutes)),
            clustering_radius_meters=float(movement.get('clusteringRadiusMeters', defaults.clustering_radius_meters)),
            min_moving_speed_kmh=float(movement.get('minMovingSpeedKmh', defaults.min_moving_speed_kmh)),
            max_bus_speed_kmh=float(movement.get('maxBusSpeedKmh', defaults.max_bus_speed_kmh)),
            broadcast_interval=float(background.get('broadcastInterval', defaults.broadcast_interval)),
            sweep_interval=float(background.get('sweepInterval', defaults.sweep_interval)),
            cleanup_interval=float(background.get('cleanupInterval', defaults.cleanup_interval)),
            stops=[Stop(**stop) for stop in data.get('stops') or []],
        )

    @classmethod
    def from_config(cls, manager: Optional[ConfigManager] = None) -> 'TrackingSettings':
        manager = manager or get_config()
        return cls.from_dict(manager.get_tracking_config())

    def with_overrides(self, store: 'SettingsStore') -> 'TrackingSettings':
        """
        Apply admin-edited business settings on top of file configuration

        Only keys that exist in the store are applied; everything else keeps
        the file value.
        """
        overrides: Dict[str, Any] = {}

        max_speed_kmh = store.get_float('max_speed_kmh')
        if max_speed_kmh is not None:
            overrides['max_speed_mps'] = max_speed_kmh / 3.6

        threshold = store.get_float('trust_score_threshold')
        if threshold is not None:
            overrides['trusted_threshold'] = threshold

        retention_days = store.get_int('data_retention_days')
        if retention_days is not None:
            overrides['session_retention_days'] = retention_days

        max_accuracy = store.get_float('max_accuracy_meters')
        if max_accuracy is not None:
            overrides['max_accuracy_meters'] = max_accuracy

        return replace(self, **overrides) if overrides else self


# Global configuration instance (created lazily)
config: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the global configuration instance"""
    global config
    if config is None:
        config = ConfigManager()
    return config
