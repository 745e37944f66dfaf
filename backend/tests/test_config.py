"""
Configuration Tests
"""

import pytest

from bustrack.config import ConfigManager, TrackingSettings, TrustPolicy


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "tracking.yaml").write_text(
        "validation:\n"
        "  maxSpeedMps: 15.0\n"
        "windows:\n"
        "  recency: 60\n"
        "trust:\n"
        "  deltas:\n"
        "    speedFailed: -0.5\n"
        "stops:\n"
        "  - name: Depot\n"
        "    latitude: 23.70\n"
        "    longitude: 90.40\n"
    )
    (tmp_path / "routes.json").write_text('{"B1": {"name": "Mirpur Link"}}')
    return tmp_path


class FakeStore:
    def __init__(self, values):
        self.values = values

    def get_float(self, key, default=None):
        value = self.values.get(key)
        return default if value is None else float(value)

    def get_int(self, key, default=None):
        value = self.values.get(key)
        return default if value is None else int(value)


# ============================================
# ConfigManager Tests
# ============================================

class TestConfigManager:
    """Test file loading and dot-notation access"""

    def test_loads_yaml_and_json(self, config_dir):
        manager = ConfigManager(str(config_dir))
        assert manager.get("tracking.validation.maxSpeedMps") == 15.0
        assert manager.get("routes.B1.name") == "Mirpur Link"

    def test_missing_key(self, config_dir):
        manager = ConfigManager(str(config_dir))
        assert manager.get("tracking.validation.nope") is None
        assert manager.get("tracking.validation.nope", 7) == 7

    def test_runtime_set(self, config_dir):
        manager = ConfigManager(str(config_dir))
        manager.set("tracking.windows.freshness", 90)
        manager.set("extra.flag", True)
        assert manager.get("tracking.windows.freshness") == 90
        assert manager.get("extra.flag") is True

    def test_reload_discards_runtime_values(self, config_dir):
        manager = ConfigManager(str(config_dir))
        manager.set("tracking.windows.recency", 1)
        manager.reload()
        assert manager.get("tracking.windows.recency") == 60

    def test_missing_directory(self, tmp_path):
        manager = ConfigManager(str(tmp_path / "absent"))
        assert manager.configs == {}
        assert manager.get_tracking_config() == {}

    def test_env_override(self, config_dir, monkeypatch):
        monkeypatch.setenv("BUSTRACK_CONFIG_DIR", str(config_dir))
        assert ConfigManager().get("tracking.windows.recency") == 60


# ============================================
# TrackingSettings Tests
# ============================================

class TestTrackingSettings:
    """Test the typed settings view"""

    def test_shipped_configuration(self):
        settings = TrackingSettings.from_config()
        assert settings.max_speed_mps == 22.2
        assert settings.recency_window_seconds == 120
        assert settings.freshness_window_seconds == 300
        assert settings.session_timeout_seconds == 7200
        assert settings.trust_seed == 0.5
        assert settings.trusted_threshold == 0.7
        assert settings.utc_offset_minutes == 360
        assert [stop.name for stop in settings.stops] == [
            "Asad Gate", "Shyamoli", "Mirpur-1", "Rainkhola", "BUBT"
        ]

    def test_partial_file(self, config_dir):
        settings = TrackingSettings.from_config(ConfigManager(str(config_dir)))
        assert settings.max_speed_mps == 15.0
        assert settings.recency_window_seconds == 60
        assert settings.freshness_window_seconds == 300
        assert settings.policy.speed_failed == -0.5
        assert settings.policy.speed_passed == 0.10
        assert settings.stops[0].radius == 200.0

    def test_empty_dict_gives_defaults(self):
        assert TrackingSettings.from_dict({}) == TrackingSettings()

    def test_policy_defaults(self):
        policy = TrustPolicy.from_dict({})
        assert policy.coordinates_valid == 0.10
        assert policy.stop_failed == -0.15
        assert policy.min_session_contributions == 5

    def test_overrides(self):
        settings = TrackingSettings().with_overrides(FakeStore({
            "max_speed_kmh": 72,
            "trust_score_threshold": 0.8,
            "data_retention_days": 7,
        }))
        assert settings.max_speed_mps == pytest.approx(20.0)
        assert settings.trusted_threshold == 0.8
        assert settings.session_retention_days == 7
        assert settings.max_accuracy_meters == 100.0

    def test_no_overrides_returns_same_settings(self):
        settings = TrackingSettings()
        assert settings.with_overrides(FakeStore({})) is settings
