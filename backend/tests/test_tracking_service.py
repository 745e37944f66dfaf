"""
Tracking Service Tests

Tests cover:
- Device registration and trust lookups through the facade
- Collection statistics
- Retention cleanup (rollups, purges, archiving)
- Business-setting overrides
"""

import pytest

from bustrack.database import SettingsStore
from bustrack.database.models import DeviceToken
from bustrack.exceptions import DeviceNotFoundError, InvalidSubmissionError
from bustrack.models import PositionStatus

from conftest import T0

HOUR = 3600
DAY = 86400


# ============================================
# Device Tests
# ============================================

class TestDevices:
    """Test registration and trust reads"""

    def test_register_is_stable(self, service, fingerprint):
        first = service.register_device(fingerprint, now=T0)
        second = service.register_device(fingerprint, now=T0 + 5)

        assert first.created is True
        assert second.created is False
        assert second.token == first.token
        assert first.to_dict()["token"] == first.token

    def test_empty_fingerprint(self, service):
        with pytest.raises(InvalidSubmissionError):
            service.register_device({}, now=T0)

    def test_validate_token(self, service, register):
        device = register()
        assert service.validate_device_token(device.token).valid is True
        assert service.validate_device_token("f" * 64).valid is False

    def test_trust_of_unknown_token(self, service):
        with pytest.raises(DeviceNotFoundError):
            service.get_device_trust("f" * 64)

    def test_trust_of_malformed_token(self, service):
        with pytest.raises(InvalidSubmissionError):
            service.get_device_trust("xyz")

    def test_moderator_override(self, service, register):
        device = register()
        view = service.set_device_trust(device.token_hash, 0.95)
        assert view.trust_score == 0.95
        assert view.is_trusted is True

    def test_override_unknown_device(self, service):
        with pytest.raises(DeviceNotFoundError):
            service.set_device_trust("0" * 64, 0.9)


# ============================================
# Statistics Tests
# ============================================

class TestStatistics:
    """Test get_collection_statistics and get_stats"""

    def test_collection_statistics(self, service, register, make_sample):
        good = register(1)
        bad = register(2)
        service.start_tracking_session(good.token, "B1", now=T0)
        service.submit_location(make_sample(good.token, accuracy=12.0), now=T0)
        service.submit_location(make_sample(bad.token, speed=40.0), now=T0)
        service.get_current_position("B1", now=T0)

        stats = service.get_collection_statistics(now=T0 + 10)
        assert stats["activeSessions"] == 1
        assert stats["locationsToday"] == 2
        assert stats["validLocationsToday"] == 1
        assert stats["averageAccuracyToday"] == 12.0
        assert stats["sessionsToday"] == 1
        assert stats["highQualitySessionsToday"] == 0
        assert stats["trackedDevices"] == 2
        assert stats["trustedDevices"] == 0
        assert stats["busesWithPosition"] == 1
        assert stats["timestamp"] == T0 + 10

    def test_statistics_on_empty_database(self, service):
        stats = service.get_collection_statistics(now=T0)
        assert stats["locationsToday"] == 0
        assert stats["averageAccuracyToday"] is None
        assert stats["busesWithPosition"] == 0

    def test_submission_counters(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)
        service.submit_location(make_sample(device.token, speed=40.0, timestamp=T0 + 5), now=T0 + 5)

        stats = service.get_stats()
        assert stats["totalSubmissions"] == 2
        assert stats["validatedSubmissions"] == 1
        assert stats["validationRate"] == 0.5
        assert stats["lastCleanup"] is None


# ============================================
# Retention Tests
# ============================================

class TestCleanup:
    """Test cleanup_old_data"""

    def test_recent_data_is_kept(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)

        counts = service.cleanup_old_data(now=T0 + HOUR)
        assert counts["samplesDeleted"] == 0
        assert counts["devicesArchived"] == 0

    def test_samples_are_rolled_up_then_purged(self, service, register, make_sample):
        first = register(1)
        second = register(2)
        service.submit_location(make_sample(first.token), now=T0)
        service.submit_location(make_sample(second.token, speed=40.0), now=T0)
        service.get_current_position("B1", now=T0)

        counts = service.cleanup_old_data(now=T0 + 25 * HOUR)
        assert counts["samplesRolledUp"] == 2
        assert counts["samplesDeleted"] == 2
        assert counts["rollupsDeleted"] == 0

        [day] = service.get_daily_history("B1")
        assert day["day"] == "2024-07-19"
        assert day["totalSamples"] == 2
        assert day["validatedSamples"] == 1
        assert day["distinctDevices"] == 2
        assert day["centroid"]["latitude"] == pytest.approx(23.7937)

        assert service.get_stats()["lastCleanup"]["timestamp"] == T0 + 25 * HOUR

    def test_position_survives_purge_as_last_known(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)
        service.get_current_position("B1", now=T0)
        service.cleanup_old_data(now=T0 + 25 * HOUR)

        view = service.get_current_position("B1", now=T0 + 25 * HOUR)
        assert view.status == PositionStatus.NO_DATA
        assert view.last_known_location["recordedAt"] == T0
        assert view.confidence_level == pytest.approx(0.1)

    def test_repeated_cleanup_merges_rollups(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)
        service.cleanup_old_data(now=T0 + 25 * HOUR)

        service.submit_location(make_sample(device.token, timestamp=T0 + HOUR), now=T0 + 25 * HOUR)
        service.cleanup_old_data(now=T0 + 26 * HOUR)

        [day] = service.get_daily_history("B1")
        assert day["totalSamples"] == 2
        assert day["distinctDevices"] == 1

    def test_idle_devices_are_archived_and_old_rollups_deleted(self, service, register, make_sample, session_factory):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)
        service.cleanup_old_data(now=T0 + 25 * HOUR)

        counts = service.cleanup_old_data(now=T0 + 181 * DAY)
        assert counts["devicesArchived"] == 1
        assert counts["rollupsDeleted"] == 1
        assert service.get_daily_history("B1") == []

        db = session_factory()
        try:
            row = db.query(DeviceToken).filter(DeviceToken.token_hash == device.token_hash).one()
            assert row.archived_at == T0 + 181 * DAY
        finally:
            db.close()

        # archived devices keep their identity and come back on re-registration
        assert service.get_device_trust(device.token).trust_score == pytest.approx(0.6)
        assert register(now=T0 + 182 * DAY).created is False
        assert service.cleanup_old_data(now=T0 + 182 * DAY)["devicesArchived"] == 0


# ============================================
# Business Settings Tests
# ============================================

class TestBusinessSettings:
    """Admin-edited settings override file configuration"""

    def test_speed_limit_override(self, service, register, make_sample, session_factory):
        device = register()
        assert service.submit_location(make_sample(device.token, speed=30.0), now=T0).is_validated is False

        store = SettingsStore(session_factory)
        store.set("max_speed_kmh", 120.0)
        service.apply_business_settings(store)

        assert service.settings.max_speed_mps == pytest.approx(120.0 / 3.6)
        result = service.submit_location(make_sample(device.token, speed=30.0, timestamp=T0 + 5), now=T0 + 5)
        assert result.is_validated is True

    def test_threshold_override(self, service, register, session_factory):
        device = register()
        store = SettingsStore(session_factory)
        store.set("trust_score_threshold", 0.4)
        service.apply_business_settings(store)

        assert service.set_device_trust(device.token_hash, 0.45).is_trusted is True

    def test_unset_keys_keep_file_values(self, service, session_factory):
        before = service.settings
        service.apply_business_settings(SettingsStore(session_factory))
        assert service.settings == before
