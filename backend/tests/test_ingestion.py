"""
Location Ingestion Tests

Tests cover:
- Validation outcomes and trust deltas per submission
- Input errors vs. validation failures
- Atomicity of sample + ledger + session writes
- Session ownership checks and counters
- Behavioral signals
"""

import math

import pytest
from sqlalchemy.exc import SQLAlchemyError

from bustrack.database.models import BusLocation
from bustrack.exceptions import InvalidSubmissionError, TransientStorageError, UnknownDeviceError
from bustrack.services import StaticScheduleProvider, TrackingService

from conftest import ASAD_GATE, MIRPUR_1, T0


def stored_samples(session_factory):
    db = session_factory()
    try:
        return db.query(BusLocation).order_by(BusLocation.id).all()
    finally:
        db.close()


# ============================================
# Validation Outcome Tests
# ============================================

class TestSubmissionOutcomes:
    """Test what a single submission does to the sample and the device"""

    def test_valid_sample(self, service, register, make_sample):
        device = register()
        result = service.submit_location(make_sample(device.token), now=T0)

        assert result.success is True
        assert result.is_validated is True
        assert result.reputation_weight == 0.5
        assert result.trust_delta.total == pytest.approx(0.10)
        assert result.trust_score == pytest.approx(0.6)
        assert result.validation_results["stop"].ran is False
        assert result.validation_results["speed"].ran is False

        trust = service.get_device_trust(device.token)
        assert trust.total_contributions == 1
        assert trust.accurate_contributions == 1
        assert trust.reputation_score == 1.0

    def test_implausible_speed(self, service, register, make_sample):
        device = register()
        result = service.submit_location(make_sample(device.token, speed=30.0), now=T0)

        assert result.is_validated is False
        assert result.trust_delta.components == {"coordinates": 0.10, "speed": -0.30}
        assert result.trust_score == pytest.approx(0.3)
        assert any("exceeds" in message for message in result.messages)

        trust = service.get_device_trust(device.token)
        assert trust.total_contributions == 1
        assert trust.accurate_contributions == 0
        assert trust.reputation_score == 0.0

    def test_out_of_region_is_stored_but_not_validated(self, service, register, make_sample, session_factory):
        device = register()
        result = service.submit_location(make_sample(device.token, lat=40.7128, lng=-74.0060), now=T0)

        assert result.is_validated is False
        assert result.trust_score == pytest.approx(0.3)

        samples = stored_samples(session_factory)
        assert len(samples) == 1
        assert samples[0].is_validated is False
        assert samples[0].validation_summary["coordinates"] == "failed"

    def test_nan_coordinates_count_against_device(self, service, register, make_sample, session_factory):
        device = register()
        result = service.submit_location(make_sample(device.token, lat=math.nan), now=T0)

        assert result.is_validated is False
        assert result.validation_results["coordinates"].valid is False
        assert result.trust_score == pytest.approx(0.3)

        [sample] = stored_samples(session_factory)
        assert sample.is_validated is False
        assert sample.latitude == 0.0
        assert sample.longitude == 0.0
        assert sample.validation_summary["rawCoordinates"]["latitude"] == "nan"

        trust = service.get_device_trust(device.token)
        assert trust.total_contributions == 1
        assert trust.accurate_contributions == 0

    def test_infinite_coordinates_are_stored_invalid(self, service, register, make_sample, session_factory):
        device = register()
        result = service.submit_location(make_sample(device.token, lng=math.inf), now=T0)

        assert result.is_validated is False
        [sample] = stored_samples(session_factory)
        assert sample.validation_summary["rawCoordinates"]["longitude"] == "inf"

    def test_poor_accuracy_is_advisory(self, service, register, make_sample):
        device = register()
        result = service.submit_location(make_sample(device.token, accuracy=250.0), now=T0)

        assert result.is_validated is True
        assert result.validation_results["accuracy"].valid is False
        assert result.trust_delta.total == pytest.approx(0.10)

    def test_weight_is_snapshot_before_update(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)
        second = service.submit_location(make_sample(device.token, timestamp=T0 + 10), now=T0 + 10)

        assert second.reputation_weight == pytest.approx(0.6)
        assert second.trust_score == pytest.approx(0.7)

    def test_millisecond_timestamps_are_normalized(self, service, register, make_sample, session_factory):
        device = register()
        service.submit_location(make_sample(device.token, timestamp=T0 * 1000), now=T0)
        assert stored_samples(session_factory)[0].recorded_at == pytest.approx(T0)

    def test_unscheduled_bus_is_advisory(self, settings, session_factory, fingerprint, make_sample):
        service = TrackingService(settings, session_factory, StaticScheduleProvider(active_buses=[]), "test-secret")
        registration = service.register_device(fingerprint, now=T0)

        result = service.submit_location(make_sample(registration.token), now=T0)
        assert result.is_validated is True
        assert result.validation_results["schedule"].valid is False


class TestStopCheck:
    """Stop checks move trust but never flip validation"""

    @pytest.fixture
    def schedule(self):
        return StaticScheduleProvider(expected_stops={"B1": MIRPUR_1})

    def test_at_expected_stop(self, service, register, make_sample):
        device = register()
        result = service.submit_location(make_sample(device.token), now=T0)

        assert result.validation_results["stop"].valid is True
        assert result.trust_delta.total == pytest.approx(0.25)

    def test_away_from_expected_stop(self, service, register, make_sample):
        device = register()
        result = service.submit_location(
            make_sample(device.token, lat=ASAD_GATE.latitude, lng=ASAD_GATE.longitude), now=T0
        )

        assert result.is_validated is True
        assert result.validation_results["stop"].valid is False
        assert result.trust_delta.total == pytest.approx(-0.05)
        assert result.trust_score == pytest.approx(0.45)


# ============================================
# Input Error Tests
# ============================================

class TestInputErrors:
    """Malformed input is rejected before anything is written"""

    def test_unknown_device(self, service, make_sample, session_factory):
        with pytest.raises(UnknownDeviceError):
            service.submit_location(make_sample("ab" * 32), now=T0)
        assert stored_samples(session_factory) == []

    def test_malformed_token(self, service, make_sample):
        with pytest.raises(InvalidSubmissionError):
            service.submit_location(make_sample("not-a-token"), now=T0)

    def test_negative_accuracy(self, service, register, make_sample):
        device = register()
        with pytest.raises(InvalidSubmissionError):
            service.submit_location(make_sample(device.token, accuracy=-1.0), now=T0)

    def test_missing_bus(self, service, register, make_sample):
        device = register()
        with pytest.raises(InvalidSubmissionError):
            service.submit_location(make_sample(device.token, bus_id=""), now=T0)

    def test_rejections_are_counted(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)
        with pytest.raises(InvalidSubmissionError):
            service.submit_location(make_sample(device.token, accuracy=math.inf), now=T0)

        stats = service.get_stats()
        assert stats["totalSubmissions"] == 1
        assert stats["validatedSubmissions"] == 1
        assert stats["rejectedSubmissions"] == 1


# ============================================
# Atomicity Tests
# ============================================

class TestAtomicity:
    """A failure anywhere in ingestion leaves no partial state"""

    def test_ledger_failure_rolls_back_sample(self, service, register, make_sample, session_factory, monkeypatch):
        device = register()

        def boom(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(service.ledger, "record_contribution_outcome", boom)

        with pytest.raises(TransientStorageError):
            service.submit_location(make_sample(device.token), now=T0)

        monkeypatch.undo()
        assert stored_samples(session_factory) == []

        trust = service.get_device_trust(device.token)
        assert trust.trust_score == 0.5
        assert trust.total_contributions == 0


# ============================================
# Session Tests
# ============================================

class TestSessionSamples:
    """Samples submitted inside a tracking session"""

    def test_counters(self, service, register, make_sample):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)

        for i, speed in enumerate([5.0, 6.0, 30.0]):
            service.submit_location(
                make_sample(device.token, speed=speed, timestamp=T0 + i * 10, session_id=session.session_id),
                now=T0 + i * 10,
            )

        [active] = service.get_active_sessions("B1", now=T0 + 30)
        assert active.locations_contributed == 3
        assert active.valid_locations == 2
        assert active.accuracy_rate == pytest.approx(2 / 3)

    def test_unknown_session(self, service, register, make_sample):
        device = register()
        with pytest.raises(InvalidSubmissionError):
            service.submit_location(make_sample(device.token, session_id="nope"), now=T0)

    def test_session_of_another_device(self, service, register, make_sample):
        owner = register(1)
        other = register(2)
        session = service.start_tracking_session(owner.token, "B1", now=T0)

        with pytest.raises(InvalidSubmissionError):
            service.submit_location(make_sample(other.token, session_id=session.session_id), now=T0)

    def test_session_for_another_bus(self, service, register, make_sample):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)

        with pytest.raises(InvalidSubmissionError):
            service.submit_location(
                make_sample(device.token, bus_id="B2", session_id=session.session_id), now=T0
            )

    def test_ended_session(self, service, register, make_sample, session_factory):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)
        service.end_tracking_session(session.session_id, now=T0 + 5)

        with pytest.raises(InvalidSubmissionError):
            service.submit_location(make_sample(device.token, session_id=session.session_id), now=T0 + 10)
        assert stored_samples(session_factory) == []


# ============================================
# Behavioral Signal Tests
# ============================================

class TestBehaviorSignals:
    """Movement and clustering feed the ledger for validated samples"""

    def test_bus_like_track_raises_movement_consistency(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token, timestamp=T0), now=T0)
        # ~100 m north in 10 s, 36 km/h
        service.submit_location(make_sample(device.token, lat=23.7946, timestamp=T0 + 10), now=T0 + 10)

        trust = service.get_device_trust(device.token)
        assert trust.movement_consistency == pytest.approx(0.27, abs=1e-3)

    def test_lone_device_gets_low_clustering(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token), now=T0)
        assert service.get_device_trust(device.token).clustering_score == pytest.approx(0.09)

    def test_nearby_peer_raises_clustering(self, service, register, make_sample):
        first = register(1)
        second = register(2)
        service.submit_location(make_sample(first.token), now=T0)
        service.submit_location(make_sample(second.token, lat=23.79375, timestamp=T0 + 5), now=T0 + 5)

        assert service.get_device_trust(second.token).clustering_score == pytest.approx(0.3)

    def test_invalid_samples_do_not_update_signals(self, service, register, make_sample):
        device = register()
        service.submit_location(make_sample(device.token, speed=30.0), now=T0)
        trust = service.get_device_trust(device.token)
        assert trust.clustering_score == 0.0
        assert trust.movement_consistency == 0.0
