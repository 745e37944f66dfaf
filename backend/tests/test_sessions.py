"""
Tracking Session Tests

Tests cover:
- Idempotent start and stale-session replacement
- Concurrent start arbitration
- Ending, quality scoring and the trust adjustment
- Sweeps and session retention
"""

import pytest

from bustrack.exceptions import InvalidSubmissionError, SessionNotFoundError, UnknownDeviceError
from bustrack.sessions.session_metrics import accuracy_rate, quality_score

from conftest import T0

DAY = 86400


# ============================================
# Metrics Tests
# ============================================

class TestSessionMetrics:

    def test_quality_score(self):
        assert quality_score(10, 9, 60, 10.0) == pytest.approx(0.93)

    def test_duration_is_capped(self):
        assert quality_score(10, 9, 600, 10.0) == pytest.approx(0.93)

    def test_no_validated_samples(self):
        assert quality_score(4, 0, 30, None) == pytest.approx(0.15)

    def test_accuracy_rate_of_empty_session(self):
        assert accuracy_rate(0, 0) == 0.0


# ============================================
# Lifecycle Tests
# ============================================

class TestSessionStart:
    """Test start_tracking_session"""

    def test_start(self, service, register):
        device = register()
        result = service.start_tracking_session(device.token, "B1", metadata={"app": "web"}, now=T0)

        assert result.created is True
        assert result.is_active is True
        assert result.started_at == T0
        assert result.session_id.startswith(device.token_hash[:8])

    def test_second_start_returns_existing_session(self, service, register):
        device = register()
        first = service.start_tracking_session(device.token, "B1", now=T0)
        second = service.start_tracking_session(device.token, "B1", now=T0 + 60)

        assert second.created is False
        assert second.session_id == first.session_id
        assert len(service.get_active_sessions("B1", now=T0 + 60)) == 1

    def test_one_session_per_bus(self, service, register):
        device = register()
        first = service.start_tracking_session(device.token, "B1", now=T0)
        second = service.start_tracking_session(device.token, "B2", now=T0)
        assert first.session_id != second.session_id

    def test_stale_session_is_replaced(self, service, register):
        device = register()
        old = service.start_tracking_session(device.token, "B1", now=T0)
        new = service.start_tracking_session(device.token, "B1", now=T0 + 7201)

        assert new.created is True
        assert new.session_id != old.session_id

        closed = service.end_tracking_session(old.session_id, now=T0 + 7300)
        assert closed.is_active is False
        assert closed.ended_at == T0

    def test_unknown_device(self, service):
        with pytest.raises(UnknownDeviceError):
            service.start_tracking_session("ab" * 32, "B1", now=T0)

    def test_missing_bus(self, service, register):
        device = register()
        with pytest.raises(InvalidSubmissionError):
            service.start_tracking_session(device.token, "  ", now=T0)

    def test_concurrent_start_converges(self, service, register, monkeypatch):
        """The loser of an insert race gets the winner's session on retry"""
        device = register()
        winner = service.start_tracking_session(device.token, "B1", now=T0)

        real_find_active = service.sessions._find_active
        calls = []

        def miss_once(db, token_hash, bus_id):
            calls.append(bus_id)
            if len(calls) == 1:
                return None
            return real_find_active(db, token_hash, bus_id)

        monkeypatch.setattr(service.sessions, "_find_active", miss_once)

        loser = service.start_tracking_session(device.token, "B1", now=T0 + 1)
        assert len(calls) == 2
        assert loser.created is False
        assert loser.session_id == winner.session_id


class TestSessionEnd:
    """Test end_tracking_session"""

    def test_end(self, service, register):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)
        result = service.end_tracking_session(session.session_id, now=T0 + 600)

        assert result.is_active is False
        assert result.ended_at == T0 + 600
        assert service.get_active_sessions("B1", now=T0 + 600) == []

    def test_end_twice_is_a_no_op(self, service, register):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)
        service.end_tracking_session(session.session_id, now=T0 + 600)
        again = service.end_tracking_session(session.session_id, now=T0 + 900)

        assert again.ended_at == T0 + 600
        assert again.trust_adjustment == 0.0

    def test_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.end_tracking_session("missing", now=T0)

    def test_short_session_does_not_move_trust(self, service, register):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)
        result = service.end_tracking_session(session.session_id, now=T0 + 60)

        assert result.trust_adjustment == 0.0
        assert service.get_device_trust(device.token).trust_score == 0.5

    def test_good_session_earns_bonus(self, service, register, make_sample):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)

        for i in range(10):
            speed = 30.0 if i == 9 else None
            timestamp = T0 + i * 360
            service.submit_location(
                make_sample(device.token, speed=speed, timestamp=timestamp, session_id=session.session_id),
                now=timestamp,
            )

        service.set_device_trust(device.token_hash, 0.5)
        result = service.end_tracking_session(session.session_id, now=T0 + 3600)

        assert result.locations_contributed == 10
        assert result.valid_locations == 9
        assert result.quality_score == pytest.approx(0.93)
        assert result.trust_adjustment == 0.05
        assert service.get_device_trust(device.token).trust_score == pytest.approx(0.55)


# ============================================
# Sweep Tests
# ============================================

class TestSessionSweep:
    """Idle sessions are force-ended, old ones deleted"""

    def test_idle_session_is_ended(self, service, register):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)

        assert service.sweep_stale_sessions(now=T0 + 3600) == {"sessionsEnded": 0, "sessionsDeleted": 0}
        assert service.sweep_stale_sessions(now=T0 + 7201) == {"sessionsEnded": 1, "sessionsDeleted": 0}

        ended = service.end_tracking_session(session.session_id, now=T0 + 7300)
        assert ended.ended_at == T0

    def test_activity_keeps_session_alive(self, service, register, make_sample):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)
        service.submit_location(
            make_sample(device.token, timestamp=T0 + 3600, session_id=session.session_id), now=T0 + 3600
        )

        assert service.sweep_stale_sessions(now=T0 + 7201)["sessionsEnded"] == 0

    def test_old_sessions_are_deleted(self, service, register):
        device = register()
        session = service.start_tracking_session(device.token, "B1", now=T0)
        service.end_tracking_session(session.session_id, now=T0 + 60)

        assert service.sweep_stale_sessions(now=T0 + 31 * DAY) == {"sessionsEnded": 0, "sessionsDeleted": 1}
        with pytest.raises(SessionNotFoundError):
            service.end_tracking_session(session.session_id, now=T0 + 31 * DAY)

    def test_sweep_is_repeatable(self, service, register):
        device = register()
        service.start_tracking_session(device.token, "B1", now=T0)

        service.sweep_stale_sessions(now=T0 + 7201)
        assert service.sweep_stale_sessions(now=T0 + 7201) == {"sessionsEnded": 0, "sessionsDeleted": 0}
