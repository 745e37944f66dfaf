"""
Trust Tests

Tests cover:
- Trust delta policy table
- Session-quality adjustment
- Ledger clamping and bookkeeping
- Device token issuance and validation
"""

import random

import pytest

from bustrack.config import TrustPolicy
from bustrack.exceptions import DeviceNotFoundError
from bustrack.models import ValidationCheck
from bustrack.trust import (
    DeviceTokenService,
    DeviceTrustLedger,
    compute_trust_delta,
    hash_token,
    session_quality_adjustment,
    summarize_fingerprint,
)

from conftest import T0, make_fingerprint

HASH_A = "a" * 64


def checks(coordinates=None, stop=None, speed=None):
    """Build a check map; None means the check was skipped"""
    def build(name, outcome):
        if outcome is None:
            return ValidationCheck.skipped(name)
        return ValidationCheck.passed(name) if outcome else ValidationCheck.failed(name, "nope")
    return {
        "coordinates": build("coordinates", coordinates),
        "stop": build("stop", stop),
        "speed": build("speed", speed),
    }


@pytest.fixture
def ledger(settings):
    return DeviceTrustLedger(settings)


# ============================================
# Policy Tests
# ============================================

class TestTrustPolicy:
    """Test the delta table"""

    @pytest.mark.parametrize("outcomes, expected", [
        ((True, None, None), 0.10),
        ((False, None, None), -0.20),
        ((True, True, True), 0.35),
        ((False, False, False), -0.65),
        ((True, None, False), -0.20),
        ((True, False, True), 0.05),
        ((None, None, None), 0.0),
    ])
    def test_delta_table(self, outcomes, expected):
        breakdown = compute_trust_delta(TrustPolicy(), checks(*outcomes))
        assert breakdown.total == pytest.approx(expected)

    def test_skipped_checks_have_no_component(self):
        breakdown = compute_trust_delta(TrustPolicy(), checks(True, None, None))
        assert set(breakdown.components) == {"coordinates"}

    def test_advisory_checks_are_not_scored(self):
        check_map = checks(True, None, None)
        check_map["accuracy"] = ValidationCheck.failed("accuracy", "GPS accuracy too poor")
        assert compute_trust_delta(TrustPolicy(), check_map).total == pytest.approx(0.10)

    def test_custom_policy(self):
        policy = TrustPolicy.from_dict({"deltas": {"speedFailed": -0.5}})
        assert compute_trust_delta(policy, checks(True, None, False)).total == pytest.approx(-0.4)


class TestSessionQualityAdjustment:

    def test_bonus(self):
        assert session_quality_adjustment(TrustPolicy(), 0.93, 10) == 0.05

    def test_penalty(self):
        assert session_quality_adjustment(TrustPolicy(), 0.2, 10) == -0.05

    def test_neutral_band(self):
        assert session_quality_adjustment(TrustPolicy(), 0.5, 10) == 0.0

    def test_short_sessions_are_ignored(self):
        assert session_quality_adjustment(TrustPolicy(), 0.93, 4) == 0.0


# ============================================
# Ledger Tests
# ============================================

class TestTrustLedger:
    """Test DeviceTrustLedger"""

    def test_new_device_gets_seed_scores(self, db, ledger):
        device = ledger.get_or_create(db, HASH_A, {"platform": "x"}, T0)
        assert device.trust_score == 0.5
        assert device.reputation_score == 0.5
        assert device.is_trusted is False
        assert device.total_contributions == 0
        assert device.created_at == T0

    def test_get_or_create_is_idempotent(self, db, ledger):
        first = ledger.get_or_create(db, HASH_A, {}, T0)
        first.archived_at = T0
        second = ledger.get_or_create(db, HASH_A, {}, T0 + 60)
        assert second.id == first.id
        assert second.last_activity == T0 + 60
        assert second.archived_at is None

    def test_unknown_device(self, db, ledger):
        with pytest.raises(DeviceNotFoundError):
            ledger.get(db, "b" * 64)

    def test_trust_clamps_high_and_low(self, db, ledger):
        ledger.get_or_create(db, HASH_A, {}, T0)

        device = ledger.apply_trust_delta(db, HASH_A, 0.9)
        assert device.trust_score == 1.0
        assert device.is_trusted is True

        device = ledger.apply_trust_delta(db, HASH_A, -5.0)
        assert device.trust_score == 0.0
        assert device.is_trusted is False

    def test_trust_stays_in_range_for_any_delta_sequence(self, db, ledger, settings):
        ledger.get_or_create(db, HASH_A, {}, T0)
        rng = random.Random(42)

        for _ in range(200):
            device = ledger.apply_trust_delta(db, HASH_A, rng.uniform(-0.7, 0.7))
            assert 0.0 <= device.trust_score <= 1.0
            assert device.is_trusted == (device.trust_score >= settings.trusted_threshold)

    def test_threshold_is_inclusive(self, db, ledger):
        ledger.get_or_create(db, HASH_A, {}, T0)
        assert ledger.set_trust_score(db, HASH_A, 0.7).is_trusted is True

    def test_record_contribution_outcome(self, db, ledger):
        ledger.get_or_create(db, HASH_A, {}, T0)
        ledger.record_contribution_outcome(db, HASH_A, True)
        ledger.record_contribution_outcome(db, HASH_A, True)
        device = ledger.record_contribution_outcome(db, HASH_A, False, now=T0 + 30)

        assert device.total_contributions == 3
        assert device.accurate_contributions == 2
        assert device.reputation_score == pytest.approx(2 / 3)
        assert device.last_activity == T0 + 30

    def test_behavior_signals_are_smoothed(self, db, ledger):
        ledger.get_or_create(db, HASH_A, {}, T0)

        device = ledger.update_behavior_signals(db, HASH_A, movement_consistency=1.0)
        assert device.movement_consistency == pytest.approx(0.3)
        assert device.clustering_score == 0.0

        device = ledger.update_behavior_signals(db, HASH_A, movement_consistency=1.0, clustering_score=1.0)
        assert device.movement_consistency == pytest.approx(0.51)
        assert device.clustering_score == pytest.approx(0.3)

    def test_view(self, db, ledger):
        device = ledger.get_or_create(db, HASH_A, {}, T0)
        view = ledger.to_view(device).to_dict()
        assert view["trustScore"] == 0.5
        assert view["isTrusted"] is False
        assert view["totalContributions"] == 0


# ============================================
# Device Token Tests
# ============================================

class TestDeviceTokens:
    """Test DeviceTokenService"""

    @pytest.fixture
    def tokens(self, ledger):
        return DeviceTokenService(ledger, secret="test-secret")

    def test_hash_is_case_insensitive(self):
        assert hash_token("AB" * 32) == hash_token("ab" * 32)
        assert len(hash_token("ab" * 32)) == 64

    def test_summary_drops_raw_fingerprint_data(self):
        summary = summarize_fingerprint(make_fingerprint())
        assert "canvas" not in summary
        assert len(summary["canvasDigest"]) == 16
        assert len(summary["webglDigest"]) == 16
        assert summary["screen"] == "1080x2340:24:24"
        assert summary["platform"] == "Linux armv8l"
        assert summary["timezone"] == "Asia/Dhaka"
        assert summary["features"] == "1111"

    def test_register_issues_stable_token(self, db, tokens):
        first = tokens.register(db, make_fingerprint(), T0)
        second = tokens.register(db, make_fingerprint(), T0 + 10)

        assert len(first.token) == 64
        assert first.created is True
        assert second.created is False
        assert second.token == first.token
        assert second.device_id == first.device_id

    def test_different_devices_get_different_tokens(self, db, tokens):
        assert tokens.register(db, make_fingerprint(1), T0).token != tokens.register(db, make_fingerprint(2), T0).token

    def test_token_depends_on_secret(self, db, ledger):
        summary = summarize_fingerprint(make_fingerprint())
        one = DeviceTokenService(ledger, secret="one").generate_token(summary)
        two = DeviceTokenService(ledger, secret="two").generate_token(summary)
        assert one != two

    def test_only_hash_is_stored(self, db, tokens, ledger):
        registration = tokens.register(db, make_fingerprint(), T0)
        device = ledger.get(db, hash_token(registration.token))
        assert device.token_hash != registration.token
        assert "canvas" not in device.fingerprint_summary

    def test_empty_fingerprint(self, db, tokens):
        with pytest.raises(ValueError):
            tokens.register(db, {}, T0)

    def test_validate(self, db, tokens):
        registration = tokens.register(db, make_fingerprint(), T0)

        ok = tokens.validate(db, registration.token.upper())
        assert ok.valid is True
        assert ok.device_id == registration.device_id

        missing = tokens.validate(db, "c" * 64)
        assert missing.valid is False
        assert missing.reason == "Token not registered"

        malformed = tokens.validate(db, "not-a-token")
        assert malformed.valid is False
        assert malformed.reason == "Invalid token format"
