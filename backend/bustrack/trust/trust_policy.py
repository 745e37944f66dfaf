"""
Trust Scoring Policy

Maps validation outcomes to signed trust deltas. The magnitudes come from
``TrustPolicy`` so they can be tuned in configuration; the ledger only ever
sees the summed delta.
"""

from typing import Mapping

from bustrack.config import TrustPolicy
from bustrack.models import TrustDeltaBreakdown, ValidationCheck


def compute_trust_delta(policy: TrustPolicy, checks: Mapping[str, ValidationCheck]) -> TrustDeltaBreakdown:
    """
    Sum the policy deltas for the scored checks

    Only ``coordinates``, ``stop`` and ``speed`` are scored. A check that was
    skipped (no stop context, no speed reported) contributes zero.
    """
    table = {
        "coordinates": (policy.coordinates_valid, policy.coordinates_invalid),
        "stop": (policy.stop_passed, policy.stop_failed),
        "speed": (policy.speed_passed, policy.speed_failed),
    }

    breakdown = TrustDeltaBreakdown()
    for name, (on_pass, on_fail) in table.items():
        check = checks.get(name)
        if check is None or not check.ran:
            continue
        breakdown.components[name] = on_pass if check.valid else on_fail

    return breakdown


def session_quality_adjustment(policy: TrustPolicy, quality_score: float, contributions: int) -> float:
    """Trust nudge applied when a session ends; zero for short sessions"""
    if contributions < policy.min_session_contributions:
        return 0.0
    if quality_score > policy.high_quality_threshold:
        return policy.session_quality_bonus
    if quality_score < policy.low_quality_threshold:
        return policy.session_quality_penalty
    return 0.0
