"""
Trust Package

Device identity bootstrap, the per-device trust ledger and the scoring
policy that turns validation outcomes into trust deltas.

Usage:
    from bustrack.trust import DeviceTrustLedger, DeviceTokenService

    ledger = DeviceTrustLedger(settings)
    tokens = DeviceTokenService(ledger)
"""

from .trust_ledger import DeviceTrustLedger, clamp
from .device_tokens import (
    DeviceTokenService,
    hash_token,
    summarize_fingerprint,
    canonical_fingerprint_string,
)
from .trust_policy import compute_trust_delta, session_quality_adjustment

__all__ = [
    "DeviceTrustLedger",
    "clamp",
    "DeviceTokenService",
    "hash_token",
    "summarize_fingerprint",
    "canonical_fingerprint_string",
    "compute_trust_delta",
    "session_quality_adjustment",
]
