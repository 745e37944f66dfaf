"""
Device Token Service

Issues and validates anonymous device tokens. A token is derived from a
coarse browser fingerprint plus a server secret, so the same device gets the
same token back on re-registration. Only the SHA-256 of the token is stored,
together with a summary of the fingerprint (never the raw payload).
"""

import os
import hashlib
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from bustrack.models import TOKEN_PATTERN, DeviceRegistration, TokenValidation
from .trust_ledger import DeviceTrustLedger

logger = logging.getLogger(__name__)

DEFAULT_SECRET = "bustrack-dev-secret"


def hash_token(token: str) -> str:
    """Storage key for a device token"""
    return hashlib.sha256(token.strip().lower().encode("utf-8")).hexdigest()


def summarize_fingerprint(fingerprint: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a client fingerprint to its coarse, stable fields

    Canvas data and the WebGL renderer string are replaced by short digests.
    """
    fingerprint = fingerprint or {}
    summary: Dict[str, Any] = {}

    screen = fingerprint.get("screen")
    if isinstance(screen, dict):
        summary["screen"] = "{}x{}:{}:{}".format(
            int(screen.get("width") or 0),
            int(screen.get("height") or 0),
            int(screen.get("colorDepth") or 0),
            int(screen.get("pixelDepth") or 0),
        )

    navigator = fingerprint.get("navigator")
    if isinstance(navigator, dict):
        summary["platform"] = str(navigator.get("platform") or "")
        summary["language"] = str(navigator.get("language") or "")
        summary["hardwareConcurrency"] = int(navigator.get("hardwareConcurrency") or 0)
        summary["maxTouchPoints"] = int(navigator.get("maxTouchPoints") or 0)

    timezone = fingerprint.get("timezone")
    if isinstance(timezone, dict):
        summary["timezone"] = str(timezone.get("timezone") or "")
    elif isinstance(timezone, str):
        summary["timezone"] = timezone

    canvas = fingerprint.get("canvas")
    if isinstance(canvas, str) and canvas and canvas != "canvas_not_supported":
        summary["canvasDigest"] = hashlib.md5(canvas.encode("utf-8")).hexdigest()[:16]

    webgl = fingerprint.get("webgl")
    if isinstance(webgl, dict) and webgl.get("supported"):
        renderer = str(webgl.get("renderer") or "")
        summary["webglDigest"] = hashlib.sha256(renderer.encode("utf-8")).hexdigest()[:16]

    features = fingerprint.get("features")
    if isinstance(features, dict):
        summary["features"] = "".join(
            "1" if features.get(name) else "0"
            for name in ("localStorage", "webWorkers", "geolocation", "touchSupport")
        )

    return summary


def canonical_fingerprint_string(summary: Dict[str, Any]) -> str:
    return "|".join(f"{key}:{summary[key]}" for key in sorted(summary))


class DeviceTokenService:
    """
    Register devices and validate their tokens

    Usage:
        service = DeviceTokenService(ledger)
        registration = service.register(db, fingerprint, now)
        check = service.validate(db, registration.token)
    """

    def __init__(self, ledger: DeviceTrustLedger, secret: Optional[str] = None):
        self.ledger = ledger
        self.secret = secret or os.getenv("BUSTRACK_SECRET") or DEFAULT_SECRET
        if self.secret == DEFAULT_SECRET:
            logger.warning("[TOKENS] BUSTRACK_SECRET not set, using development secret")

    def generate_token(self, summary: Dict[str, Any]) -> str:
        payload = canonical_fingerprint_string(summary) + self.secret
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @staticmethod
    def is_valid_format(token: Optional[str]) -> bool:
        return isinstance(token, str) and TOKEN_PATTERN.match(token.strip().lower()) is not None

    def register(self, db: Session, fingerprint: Dict[str, Any], now: float) -> DeviceRegistration:
        """Issue (or re-issue) the token for a fingerprint"""
        summary = summarize_fingerprint(fingerprint)
        if not summary:
            raise ValueError("Fingerprint has no usable fields")

        token = self.generate_token(summary)
        token_hash = hash_token(token)

        existing = self.ledger.find(db, token_hash)
        device = self.ledger.get_or_create(db, token_hash, summary, now)

        return DeviceRegistration(
            token=token,
            device_id=device.id,
            token_hash=token_hash,
            created=existing is None,
        )

    def validate(self, db: Session, token: Optional[str]) -> TokenValidation:
        if not self.is_valid_format(token):
            return TokenValidation(valid=False, reason="Invalid token format")

        token_hash = hash_token(token)
        device = self.ledger.find(db, token_hash)
        if device is None:
            return TokenValidation(valid=False, token_hash=token_hash, reason="Token not registered")

        return TokenValidation(valid=True, device_id=device.id, token_hash=token_hash)
