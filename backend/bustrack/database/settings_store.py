"""
Business Settings Store

Key-value settings editable by administrators, persisted in the
``business_settings`` table and read through an explicit write-through cache.
The cache object is passed in by reference; there is no module-level cache.
"""

import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from .database import run_in_transaction
from .models import BusinessSetting

logger = logging.getLogger(__name__)

_MISSING = object()

VALUE_TYPES = ("string", "float", "int", "bool", "json")


class SettingsCache:
    """
    Write-through cache with a per-entry TTL

    Entries are replaced on every write and dropped on delete, so readers
    never see a value older than the last write made through the store.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any:
        """Return the cached value, or ``_MISSING`` if absent or expired"""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return _MISSING

        value, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return _MISSING

        self.hits += 1
        return value

    def put(self, key: str, value: Any):
        self._entries[key] = (value, self._clock())

    def invalidate(self, key: Optional[str] = None):
        """Drop one key, or everything when ``key`` is None"""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def get_stats(self) -> Dict[str, Any]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}


class SettingsStore:
    """
    Typed accessors over ``BusinessSetting`` rows

    Usage:
        store = SettingsStore(SessionLocal, SettingsCache(ttl_seconds=60))
        store.initialize_defaults()
        store.get_float('max_speed_kmh')      # 80.0
        store.set('max_speed_kmh', 70)        # persisted and cached
    """

    DEFAULTS: Dict[str, Tuple[Any, str, str]] = {
        'trust_score_threshold': (0.7, 'float', 'Minimum trust score for a device to count as trusted'),
        'max_speed_kmh': (80.0, 'float', 'Maximum plausible bus speed in km/h'),
        'max_accuracy_meters': (100.0, 'float', 'GPS accuracy above this is reported as too poor'),
        'data_retention_days': (30, 'int', 'Days to keep tracking sessions'),
    }

    def __init__(self, session_factory: Optional[sessionmaker] = None, cache: Optional[SettingsCache] = None):
        from .database import SessionLocal

        self._session_factory = session_factory or SessionLocal
        self.cache = cache or SettingsCache()

    # ============================================
    # Reads
    # ============================================

    def get(self, key: str, default: Any = None) -> Any:
        cached = self.cache.get(key)
        if cached is not _MISSING:
            return default if cached is None else cached

        db = self._session_factory()
        try:
            row = db.query(BusinessSetting).filter(BusinessSetting.key == key).first()
            value = self._coerce(row.value, row.value_type) if row else None
        finally:
            db.close()

        self.cache.put(key, value)
        return default if value is None else value

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        value = self.get(key)
        return default if value is None else float(value)

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        value = self.get(key)
        return default if value is None else int(value)

    def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        value = self.get(key)
        return default if value is None else self._to_bool(value)

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.get(key)
        return default if value is None else str(value)

    def all(self) -> Dict[str, Any]:
        db = self._session_factory()
        try:
            rows = db.query(BusinessSetting).order_by(BusinessSetting.key).all()
            return {row.key: self._coerce(row.value, row.value_type) for row in rows}
        finally:
            db.close()

    # ============================================
    # Writes (write-through)
    # ============================================

    def set(self, key: str, value: Any, value_type: Optional[str] = None, description: Optional[str] = None) -> Any:
        """Persist a setting and refresh its cache entry"""
        value_type = value_type or self._infer_type(value)
        if value_type not in VALUE_TYPES:
            raise ValueError(f"Unsupported setting type: {value_type}")
        coerced = self._coerce(value, value_type)

        def work(db: Session):
            row = db.query(BusinessSetting).filter(BusinessSetting.key == key).first()
            if row is None:
                row = BusinessSetting(key=key)
                db.add(row)
            row.value = coerced
            row.value_type = value_type
            if description is not None:
                row.description = description
            db.flush()

        run_in_transaction(work, self._session_factory)
        self.cache.put(key, coerced)
        logger.info(f"[SETTINGS] {key} = {coerced!r}")
        return coerced

    def delete(self, key: str) -> bool:
        def work(db: Session) -> bool:
            return db.query(BusinessSetting).filter(BusinessSetting.key == key).delete() > 0

        removed = run_in_transaction(work, self._session_factory)
        self.cache.invalidate(key)
        return removed

    def initialize_defaults(self) -> int:
        """Insert default settings that do not exist yet; returns how many were added"""
        def work(db: Session) -> int:
            existing = {key for (key,) in db.query(BusinessSetting.key).all()}
            added = 0
            for key, (value, value_type, description) in self.DEFAULTS.items():
                if key in existing:
                    continue
                db.add(BusinessSetting(key=key, value=value, value_type=value_type, description=description))
                added += 1
            return added

        added = run_in_transaction(work, self._session_factory)
        self.cache.invalidate()
        return added

    # ============================================
    # Helpers
    # ============================================

    @staticmethod
    def _infer_type(value: Any) -> str:
        if isinstance(value, bool):
            return 'bool'
        if isinstance(value, int):
            return 'int'
        if isinstance(value, float):
            return 'float'
        if isinstance(value, (dict, list)):
            return 'json'
        return 'string'

    @staticmethod
    def _to_bool(value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)

    @classmethod
    def _coerce(cls, value: Any, value_type: str) -> Any:
        if value is None:
            return None
        if value_type == 'float':
            return float(value)
        if value_type == 'int':
            return int(value)
        if value_type == 'bool':
            return cls._to_bool(value)
        if value_type == 'string':
            return str(value)
        return value
