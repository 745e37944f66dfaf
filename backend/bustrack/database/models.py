"""
SQLAlchemy ORM Models

Tables for the crowd-sourced bus tracking core:
- Device tokens (trust ledger)
- Location samples
- Tracking sessions
- Current bus positions (published read model)
- Daily location rollups
- Bus schedules (reference data)
- Business settings

All timestamps are epoch seconds stored as Float. Models are data-only;
geometry and validation live in ``bustrack.geo``.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text, JSON, Index, UniqueConstraint, text
from sqlalchemy.sql import func
from .database import Base


class DeviceToken(Base):
    """
    Anonymous contributing device

    Identity is the SHA-256 of the issued token; only a coarse fingerprint
    summary is kept. ``version`` guards concurrent trust updates.
    """
    __tablename__ = "device_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    fingerprint_summary = Column(JSON, default=dict)

    reputation_score = Column(Float, nullable=False, default=0.5)
    trust_score = Column(Float, nullable=False, default=0.5)
    is_trusted = Column(Boolean, nullable=False, default=False, index=True)

    total_contributions = Column(Integer, nullable=False, default=0)
    accurate_contributions = Column(Integer, nullable=False, default=0)

    movement_consistency = Column(Float, nullable=False, default=0.0)
    clustering_score = Column(Float, nullable=False, default=0.0)

    last_activity = Column(Float, index=True)
    archived_at = Column(Float)
    created_at = Column(Float, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class BusLocation(Base):
    """
    One raw GPS report

    ``reputation_weight`` and ``is_validated`` are a historical judgment
    and are never updated after insert.
    """
    __tablename__ = "bus_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_id = Column(String(64), nullable=False, index=True)
    device_token_hash = Column(String(64), nullable=False, index=True)
    session_id = Column(String(128), index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=False)
    speed_mps = Column(Float)
    heading = Column(Float)

    recorded_at = Column(Float, nullable=False, index=True)
    received_at = Column(Float, nullable=False)

    reputation_weight = Column(Float, nullable=False)
    is_validated = Column(Boolean, nullable=False, default=False)
    validation_summary = Column(JSON, default=dict)

    __table_args__ = (
        Index('idx_location_bus_validated_time', 'bus_id', 'is_validated', 'recorded_at'),
        Index('idx_location_device_time', 'device_token_hash', 'recorded_at'),
    )


class TrackingSession(Base):
    """
    One device's engagement window with one bus

    At most one active session per (device, bus) is enforced by a partial
    unique index, so concurrent starts are arbitrated by the database.
    """
    __tablename__ = "tracking_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(128), nullable=False, unique=True, index=True)
    device_token_hash = Column(String(64), nullable=False, index=True)
    bus_id = Column(String(64), nullable=False, index=True)

    started_at = Column(Float, nullable=False, index=True)
    ended_at = Column(Float)
    is_active = Column(Boolean, nullable=False, default=True)
    last_activity_at = Column(Float, nullable=False)

    locations_contributed = Column(Integer, nullable=False, default=0)
    valid_locations = Column(Integer, nullable=False, default=0)
    average_accuracy = Column(Float)
    total_distance_covered = Column(Float, nullable=False, default=0.0)  # meters

    last_latitude = Column(Float)
    last_longitude = Column(Float)

    trust_score_at_start = Column(Float, nullable=False)
    session_metadata = Column("metadata", JSON, default=dict)

    __table_args__ = (
        Index(
            'uq_active_session_device_bus',
            'device_token_hash', 'bus_id',
            unique=True,
            sqlite_where=text('is_active = 1'),
            postgresql_where=text('is_active'),
        ),
        Index('idx_session_bus_active', 'bus_id', 'is_active'),
    )


class BusCurrentPosition(Base):
    """
    Published position per bus

    Upserted by the position aggregator; never written by ingestion.
    """
    __tablename__ = "bus_current_positions"

    bus_id = Column(String(64), primary_key=True)
    latitude = Column(Float)
    longitude = Column(Float)
    confidence_level = Column(Float, nullable=False, default=0.0)
    status = Column(String(16), nullable=False, default="no_data")  # PositionStatus value

    active_trackers = Column(Integer, nullable=False, default=0)
    trusted_trackers = Column(Integer, nullable=False, default=0)
    average_trust_score = Column(Float, nullable=False, default=0.0)
    movement_consistency = Column(Float, nullable=False, default=0.0)
    sample_count = Column(Integer, nullable=False, default=0)

    last_known_location = Column(JSON)   # {"latitude", "longitude", "recordedAt"}
    last_updated = Column(Float, nullable=False, index=True)


class LocationDailyRollup(Base):
    """
    Per-bus daily aggregate, kept after raw samples are purged
    """
    __tablename__ = "location_daily_rollups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_id = Column(String(64), nullable=False, index=True)
    day = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD, operating-region local

    total_samples = Column(Integer, nullable=False, default=0)
    validated_samples = Column(Integer, nullable=False, default=0)
    distinct_devices = Column(Integer, nullable=False, default=0)
    average_accuracy = Column(Float)
    average_weight = Column(Float)
    centroid_latitude = Column(Float)
    centroid_longitude = Column(Float)
    weight_sum = Column(Float, nullable=False, default=0.0)
    device_hashes = Column(JSON, default=list)

    updated_at = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint('bus_id', 'day', name='uq_rollup_bus_day'),
    )


class BusSchedule(Base):
    """
    Service window and ordered stops for one bus route
    """
    __tablename__ = "bus_schedules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_id = Column(String(64), nullable=False, index=True)
    route_name = Column(String(128), nullable=False)
    days_of_week = Column(JSON, default=list)     # ["monday", ...]
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)    # HH:MM
    stops = Column(JSON, default=list)            # [{name, latitude, longitude, radius, eta}]
    is_active = Column(Boolean, nullable=False, default=True)


class BusinessSetting(Base):
    """
    Admin-editable key-value setting
    """
    __tablename__ = "business_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(128), nullable=False, unique=True, index=True)
    value = Column(JSON)
    value_type = Column(String(16), nullable=False, default="string")  # string, float, int, bool, json
    description = Column(Text)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
