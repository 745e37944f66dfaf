"""
Shared fixtures

Every test gets its own in-memory SQLite database. ``StaticPool`` keeps the
single connection alive across sessions and threads (TestClient runs sync
routes in a worker thread).
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bustrack.config import TrackingSettings
from bustrack.database import init_db
from bustrack.models import Stop
from bustrack.services import StaticScheduleProvider, TrackingService

# 2024-07-19 08:00 UTC, 14:00 in Dhaka (a Friday)
T0 = 1_721_376_000.0

MIRPUR_1 = Stop(name="Mirpur-1", latitude=23.7937, longitude=90.3629, radius=300)
ASAD_GATE = Stop(name="Asad Gate", latitude=23.7651, longitude=90.3668, radius=200)


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def settings():
    return TrackingSettings.from_config()


@pytest.fixture
def schedule():
    """Every bus in service, no expected stops"""
    return StaticScheduleProvider()


@pytest.fixture
def service(settings, session_factory, schedule):
    return TrackingService(
        settings=settings,
        session_factory=session_factory,
        schedule=schedule,
        secret="test-secret",
    )


def make_fingerprint(variant: int = 0):
    return {
        "screen": {"width": 1080, "height": 2340, "colorDepth": 24, "pixelDepth": 24},
        "navigator": {
            "platform": "Linux armv8l",
            "language": "bn-BD",
            "hardwareConcurrency": 8,
            "maxTouchPoints": 5,
        },
        "timezone": {"timezone": "Asia/Dhaka"},
        "canvas": f"data:image/png;base64,device-{variant}",
        "webgl": {"supported": True, "renderer": "Adreno (TM) 640"},
        "features": {"localStorage": True, "webWorkers": True, "geolocation": True, "touchSupport": True},
    }


@pytest.fixture
def fingerprint():
    return make_fingerprint()


@pytest.fixture
def register(service):
    """Register the n-th test device and return its DeviceRegistration"""
    def _register(variant: int = 0, now: float = T0):
        return service.register_device(make_fingerprint(variant), now=now)
    return _register


@pytest.fixture
def make_sample():
    def _make_sample(token, bus_id="B1", lat=MIRPUR_1.latitude, lng=MIRPUR_1.longitude,
                     accuracy=10.0, speed=None, timestamp=T0, session_id=None):
        return {
            "bus_id": bus_id,
            "device_token": token,
            "latitude": lat,
            "longitude": lng,
            "accuracy_meters": accuracy,
            "speed_mps": speed,
            "timestamp": timestamp,
            "session_id": session_id,
        }
    return _make_sample
