import os

# Configure before any fleetdrift module reads the environment
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DEMO_EXCEPTION_FALLBACK"] = "false"
os.environ["LOG_FILE"] = ""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fleetdrift.models import Base, DailyMetric


class FakeTelemetrySource:
    """In-memory stand-in for TelemetryClient.

    trips/exceptions map driver id -> list of raw records; records carrying a
    "start" (trips) or "activeFrom" (exceptions) timestamp are filtered to the
    requested window. failures map (type_name, driver_id) -> exception to raise.
    """

    def __init__(self, users=None, trips=None, exceptions=None, devices=None, failures=None, auth_error=None):
        self.users = users or []
        self.trips = trips or {}
        self.exceptions = exceptions or {}
        self.devices = devices or {}
        self.failures = failures or {}
        self.auth_error = auth_error
        self.calls = []
        self.auth_count = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def authenticate(self):
        self.auth_count += 1
        if self.auth_error is not None:
            raise self.auth_error
        return {"sessionId": "fake"}

    async def get(self, type_name, search=None):
        search = search or {}
        self.calls.append((type_name, search))
        driver_id = (search.get("userSearch") or {}).get("id")

        failure = self.failures.get((type_name, driver_id or search.get("id")))
        if failure is not None:
            raise failure

        if type_name == "User":
            if "id" in search:
                return [u for u in self.users if u["id"] == search["id"]]
            return [u for u in self.users if u.get("isDriver")]
        if type_name == "Trip":
            return self._in_window(self.trips.get(driver_id, []), "start", search)
        if type_name == "ExceptionEvent":
            return self._in_window(self.exceptions.get(driver_id, []), "activeFrom", search)
        if type_name == "Device":
            device = self.devices.get(search.get("id"))
            return [device] if device else []
        return []

    @staticmethod
    def _in_window(records, key, search):
        start = _parse(search.get("fromDate"))
        end = _parse(search.get("toDate"))
        selected = []
        for record in records:
            ts = _parse(record.get(key))
            if ts is None or start is None or start <= ts < end:
                selected.append(record)
        return selected


def _parse(value):
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def make_trip(start, stop, distance=10.0, duration=None, device="b1"):
    if duration is None:
        seconds = int((stop - start).total_seconds())
        duration = f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}.000"
    return {
        "device": {"id": device},
        "start": start.isoformat().replace("+00:00", "Z"),
        "stop": stop.isoformat().replace("+00:00", "Z"),
        "distance": distance,
        "drivingDuration": duration,
    }


def make_metric(driver_id, day, hours=0.0, night=0.0, aggression=0.0, **extra):
    values = dict(
        driver_id=driver_id,
        driver_name=extra.pop("driver_name", f"{driver_id}@fleet.example"),
        first_name=extra.pop("first_name", ""),
        last_name=extra.pop("last_name", ""),
        date=day,
        total_driving_hours=hours,
        night_driving_hours=night,
        aggression_rate=aggression,
        total_distance_km=extra.pop("distance", 100.0),
        harsh_brake_count=0,
        acceleration_count=0,
        speeding_count=0,
        vehicle_id="",
        vehicle_name="",
        vehicle_vin="",
        vehicle_license_plate="",
    )
    values.update(extra)
    return DailyMetric(**values)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def add_metrics(db_session):
    """Store a list of DailyMetric rows."""
    def _add(metrics):
        db_session.add_all(metrics)
        db_session.commit()
        return metrics
    return _add


@pytest.fixture
def target_day():
    return date(2025, 3, 14)


@pytest.fixture
def window_days(target_day):
    """The 14 days ending at target_day, oldest first."""
    return [target_day - timedelta(days=13 - i) for i in range(14)]
