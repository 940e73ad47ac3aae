"""
Backfill orchestration.

Runs the aggregator over a sequence of days for every driver the telemetry
source knows, then refreshes drift for every driver in the metric store.
Everything is sequential; each driver-day is an isolated unit of work.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .aggregation import RuleExceptionCounter, aggregate_day, get_exception_counter, to_utc_day
from .config import config
from .db import session_scope
from .drift import calculate_driver_drift
from .persistence import get_distinct_driver_ids
from .records import User
from .telemetry import AuthenticationError, TelemetryClient

logger = logging.getLogger(__name__)


@dataclass
class DayResult:
    date: date
    processed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


def yesterday_utc(today: Optional[date] = None) -> date:
    """Most recently completed UTC day."""
    today = today or datetime.now(timezone.utc).date()
    return today - timedelta(days=1)


def backfill_dates(days: int, today: Optional[date] = None) -> List[date]:
    """The `days` dates ending yesterday, oldest first."""
    end = yesterday_utc(today)
    return [end - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


async def fetch_drivers(source) -> List[User]:
    """Driver users; records that fail to parse are logged and skipped."""
    drivers = []
    for raw in await source.get("User", {"isDriver": True}):
        try:
            drivers.append(User.from_api(raw))
        except ValidationError as e:
            logger.warning(f"Skipping malformed driver record {raw!r}: {e}")
    return drivers


async def process_day(
    source,
    db: Session,
    target_date,
    counter: Optional[RuleExceptionCounter] = None,
    drivers: Optional[Sequence[User]] = None,
) -> DayResult:
    """Aggregate one day for every driver; a failing driver is logged and skipped."""
    day = to_utc_day(target_date)
    counter = counter or get_exception_counter()
    if drivers is None:
        drivers = await fetch_drivers(source)

    logger.info(f"Starting daily aggregation for {day} ({len(drivers)} drivers)")
    result = DayResult(date=day)

    for driver in drivers:
        try:
            await aggregate_day(source, db, driver, day, counter)
            result.processed.append(driver.id)
        except AuthenticationError:
            raise
        except Exception as e:
            db.rollback()
            result.failed[driver.id] = str(e)
            logger.exception(f"Aggregation failed for driver {driver.id} on {day}: {e}")

    logger.info(
        f"Daily aggregation complete for {day}: "
        f"{len(result.processed)} saved, {len(result.failed)} failed"
    )
    return result


async def refresh_drift(db: Session, target_date) -> List[Dict]:
    """Recompute drift for every driver with stored metrics."""
    reports = []
    for driver_id in get_distinct_driver_ids(db):
        try:
            report = await calculate_driver_drift(db, driver_id, target_date)
        except Exception as e:
            db.rollback()
            logger.exception(f"Drift calculation failed for driver {driver_id}: {e}")
            continue
        if report is not None:
            reports.append(report)
    return reports


async def recompute(
    source,
    db: Session,
    dates: Sequence,
    drift_date=None,
    counter: Optional[RuleExceptionCounter] = None,
) -> Dict:
    """Aggregate each date then refresh drift as of `drift_date`.

    Every write is an upsert keyed by (driver, date), so re-running over
    overlapping dates converges on the same rows. Authentication failures
    abort the whole run.
    """
    days = sorted({to_utc_day(d) for d in dates})
    if not days:
        return {"dates": [], "failed": {}, "drift_date": None, "reports": 0}

    if hasattr(source, "authenticate"):
        await source.authenticate()

    drivers = await fetch_drivers(source)
    logger.info(f"Found {len(drivers)} drivers")

    failed: Dict[str, Dict[str, str]] = {}
    for day in days:
        result = await process_day(source, db, day, counter=counter, drivers=drivers)
        if result.failed:
            failed[day.isoformat()] = result.failed

    drift_day = to_utc_day(drift_date) if drift_date is not None else days[-1]
    logger.info(f"Generating drift profiles for {drift_day}")
    reports = await refresh_drift(db, drift_day)

    return {
        "dates": [d.isoformat() for d in days],
        "failed": failed,
        "drift_date": drift_day.isoformat(),
        "reports": len(reports),
    }


async def run_recompute(dates: Sequence, drift_date=None, session_factory=None, client_factory=None) -> Dict:
    """recompute() with a fresh telemetry client and database session."""
    client_factory = client_factory or TelemetryClient
    async with client_factory() as source:
        with session_scope(session_factory) as db:
            return await recompute(source, db, dates, drift_date=drift_date)


async def run_backfill(days: Optional[int] = None, today: Optional[date] = None, **kwargs) -> Dict:
    """Backfill the trailing `days` days and profile drift for yesterday."""
    days = days or config.backfill_days
    dates = backfill_dates(days, today)
    logger.info(f"Starting {days}-day historical backfill ({dates[0]} to {dates[-1]})")
    summary = await run_recompute(dates, drift_date=dates[-1], **kwargs)
    logger.info("Backfill and drift profiling complete")
    return summary
