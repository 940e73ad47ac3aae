from datetime import date
from typing import Dict, List
from sqlalchemy.orm import Session
from .models import DailyMetric, BaselineProfile

DAILY_METRIC_FIELDS = (
    "driver_name",
    "first_name",
    "last_name",
    "total_driving_hours",
    "total_distance_km",
    "night_driving_hours",
    "harsh_brake_count",
    "acceleration_count",
    "speeding_count",
    "aggression_rate",
    "vehicle_id",
    "vehicle_name",
    "vehicle_vin",
    "vehicle_license_plate",
)

BASELINE_FIELDS = (
    "driver_name",
    "first_name",
    "last_name",
    "avg_driving_hours",
    "avg_night_hours",
    "avg_aggression_rate",
    "aggression_volatility",
)

def _upsert(db: Session, model, field_names, driver_id: str, day: date, values: Dict):
    """Insert or overwrite the row keyed by (driver_id, day).

    Every field in `field_names` is replaced; fields missing from `values`
    reset to the column default rather than keeping a stale value.
    """
    row = db.query(model).filter(
        model.driver_id == driver_id,
        model.date == day
    ).first()

    if row is None:
        row = model(driver_id=driver_id, date=day)
        db.add(row)

    for name in field_names:
        column_default = model.__table__.c[name].default
        fallback = column_default.arg if column_default is not None else None
        setattr(row, name, values.get(name, fallback))

    db.commit()
    db.refresh(row)
    return row

def upsert_daily_metric(db: Session, driver_id: str, day: date, values: Dict) -> DailyMetric:
    """Upsert a driver's daily metric for a specific date."""
    return _upsert(db, DailyMetric, DAILY_METRIC_FIELDS, driver_id, day, values)

def upsert_baseline_profile(db: Session, driver_id: str, day: date, values: Dict) -> BaselineProfile:
    """Upsert a driver's baseline snapshot for a specific date."""
    return _upsert(db, BaselineProfile, BASELINE_FIELDS, driver_id, day, values)

def get_metrics_range(
    db: Session,
    driver_id: str,
    from_date: date,
    to_date: date
) -> List[DailyMetric]:
    """Get a driver's daily metrics in [from_date, to_date], oldest first."""
    return db.query(DailyMetric).filter(
        DailyMetric.driver_id == driver_id,
        DailyMetric.date >= from_date,
        DailyMetric.date <= to_date
    ).order_by(DailyMetric.date.asc()).all()

def get_distinct_driver_ids(db: Session) -> List[str]:
    """Every driver id with at least one stored daily metric."""
    rows = db.query(DailyMetric.driver_id).distinct().order_by(DailyMetric.driver_id).all()
    return [driver_id for (driver_id,) in rows]

def get_baselines_for_date(db: Session, day: date) -> List[BaselineProfile]:
    """Baseline snapshots computed as of `day`."""
    return db.query(BaselineProfile).filter(
        BaselineProfile.date == day
    ).order_by(BaselineProfile.driver_id).all()
