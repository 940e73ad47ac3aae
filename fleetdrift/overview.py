from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List
from sqlalchemy.orm import Session
from .config import config
from .drift import calculate_driver_drift, HIGH_STRAIN, MODERATE_STRAIN, MILD_STRAIN
from .models import DailyMetric
from .persistence import get_baselines_for_date, get_metrics_range

RISK_LEVEL_KEYS = {
    HIGH_STRAIN: "high",
    MODERATE_STRAIN: "moderate",
    MILD_STRAIN: "mild",
}

def _daily_metric_entry(m: DailyMetric) -> Dict[str, Any]:
    return {
        "date": m.date.isoformat(),
        "totalDrivingHours": m.total_driving_hours or 0,
        "totalDistance": m.total_distance_km or 0,
        "nightDrivingHours": m.night_driving_hours or 0,
        "harshBrakeCount": m.harsh_brake_count or 0,
        "accelerationCount": m.acceleration_count or 0,
        "speedingCount": m.speeding_count or 0,
        "aggressionRate": m.aggression_rate or 0
    }

def driver_entry(report: Dict, metrics: List[DailyMetric], target_date: date) -> Dict[str, Any]:
    """Reshape a drift report into the dashboard's camelCase driver entry."""
    with_vehicle = next((m for m in reversed(metrics) if m.vehicle_name), None)
    score = report["score"]

    return {
        "id": report["driver_id"],
        "name": report["driver_name"],
        "firstName": report["first_name"],
        "lastName": report["last_name"],
        "vehicleId": with_vehicle.vehicle_id if with_vehicle else "",
        "vehicleName": with_vehicle.vehicle_name if with_vehicle else "",
        "dailyMetrics": [_daily_metric_entry(m) for m in metrics],
        "baseline": {
            "avgDrivingHours": report["baseline"]["avg_driving_hours"],
            "avgNightHours": report["baseline"]["avg_night_hours"],
            "avgAggressionRate": report["baseline"]["avg_aggression_rate"],
            "stdAggressionRate": report["baseline"]["aggression_volatility"]
        },
        "recent": {
            "recentDrivingHours": report["recent"]["recent_driving_hours"],
            "recentNightHours": report["recent"]["recent_night_hours"],
            "recentAggressionRate": report["recent"]["recent_aggression_rate"]
        },
        "drift": {
            "drivingHoursDrift": report["drift"]["driving_hours_drift"],
            "nightHoursDrift": report["drift"]["night_hours_drift"],
            "aggressionDrift": report["drift"]["aggression_drift"]
        },
        "burnout": {
            "score": score["burnout_score"],
            "level": RISK_LEVEL_KEYS.get(score["risk_level"], "stable"),
            "consecutiveDays": score["consecutive_strain_days"],
            "volatilityRising": score["volatility_alert"]
        },
        "nudgeMessage": report["notification"]["message"],
        "lastActive": datetime.combine(target_date, time.min, tzinfo=timezone.utc).isoformat()
    }

async def build_overview(db: Session, target_date: date) -> Dict[str, Any]:
    """Fleet overview for every driver with a baseline as of target_date."""
    from_date = target_date - timedelta(days=config.baseline_window_days)
    profiles = get_baselines_for_date(db, target_date)

    drivers = []
    for profile in profiles:
        report = await calculate_driver_drift(db, profile.driver_id, target_date)
        if report is None:
            continue
        metrics = get_metrics_range(db, profile.driver_id, from_date, target_date)
        drivers.append(driver_entry(report, metrics, target_date))

    # Highest risk first
    drivers.sort(key=lambda d: d["burnout"]["score"], reverse=True)

    counts = {"high": 0, "moderate": 0, "mild": 0, "stable": 0}
    for d in drivers:
        counts[d["burnout"]["level"]] += 1

    avg_score = sum(d["burnout"]["score"] for d in drivers) / len(drivers) if drivers else 0

    return {
        "stats": {
            "totalDrivers": len(drivers),
            "high": counts["high"],
            "mod": counts["moderate"],
            "mild": counts["mild"],
            "stable": counts["stable"],
            "avgBurnoutScore": round(avg_score, 2),
            "driversAtRisk": counts["high"] + counts["moderate"],
            "volatilityAlerts": sum(1 for d in drivers if d["burnout"]["volatilityRising"]),
            "driftDistribution": counts
        },
        "drivers": drivers
    }

def build_history(db: Session, driver_id: str, to_date: date) -> List[Dict[str, Any]]:
    """A driver's last 14 days of chart data, oldest first."""
    from_date = to_date - timedelta(days=config.baseline_window_days)
    return [
        {
            "date": m.date.isoformat(),
            "drivingHours": m.total_driving_hours,
            "nightHours": m.night_driving_hours,
            "aggressionRate": m.aggression_rate
        }
        for m in get_metrics_range(db, driver_id, from_date, to_date)
    ]
