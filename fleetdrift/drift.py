"""
Baseline and drift engine.

For a driver and a target date this reads the trailing 14-day window of
daily metrics, builds the baseline profile, compares the last 3 days against
it and scores the drift. The baseline is persisted; the rest of the report
is derived on demand.
"""
import logging
import random
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from .aggregation import to_utc_day
from .config import config
from .models import DailyMetric
from .nudges import addressee, build_nudge_message
from .persistence import get_metrics_range, upsert_baseline_profile
from .stats import drift_percent, population_stddev, round2, windowed_mean

logger = logging.getLogger(__name__)

STABLE = "Stable"
MILD_STRAIN = "Mild Strain"
MODERATE_STRAIN = "Moderate Strain"
HIGH_STRAIN = "High Strain"


def _values(metrics: Sequence[DailyMetric], field: str) -> List[float]:
    return [getattr(m, field) or 0 for m in metrics]


def compute_baseline(metrics: Sequence[DailyMetric]) -> Dict[str, float]:
    """Baseline averages and aggression volatility over the 14-day window."""
    window = config.baseline_window_days
    aggression = _values(metrics, "aggression_rate")
    avg_aggression = windowed_mean(aggression, window)
    return {
        "avg_driving_hours": windowed_mean(_values(metrics, "total_driving_hours"), window),
        "avg_night_hours": windowed_mean(_values(metrics, "night_driving_hours"), window),
        "avg_aggression_rate": avg_aggression,
        "aggression_volatility": population_stddev(aggression, avg_aggression, window),
    }


def recent_window(metrics: Sequence[DailyMetric], target_date: date) -> List[DailyMetric]:
    cutoff = target_date - timedelta(days=config.recent_window_days)
    return [m for m in metrics if m.date > cutoff]


def compute_recent(metrics: Sequence[DailyMetric], target_date: date) -> Dict[str, float]:
    """Averages over the recent window, divided by its nominal length."""
    window = config.recent_window_days
    recent = recent_window(metrics, target_date)
    return {
        "recent_driving_hours": windowed_mean(_values(recent, "total_driving_hours"), window),
        "recent_night_hours": windowed_mean(_values(recent, "night_driving_hours"), window),
        "recent_aggression_rate": windowed_mean(_values(recent, "aggression_rate"), window),
    }


def compute_drift(recent: Dict[str, float], baseline: Dict[str, float]) -> Dict[str, float]:
    return {
        "driving_hours_drift": drift_percent(recent["recent_driving_hours"], baseline["avg_driving_hours"]),
        "night_hours_drift": drift_percent(recent["recent_night_hours"], baseline["avg_night_hours"]),
        "aggression_drift": drift_percent(recent["recent_aggression_rate"], baseline["avg_aggression_rate"]),
    }


def burnout_score(drift: Dict[str, float]) -> float:
    return (
        drift["driving_hours_drift"] * config.score_hours_weight
        + drift["night_hours_drift"] * config.score_night_weight
        + drift["aggression_drift"] * config.score_aggression_weight
    )


def risk_level(score: float) -> str:
    """Band a burnout score; each band includes its lower bound."""
    if score >= config.risk_high_score:
        return HIGH_STRAIN
    if score >= config.risk_moderate_score:
        return MODERATE_STRAIN
    if score >= config.risk_mild_score:
        return MILD_STRAIN
    return STABLE


def is_strain_day(metric: DailyMetric, baseline: Dict[str, float]) -> bool:
    """A single day whose drift against the baseline exceeds every strain threshold."""
    driving = drift_percent(metric.total_driving_hours or 0, baseline["avg_driving_hours"])
    night = drift_percent(metric.night_driving_hours or 0, baseline["avg_night_hours"])
    aggression = drift_percent(metric.aggression_rate or 0, baseline["avg_aggression_rate"])
    return (
        driving > config.strain_hours_drift
        and night > config.strain_night_drift
        and aggression > config.strain_aggression_drift
    )


def count_consecutive_strain_days(metrics: Sequence[DailyMetric], baseline: Dict[str, float]) -> int:
    """Length of the strain streak ending at the most recent day.

    Only the last 7 days are examined; the count stops at the first day,
    walking backwards, that is not a strain day.
    """
    newest_first = sorted(metrics, key=lambda m: m.date, reverse=True)
    consecutive = 0
    for metric in newest_first[:config.streak_lookback_days]:
        if not is_strain_day(metric, baseline):
            break
        consecutive += 1
    return consecutive


def _display_names(driver_id: str, metrics: Sequence[DailyMetric]) -> Dict[str, str]:
    named = next((m for m in reversed(metrics) if m.driver_name), None)
    if named is None:
        return {"driver_name": driver_id, "first_name": "", "last_name": ""}
    return {
        "driver_name": named.driver_name,
        "first_name": named.first_name or "",
        "last_name": named.last_name or "",
    }


def build_report(
    driver_id: str,
    target_date: date,
    metrics: Sequence[DailyMetric],
    baseline: Optional[Dict[str, float]] = None,
    rng: Optional[random.Random] = None
) -> Dict:
    """Drift report for a driver from their window of daily metrics (oldest first)."""
    names = _display_names(driver_id, metrics)
    if baseline is None:
        baseline = compute_baseline(metrics)
    recent = compute_recent(metrics, target_date)
    drift = compute_drift(recent, baseline)

    score = burnout_score(drift)
    level = risk_level(score)
    consecutive = count_consecutive_strain_days(metrics, baseline)
    volatility_alert = baseline["aggression_volatility"] > config.volatility_threshold

    triggered = score >= config.risk_mild_score
    message = ""
    if triggered:
        message = build_nudge_message(
            level,
            addressee(names["first_name"], names["driver_name"]),
            drift,
            volatility_alert,
            rng=rng
        )

    return {
        "driver_id": driver_id,
        **names,
        "date": target_date,
        "baseline": {k: round2(v) for k, v in baseline.items()},
        "recent": {k: round2(v) for k, v in recent.items()},
        "drift": {k: round2(v) for k, v in drift.items()},
        "score": {
            "burnout_score": round2(score),
            "risk_level": level,
            "is_strain_risk": consecutive >= config.strain_risk_days,
            "volatility_alert": volatility_alert,
            "consecutive_strain_days": consecutive,
        },
        "notification": {
            "triggered": triggered,
            "message": message,
        },
    }


async def calculate_driver_drift(
    db: Session,
    driver_id: str,
    target_date,
    rng: Optional[random.Random] = None
) -> Optional[Dict]:
    """Compute and persist a driver's baseline, returning the drift report.

    Returns None when the driver has no daily metrics in the window; that
    means not enough data, not a failure.
    """
    target_day = to_utc_day(target_date)
    from_day = target_day - timedelta(days=config.baseline_window_days)

    metrics = get_metrics_range(db, driver_id, from_day, target_day)
    if not metrics:
        logger.debug(f"No daily metrics for {driver_id} between {from_day} and {target_day}")
        return None

    baseline = compute_baseline(metrics)
    report = build_report(driver_id, target_day, metrics, baseline=baseline, rng=rng)

    upsert_baseline_profile(db, driver_id, target_day, {
        "driver_name": report["driver_name"],
        "first_name": report["first_name"],
        "last_name": report["last_name"],
        **baseline,
    })

    logger.info(
        f"Drift for {report['driver_name']} on {target_day}: "
        f"score {report['score']['burnout_score']} ({report['score']['risk_level']}), "
        f"{report['score']['consecutive_strain_days']} consecutive strain days"
    )
    return report
