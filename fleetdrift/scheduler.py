"""
Periodic refresh jobs.

Both jobs call the same idempotent recompute entry point the backfill uses,
so overlapping or repeated runs are safe.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import config
from .pipeline import backfill_dates, run_recompute, yesterday_utc

logger = logging.getLogger(__name__)

HOURLY_JOB_ID = "hourly_refresh"
DAILY_JOB_ID = "daily_full_refresh"


async def refresh_yesterday(**kwargs) -> dict:
    """Re-aggregate the most recently completed day and refresh drift."""
    yesterday = yesterday_utc()
    return await run_recompute([yesterday], drift_date=yesterday, **kwargs)


async def hourly_refresh_job():
    logger.info(f"Scheduled update triggered at {datetime.now(timezone.utc).isoformat()}")
    try:
        summary = await refresh_yesterday()
        logger.info(f"Scheduled update completed for {summary['drift_date']}")
    except Exception as e:
        logger.exception(f"Scheduled update failed: {e}")


async def daily_refresh_job():
    logger.info(f"Daily full refresh triggered at {datetime.now(timezone.utc).isoformat()}")
    try:
        dates = backfill_dates(config.daily_refresh_days)
        summary = await run_recompute(dates, drift_date=dates[-1])
        logger.info(f"Daily full refresh completed for {summary['dates'][0]} to {summary['dates'][-1]}")
    except Exception as e:
        logger.exception(f"Daily full refresh failed: {e}")


def setup_scheduler(scheduler: Optional[AsyncIOScheduler] = None) -> AsyncIOScheduler:
    """Register the hourly and daily refresh jobs (UTC)."""
    scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        hourly_refresh_job,
        trigger=CronTrigger(minute=0, timezone="UTC"),
        id=HOURLY_JOB_ID,
        name="Hourly refresh of yesterday",
        replace_existing=True,
        misfire_grace_time=600,
        coalesce=True
    )
    scheduler.add_job(
        daily_refresh_job,
        trigger=CronTrigger(hour=2, minute=0, timezone="UTC"),
        id=DAILY_JOB_ID,
        name=f"Daily refresh of last {config.daily_refresh_days} days",
        replace_existing=True,
        misfire_grace_time=3600,
        coalesce=True
    )

    logger.info("Scheduled: hourly updates + daily 02:00 UTC refresh")
    return scheduler


async def trigger_manual_refresh(**kwargs) -> dict:
    """Run the hourly refresh now; failures propagate to the caller."""
    logger.info("Manual refresh triggered")
    summary = await refresh_yesterday(**kwargs)
    return {"success": True, "message": "Data refreshed successfully", "summary": summary}
