"""
Batch entry point: python -m fleetdrift.backfill [--days N]

Backfills daily metrics for the trailing N days, profiles drift for
yesterday, then exits.
"""
import argparse
import asyncio
import logging
import sys

from .config import config
from .db import init_db
from .pipeline import run_backfill
from .telemetry import AuthenticationError

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backfill daily driver metrics and drift profiles.")
    parser.add_argument(
        "--days",
        type=int,
        default=config.backfill_days,
        help=f"number of past days to aggregate, ending yesterday (default {config.backfill_days})"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.days < 1:
        logger.error("--days must be at least 1")
        return 2

    init_db()
    try:
        summary = asyncio.run(run_backfill(args.days))
    except AuthenticationError as e:
        logger.error(f"Backfill aborted: {e}")
        return 1

    failed_days = len(summary["failed"])
    logger.info(
        f"Backfilled {len(summary['dates'])} days, {summary['reports']} drift reports, "
        f"{failed_days} days with failures"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
