import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Dict, Any, Optional
from datetime import date, datetime, timezone
from ..config import config
from ..db import get_db
from ..overview import build_overview, build_history
from ..pipeline import yesterday_utc
from ..scheduler import trigger_manual_refresh

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/health")
def api_health() -> Dict[str, str]:
    """API health check."""
    return {"status": "API is running"}

@router.get("/config")
def get_config() -> Dict[str, Any]:
    """Active telemetry, scoring and strain settings."""
    return {
        "telemetry": config.get_telemetry_config(),
        "scoring": config.get_scoring_config(),
        "strain": config.get_strain_config()
    }

@router.get("/overview")
async def get_overview(
    db: Session = Depends(get_db),
    target_date: Optional[date] = Query(None, alias="date", description="As-of date, defaults to yesterday (UTC)")
) -> Dict[str, Any]:
    """Fleet overview with every driver's drift report."""
    try:
        return await build_overview(db, target_date or yesterday_utc())

    except Exception as e:
        logger.exception("Overview failed")
        raise HTTPException(status_code=500, detail=f"Overview error: {str(e)}")

@router.get("/drivers/{driver_id}/history")
def get_driver_history(
    driver_id: str,
    db: Session = Depends(get_db)
) -> List[Dict[str, Any]]:
    """Get a driver's 14-day chart data."""
    try:
        return build_history(db, driver_id, datetime.now(timezone.utc).date())

    except Exception as e:
        logger.exception(f"History failed for driver {driver_id}")
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

@router.post("/refresh")
async def refresh() -> Dict[str, Any]:
    """Re-aggregate yesterday and refresh drift immediately."""
    try:
        return await trigger_manual_refresh()

    except Exception as e:
        logger.exception("Manual refresh failed")
        raise HTTPException(status_code=500, detail=f"Refresh failed: {str(e)}")
