import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from services.analytics_summary import get_analytics_summary
from utils.admin_scope import require_cms_admin
from utils.config import DEFAULT_SUMMARY_DAYS

router = APIRouter(prefix="/api/admin")


# --------------------------------------------------
# Helpers
# --------------------------------------------------
def parse_days(raw: Optional[str]) -> float:
    """Missing or non-numeric -> default window; clamping happens in the engine."""
    if raw is None or not raw.strip():
        return DEFAULT_SUMMARY_DAYS
    try:
        days = float(raw)
    except ValueError:
        return DEFAULT_SUMMARY_DAYS
    return days if math.isfinite(days) else DEFAULT_SUMMARY_DAYS


# --------------------------------------------------
# SUMMARY
# --------------------------------------------------
@router.get("/analytics", dependencies=[Depends(require_cms_admin)])
async def analytics_summary(days: Optional[str] = Query(None)):
    return await run_in_threadpool(get_analytics_summary, parse_days(days))
