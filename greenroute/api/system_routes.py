"""
System Routes - Scheduler and analytics endpoints

Endpoints:
- GET /api/scheduler/status - Recalculation scheduler status
- POST /api/scheduler/recalculate - Publish a snapshot now
- GET /api/analytics/recent - Recent analytics records
"""

from fastapi import APIRouter, HTTPException, Query
from typing import Optional

from greenroute.analytics import get_analytics
from greenroute.scheduler import RecalculationScheduler, get_scheduler

router = APIRouter(prefix="/api", tags=["system"])


def _get_scheduler() -> RecalculationScheduler:
    scheduler = get_scheduler()
    if not scheduler:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler


@router.get("/scheduler/status")
async def scheduler_status():
    """Get recalculation scheduler status"""
    return _get_scheduler().get_status()


@router.post("/scheduler/recalculate")
async def recalculate(reason: str = Query(default="manual")):
    """Publish a new snapshot immediately"""
    snapshot = await _get_scheduler().force(reason)
    return {"status": "published", "snapshot": snapshot.summary()}


@router.get("/analytics/recent")
async def recent_analytics(
    limit: int = Query(default=50, ge=1, le=1000),
    name: Optional[str] = Query(default=None),
):
    """Get recent analytics records, newest first"""
    sink = get_analytics()
    if not sink:
        raise HTTPException(status_code=503, detail="Analytics not initialized")
    return {"records": sink.recent(limit, name=name), "total": sink.total_records}
