"""API endpoints for dashboard statistics."""
from fastapi import APIRouter

from marfanet.api.deps import DB, http_error
from marfanet.core.exceptions import LedgerEngineError
from marfanet.jobs.scheduler import get_job_status
from marfanet.schemas.stats import DashboardResponse, MetricResponse
from marfanet.services.statistics_service import StatisticsService

router = APIRouter()


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    db: DB,
):
    """All dashboard metrics. Values may be up to STATS_CACHE_TTL seconds old."""
    return DashboardResponse(metrics=await StatisticsService(db).get_dashboard())


@router.post("/invalidate")
async def invalidate_statistics(
    db: DB,
):
    """Drop every memoized metric; the next read recomputes them."""
    cleared = await StatisticsService(db).invalidate_all()
    return {"cleared": cleared}


@router.get("/jobs")
async def get_scheduled_jobs():
    """Status of the background jobs."""
    return get_job_status()


@router.get("/{metric_key}", response_model=MetricResponse)
async def get_metric(
    metric_key: str,
    db: DB,
):
    """One metric by key."""
    try:
        return await StatisticsService(db).get(metric_key)
    except LedgerEngineError as e:
        raise http_error(e)
