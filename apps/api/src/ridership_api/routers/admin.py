"""Admin routes for the periodic analytics job and retention maintenance."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ridership_api.config import get_settings
from ridership_api.database import get_session_context, unit_of_work
from ridership_api.logging import get_logger
from ridership_api.services.aggregation.periodic import PeriodicAnalyticsJob, get_last_run
from ridership_api.services.ledger.maintenance import cleanup

logger = get_logger(__name__)

router = APIRouter(tags=["admin"])


# --- Periodic analytics ---


class AnalyticsRunRequest(BaseModel):
    """Request body for a periodic analytics run."""

    lookback_days: Optional[int] = Field(
        default=None,
        ge=1,
        le=3650,
        description="Override lookback window. Defaults to ANALYTICS_LOOKBACK_DAYS.",
    )
    dry_run: bool = Field(
        default=False,
        description="If true, compute but do not write to route_analytics or summaries.",
    )


class AnalyticsRunResponse(BaseModel):
    started_at: str
    lookback_days: int
    routes_updated: int
    summaries_updated: int
    duration_ms: int
    dry_run: bool
    errors: int


class LastAnalyticsResponse(BaseModel):
    last_run_at: Optional[str] = None
    finished_at: Optional[str] = None
    lookback_days: Optional[int] = None
    routes_updated: Optional[int] = None
    summaries_updated: Optional[int] = None
    status: Optional[str] = None
    message: str


# TODO: Gate /admin routes behind an admin-role dependency once auth exists.
@router.post(
    "/admin/analytics/run",
    response_model=AnalyticsRunResponse,
    summary="Recompute windowed route stats and most-used modes",
    description=(
        "Recomputes avg_trips_per_day and peak_usage_hour per route and "
        "most_used_mode per monthly summary from the trip ledger. Totals "
        "maintained by the per-event fold are never touched."
    ),
)
async def run_analytics(body: Optional[AnalyticsRunRequest] = None) -> Dict[str, Any]:
    body = body or AnalyticsRunRequest()
    job = PeriodicAnalyticsJob()
    try:
        return await job.run(lookback_days=body.lookback_days, dry_run=body.dry_run)
    except Exception as exc:
        logger.error("Analytics run failed", exc_info=exc)
        raise HTTPException(
            status_code=500,
            detail=f"Analytics run failed: {type(exc).__name__}: {exc}",
        ) from exc


@router.get(
    "/meta/last-analytics",
    response_model=LastAnalyticsResponse,
    summary="Most recent periodic analytics run",
)
async def last_analytics() -> Dict[str, Any]:
    async with get_session_context() as session:
        run = await get_last_run(session)

    if run is None:
        return {"message": "No analytics run recorded yet"}
    return {
        "last_run_at": run.started_at.isoformat(),
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "lookback_days": run.lookback_days,
        "routes_updated": run.routes_updated,
        "summaries_updated": run.summaries_updated,
        "status": run.status,
        "message": run.error_message or "ok",
    }


# --- Retention ---


class CleanupRequest(BaseModel):
    retain_months: Optional[int] = Field(
        default=None,
        ge=1,
        le=600,
        description="Months of ledger history to keep. Defaults to DEFAULT_RETAIN_MONTHS.",
    )


class CleanupResponse(BaseModel):
    retain_months: int
    rows_affected: int


@router.post(
    "/admin/maintenance/cleanup",
    response_model=CleanupResponse,
    summary="Delete trips and summaries outside the retention window",
)
async def run_cleanup(body: Optional[CleanupRequest] = None) -> Dict[str, Any]:
    settings = get_settings()
    retain_months = (
        body.retain_months if body and body.retain_months else settings.default_retain_months
    )
    async with unit_of_work() as session:
        rows = await cleanup(session, retain_months)
    return {"retain_months": retain_months, "rows_affected": rows}
