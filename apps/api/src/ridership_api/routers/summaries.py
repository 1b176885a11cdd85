"""Read projections over the maintained aggregates.

Endpoints
---------
GET /users/{user_id}/summaries                 – monthly summaries for a rider
GET /users/{user_id}/summaries/{year}/{month}  – one monthly summary
GET /users/{user_id}/dashboard                 – current month + lifetime usage
GET /routes/analytics                          – route performance, by revenue
GET /routes/{route_id}/analytics               – one route's analytics

These endpoints never write.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Path, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select

from ridership_api.config import get_settings
from ridership_api.database import get_session_context
from ridership_api.logging import get_logger
from ridership_api.models import Route, RouteAnalytics, Trip, UserMonthlySummary
from ridership_api.models.trips import STATUS_COMPLETED
from ridership_api.services.aggregation.periods import revenue_per_trip, usage_category

logger = get_logger(__name__)

router = APIRouter(tags=["summaries"])

# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class MonthlySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    year: int
    month: int
    total_trips: int
    total_spent: Decimal
    total_distance: Decimal
    avg_trip_cost: Decimal
    most_used_mode: Optional[str] = None
    last_updated: datetime


class RouteAnalyticsOut(BaseModel):
    route_id: int
    route_name: Optional[str] = None
    total_trips: int
    total_revenue: Decimal
    avg_trips_per_day: Optional[Decimal] = None
    peak_usage_hour: Optional[int] = None
    avg_revenue_per_trip: Optional[Decimal] = None
    usage_category: str
    last_updated: datetime


class RouteAnalyticsPage(BaseModel):
    routes: list[RouteAnalyticsOut]
    limit: int
    offset: int


class DashboardOut(BaseModel):
    user_id: int
    year: int
    month: int
    current_month_trips: int
    current_month_spending: Decimal
    favorite_route: Optional[str] = None
    total_lifetime_trips: int
    total_lifetime_spending: Decimal


def _route_out(analytics: RouteAnalytics, route_name: Optional[str]) -> RouteAnalyticsOut:
    return RouteAnalyticsOut(
        route_id=analytics.route_id,
        route_name=route_name,
        total_trips=analytics.total_trips,
        total_revenue=analytics.total_revenue,
        avg_trips_per_day=analytics.avg_trips_per_day,
        peak_usage_hour=analytics.peak_usage_hour,
        avg_revenue_per_trip=revenue_per_trip(analytics.total_revenue, analytics.total_trips),
        usage_category=usage_category(analytics.total_trips),
        last_updated=analytics.last_updated,
    )


# ---------------------------------------------------------------------------
# Monthly summaries
# ---------------------------------------------------------------------------


@router.get(
    "/users/{user_id}/summaries",
    response_model=list[MonthlySummaryOut],
    summary="List a rider's monthly summaries",
)
async def list_user_summaries(
    user_id: int,
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
) -> Any:
    stmt = select(UserMonthlySummary).where(UserMonthlySummary.user_id == user_id)
    if year is not None:
        stmt = stmt.where(UserMonthlySummary.year == year)
    stmt = stmt.order_by(UserMonthlySummary.year.desc(), UserMonthlySummary.month.desc())

    async with get_session_context() as session:
        rows = (await session.execute(stmt)).scalars().all()
        return [MonthlySummaryOut.model_validate(r) for r in rows]


@router.get(
    "/users/{user_id}/summaries/{year}/{month}",
    response_model=MonthlySummaryOut,
    summary="Get one monthly summary",
)
async def get_user_summary(
    user_id: int,
    year: int,
    month: int = Path(ge=1, le=12),
) -> Any:
    async with get_session_context() as session:
        row = (
            await session.execute(
                select(UserMonthlySummary).where(
                    UserMonthlySummary.user_id == user_id,
                    UserMonthlySummary.year == year,
                    UserMonthlySummary.month == month,
                )
            )
        ).scalar_one_or_none()

    if row is None:
        raise HTTPException(
            status_code=404,
            detail=f"No summary for user {user_id} in {year}-{month:02d}",
        )
    return MonthlySummaryOut.model_validate(row)


@router.get(
    "/users/{user_id}/dashboard",
    response_model=DashboardOut,
    summary="Current-month and lifetime usage for a rider",
)
async def get_user_dashboard(user_id: int) -> Any:
    today = date.today()

    async with get_session_context() as session:
        current = (
            await session.execute(
                select(UserMonthlySummary.total_trips, UserMonthlySummary.total_spent).where(
                    UserMonthlySummary.user_id == user_id,
                    UserMonthlySummary.year == today.year,
                    UserMonthlySummary.month == today.month,
                )
            )
        ).first()

        favorite = (
            await session.execute(
                select(Route.route_name, func.count().label("trip_count"))
                .join(Trip, Trip.route_id == Route.route_id)
                .where(Trip.user_id == user_id, Trip.trip_status == STATUS_COMPLETED)
                .group_by(Route.route_id, Route.route_name)
                .order_by(func.count().desc(), Route.route_id)
                .limit(1)
            )
        ).first()

        lifetime = (
            await session.execute(
                select(
                    func.count().label("trip_count"),
                    func.coalesce(func.sum(Trip.fare_paid), 0).label("spending"),
                ).where(Trip.user_id == user_id, Trip.trip_status == STATUS_COMPLETED)
            )
        ).one()

    return DashboardOut(
        user_id=user_id,
        year=today.year,
        month=today.month,
        current_month_trips=int(current.total_trips) if current else 0,
        current_month_spending=Decimal(current.total_spent) if current else Decimal("0"),
        favorite_route=favorite.route_name if favorite else None,
        total_lifetime_trips=int(lifetime.trip_count),
        total_lifetime_spending=Decimal(str(lifetime.spending)).quantize(Decimal("0.01")),
    )


# ---------------------------------------------------------------------------
# Route analytics
# ---------------------------------------------------------------------------


@router.get(
    "/routes/analytics",
    response_model=RouteAnalyticsPage,
    summary="Route performance ordered by revenue",
)
async def list_route_analytics(
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    settings = get_settings()
    limit = min(limit or settings.default_page_size, settings.max_page_size)

    async with get_session_context() as session:
        rows = (
            await session.execute(
                select(RouteAnalytics, Route.route_name)
                .join(Route, Route.route_id == RouteAnalytics.route_id)
                .order_by(RouteAnalytics.total_revenue.desc(), RouteAnalytics.route_id)
                .offset(offset)
                .limit(limit)
            )
        ).all()

    return {
        "routes": [_route_out(analytics, route_name) for analytics, route_name in rows],
        "limit": limit,
        "offset": offset,
    }


@router.get(
    "/routes/{route_id}/analytics",
    response_model=RouteAnalyticsOut,
    summary="Get one route's analytics",
)
async def get_route_analytics(route_id: int) -> Any:
    async with get_session_context() as session:
        row = (
            await session.execute(
                select(RouteAnalytics, Route.route_name)
                .join(Route, Route.route_id == RouteAnalytics.route_id)
                .where(RouteAnalytics.route_id == route_id)
            )
        ).first()

    if row is None:
        raise HTTPException(status_code=404, detail=f"No analytics for route {route_id}")
    analytics, route_name = row
    return _route_out(analytics, route_name)
