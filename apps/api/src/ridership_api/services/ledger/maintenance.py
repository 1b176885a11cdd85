"""Retention sweep over the ledger and the monthly summaries.

Aggregates for removed periods are discarded, never re-derived. Route
analytics are cumulative and are left untouched.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Optional

from sqlalchemy import and_, delete, or_

from ridership_api.logging import get_logger
from ridership_api.models import Trip, UserMonthlySummary
from ridership_api.services.aggregation.periods import retention_cutoff

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def cleanup(
    session: AsyncSession,
    retain_months: int,
    *,
    today: Optional[date] = None,
) -> int:
    """Delete trips older than the retention window and their orphaned summaries.

    Trips dated before ``today - retain_months`` are removed. Monthly
    summaries are removed only when their whole (year, month) period precedes
    the cutoff's month, so a partially retained month keeps its summary.

    Returns:
        Number of trip rows deleted.
    """
    if retain_months < 1:
        msg = "retain_months must be at least 1"
        raise ValueError(msg)

    cutoff = retention_cutoff(today or date.today(), retain_months)

    trips_result = await session.execute(
        delete(Trip)
        .where(Trip.trip_date < cutoff)
        .execution_options(synchronize_session=False)
    )
    trips_deleted = trips_result.rowcount or 0

    summaries_result = await session.execute(
        delete(UserMonthlySummary)
        .where(
            or_(
                UserMonthlySummary.year < cutoff.year,
                and_(
                    UserMonthlySummary.year == cutoff.year,
                    UserMonthlySummary.month < cutoff.month,
                ),
            )
        )
        .execution_options(synchronize_session=False)
    )
    summaries_deleted = summaries_result.rowcount or 0

    logger.info(
        "Retention cleanup complete",
        retain_months=retain_months,
        cutoff=cutoff.isoformat(),
        trips_deleted=trips_deleted,
        summaries_deleted=summaries_deleted,
    )
    return trips_deleted
