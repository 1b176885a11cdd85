"""Periodic route analytics job.

Recomputes the time-windowed route statistics (avg_trips_per_day,
peak_usage_hour) and the monthly most_used_mode from the ledger. Everything
the per-event fold owns (totals, averages) is left alone.

Design notes
------------
- Only completed trips inside the lookback window are considered. Routes
  with none get their windowed stats reset to NULL.
- Writes are field-level UPDATEs. The per-event fold may be updating the
  same route_analytics row concurrently. Neither writer overwrites the
  other's columns.
- last_updated only ever moves forward: the job never replaces a newer
  per-event timestamp with its own older one.
- most_used_mode is computed over whole months, starting at the first day of
  the month containing the window start, and only for summary rows that
  already exist (the job never creates summaries).
- A run-log entry is written to agg_run_log for /meta/last-analytics.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from time import monotonic
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import case, extract, func, select, update

from ridership_api.config import Settings, get_settings
from ridership_api.database import claim_write_lock, get_session_factory
from ridership_api.logging import get_logger
from ridership_api.models import (
    AggRunLog,
    Route,
    RouteAnalytics,
    TransportationMode,
    Trip,
    UserMonthlySummary,
)
from ridership_api.models.trips import STATUS_COMPLETED
from ridership_api.services.aggregation.periods import (
    month_start,
    pick_most_used,
    pick_peak_hour,
    trips_per_day,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


def _forward_only(column: Any, ts: datetime) -> Any:
    return case((column.is_(None), ts), (column < ts, ts), else_=column)


class PeriodicAnalyticsJob:
    """Recomputes windowed route stats and monthly most-used modes."""

    def __init__(
        self,
        *,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def run(
        self,
        lookback_days: Optional[int] = None,
        *,
        dry_run: bool = False,
        today: Optional[date] = None,
    ) -> dict[str, Any]:
        """Run one recomputation pass.

        Args:
            lookback_days: Days of ledger history to include (default from config).
            dry_run:       Compute but skip UPDATEs and the run log.
            today:         Override the reference date (tests).

        Returns:
            Summary dict with started_at, lookback_days, routes_updated,
            summaries_updated, duration_ms, dry_run, errors.
        """
        lookback_days = (
            lookback_days if lookback_days is not None else self.settings.analytics_lookback_days
        )
        today = today or date.today()
        window_start = today - timedelta(days=lookback_days)
        start_ts = datetime.now(timezone.utc)
        t0 = monotonic()

        run_id: int | None = None
        routes_updated = 0
        summaries_updated = 0
        status = "success"
        error_message = ""

        logger.info(
            "Periodic analytics run starting",
            lookback_days=lookback_days,
            window_start=window_start.isoformat(),
            dry_run=dry_run,
        )

        # 1. Insert run-log entry first so a crash still leaves a trace.
        if not dry_run:
            async with self.session_factory() as session:
                await claim_write_lock(session)
                log = AggRunLog(started_at=start_ts, lookback_days=lookback_days, status="running")
                session.add(log)
                await session.flush()
                run_id = log.id
                await session.commit()

        try:
            async with self.session_factory() as session:
                if not dry_run:
                    await claim_write_lock(session)
                route_stats = await self._route_stats(session, window_start, today)
                mode_stats = await self._mode_stats(session, month_start(window_start), today)

                if dry_run:
                    routes_updated = len(route_stats)
                    summaries_updated = len(mode_stats)
                else:
                    write_ts = datetime.now(timezone.utc)
                    routes_updated = await self._write_route_stats(session, route_stats, write_ts)
                    summaries_updated = await self._write_mode_stats(session, mode_stats)
                    await session.commit()

        except Exception as exc:
            status = "error"
            error_message = str(exc)
            logger.error("Periodic analytics run failed", error=error_message)
            raise

        finally:
            # 2. Close out the run log in its own session so it commits even on error.
            if not dry_run and run_id is not None:
                try:
                    async with self.session_factory() as session:
                        await claim_write_lock(session)
                        await session.execute(
                            update(AggRunLog)
                            .where(AggRunLog.id == run_id)
                            .values(
                                finished_at=datetime.now(timezone.utc),
                                routes_updated=routes_updated,
                                summaries_updated=summaries_updated,
                                status=status,
                                error_message=error_message[:500],
                            )
                        )
                        await session.commit()
                except Exception as log_exc:
                    logger.error("Failed to update agg run log", error=str(log_exc))

        duration_ms = int((monotonic() - t0) * 1000)
        logger.info(
            "Periodic analytics run complete",
            routes_updated=routes_updated,
            summaries_updated=summaries_updated,
            duration_ms=duration_ms,
            dry_run=dry_run,
            status=status,
        )

        return {
            "started_at": start_ts.isoformat(),
            "lookback_days": lookback_days,
            "routes_updated": routes_updated,
            "summaries_updated": summaries_updated,
            "duration_ms": duration_ms,
            "dry_run": dry_run,
            "errors": 0 if status == "success" else 1,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _route_stats(
        self, session: AsyncSession, window_start: date, today: date
    ) -> dict[int, tuple[Any, Optional[int]]]:
        """route_id -> (avg_trips_per_day, peak_usage_hour)."""
        in_window = (
            Trip.trip_status == STATUS_COMPLETED,
            Trip.trip_date >= window_start,
            Trip.trip_date <= today,
        )

        daily = await session.execute(
            select(
                Trip.route_id,
                func.count().label("trip_count"),
                func.count(func.distinct(Trip.trip_date)).label("active_days"),
            )
            .where(*in_window)
            .group_by(Trip.route_id)
        )

        hour_col = extract("hour", Trip.start_time)
        hourly = await session.execute(
            select(Trip.route_id, hour_col.label("hour"), func.count().label("trip_count"))
            .where(*in_window, Trip.start_time.is_not(None))
            .group_by(Trip.route_id, hour_col)
        )
        hour_counts: dict[int, dict[int, int]] = defaultdict(dict)
        for row in hourly:
            hour_counts[row.route_id][int(row.hour)] = int(row.trip_count)

        return {
            row.route_id: (
                trips_per_day(int(row.trip_count), int(row.active_days)),
                pick_peak_hour(hour_counts.get(row.route_id, {})),
            )
            for row in daily
        }

    async def _mode_stats(
        self, session: AsyncSession, since: date, today: date
    ) -> dict[tuple[int, int, int], Optional[str]]:
        """(user_id, year, month) -> most used mode name."""
        year_col = extract("year", Trip.trip_date)
        month_col = extract("month", Trip.trip_date)
        result = await session.execute(
            select(
                Trip.user_id,
                year_col.label("year"),
                month_col.label("month"),
                TransportationMode.mode_name,
                func.count().label("trip_count"),
            )
            .join(Route, Route.route_id == Trip.route_id)
            .join(TransportationMode, TransportationMode.mode_id == Route.mode_id)
            .where(
                Trip.trip_status == STATUS_COMPLETED,
                Trip.trip_date >= since,
                Trip.trip_date <= today,
            )
            .group_by(Trip.user_id, year_col, month_col, TransportationMode.mode_name)
        )

        counts: dict[tuple[int, int, int], dict[str, int]] = defaultdict(dict)
        for row in result:
            key = (int(row.user_id), int(row.year), int(row.month))
            counts[key][row.mode_name] = int(row.trip_count)
        return {key: pick_most_used(modes) for key, modes in counts.items()}

    # ------------------------------------------------------------------
    # Field-level writes
    # ------------------------------------------------------------------

    async def _write_route_stats(
        self,
        session: AsyncSession,
        stats: dict[int, tuple[Any, Optional[int]]],
        write_ts: datetime,
    ) -> int:
        updated = 0
        for route_id, (per_day, peak_hour) in stats.items():
            result = await session.execute(
                update(RouteAnalytics)
                .where(RouteAnalytics.route_id == route_id)
                .values(
                    avg_trips_per_day=per_day,
                    peak_usage_hour=peak_hour,
                    last_updated=_forward_only(RouteAnalytics.last_updated, write_ts),
                )
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0

        # Routes with no completed trips in the window have no current stats.
        idle = update(RouteAnalytics)
        if stats:
            idle = idle.where(RouteAnalytics.route_id.not_in(list(stats)))
        result = await session.execute(
            idle.values(
                avg_trips_per_day=None,
                peak_usage_hour=None,
                last_updated=_forward_only(RouteAnalytics.last_updated, write_ts),
            ).execution_options(synchronize_session=False)
        )
        idle_count = result.rowcount or 0
        if idle_count:
            logger.info("Cleared stats for idle routes", routes=idle_count)
        return updated + idle_count

    async def _write_mode_stats(
        self,
        session: AsyncSession,
        stats: dict[tuple[int, int, int], Optional[str]],
    ) -> int:
        updated = 0
        for (user_id, year, month), mode_name in stats.items():
            result = await session.execute(
                update(UserMonthlySummary)
                .where(
                    UserMonthlySummary.user_id == user_id,
                    UserMonthlySummary.year == year,
                    UserMonthlySummary.month == month,
                )
                .values(most_used_mode=mode_name)
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0
        return updated


async def get_last_run(session: AsyncSession) -> Optional[AggRunLog]:
    """Most recent periodic analytics run, if any."""
    result = await session.execute(
        select(AggRunLog).order_by(AggRunLog.started_at.desc(), AggRunLog.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()
