"""Integration tests for concurrent folds on PostgreSQL.

Requires a real PostgreSQL database:
    RUN_INTEGRATION_TESTS=1
    DATABASE_URL=postgresql+asyncpg://...

All tests use a freshly created schema (drop_all -> create_all) so they are
safe to run against a dedicated test / dev database.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal
from functools import partial
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from ridership_api.database import create_engine_for_url, make_session_factory, unit_of_work
from ridership_api.models import Base, RouteAnalytics, UserMonthlySummary
from ridership_api.services.aggregation.engine import AggregationEngine
from ridership_api.services.aggregation.periodic import PeriodicAnalyticsJob
from ridership_api.services.ledger.ledger import TripLedger

from .fixtures.ledger_fixture import load_reference_data, trip_payload

RUN_INTEGRATION = os.getenv("RUN_INTEGRATION_TESTS") == "1"
DATABASE_URL = os.getenv("DATABASE_URL")

if not RUN_INTEGRATION or not DATABASE_URL:
    pytest.skip(
        "Integration tests require RUN_INTEGRATION_TESTS=1 and DATABASE_URL to be set",
        allow_module_level=True,
    )

pytestmark = pytest.mark.integration


@pytest.fixture
async def pg_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine_for_url(DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    factory = make_session_factory(engine)
    async with unit_of_work(factory) as session:
        await load_reference_data(session)
    yield engine
    await engine.dispose()


@pytest.fixture
def pg_uow(pg_engine: AsyncEngine) -> Any:
    return partial(unit_of_work, make_session_factory(pg_engine))


@pytest.fixture
def pg_ledger() -> TripLedger:
    return TripLedger(AggregationEngine(max_attempts=8, backoff_base_sec=0.01, backoff_max_sec=0.2))


async def _in_progress(ledger: TripLedger, uow: Any, count: int, **overrides: Any) -> list[int]:
    async with uow() as session:
        return [
            await ledger.append(session, trip_payload(trip_status="in_progress", **overrides))
            for _ in range(count)
        ]


class TestRowLockContention:
    @pytest.mark.asyncio
    async def test_same_key_completions_conserve_totals(
        self, pg_ledger: TripLedger, pg_uow: Any
    ) -> None:
        trip_ids = await _in_progress(pg_ledger, pg_uow, 40, fare_paid=Decimal("1.75"))

        async def complete(trip_id: int) -> None:
            async with pg_uow() as session:
                await pg_ledger.complete(session, trip_id)

        await asyncio.gather(*(complete(t) for t in trip_ids))

        async with pg_uow() as session:
            summary = (await session.execute(select(UserMonthlySummary))).scalar_one()
            route = (await session.execute(select(RouteAnalytics))).scalar_one()
        assert summary.total_trips == 40
        assert summary.total_spent == Decimal("70.00")
        assert summary.avg_trip_cost == Decimal("1.7500")
        assert route.total_trips == 40
        assert route.total_revenue == Decimal("70.00")

    @pytest.mark.asyncio
    async def test_first_touch_race_creates_one_row(
        self, pg_ledger: TripLedger, pg_uow: Any
    ) -> None:
        """Concurrent first folds for a fresh key must land on one summary row."""
        trip_ids = await _in_progress(
            pg_ledger, pg_uow, 12, user_id=5, trip_date=date(2026, 5, 1)
        )

        async def complete(trip_id: int) -> None:
            async with pg_uow() as session:
                await pg_ledger.complete(session, trip_id)

        await asyncio.gather(*(complete(t) for t in trip_ids))

        async with pg_uow() as session:
            rows = (
                await session.execute(
                    select(UserMonthlySummary).where(UserMonthlySummary.user_id == 5)
                )
            ).scalars().all()
        assert len(rows) == 1
        assert rows[0].total_trips == 12

    @pytest.mark.asyncio
    async def test_disjoint_keys(self, pg_ledger: TripLedger, pg_uow: Any) -> None:
        batches = {
            user_id: await _in_progress(
                pg_ledger, pg_uow, 5, user_id=user_id, route_id=(user_id % 3) + 1
            )
            for user_id in range(1, 7)
        }

        async def complete(trip_id: int) -> None:
            async with pg_uow() as session:
                await pg_ledger.complete(session, trip_id)

        await asyncio.gather(*(complete(t) for ids in batches.values() for t in ids))

        async with pg_uow() as session:
            summaries = (await session.execute(select(UserMonthlySummary))).scalars().all()
            routes = (await session.execute(select(RouteAnalytics))).scalars().all()
        assert {s.user_id: s.total_trips for s in summaries} == {u: 5 for u in batches}
        assert sum(r.total_trips for r in routes) == 30
        assert sum(r.total_revenue for r in routes) == sum(s.total_spent for s in summaries)


class TestPeriodicJobAlongsideFolds:
    @pytest.mark.asyncio
    async def test_job_does_not_clobber_fold_counters(
        self, pg_engine: AsyncEngine, pg_ledger: TripLedger, pg_uow: Any
    ) -> None:
        today = date.today()
        trip_ids = await _in_progress(pg_ledger, pg_uow, 20, trip_date=today)
        job = PeriodicAnalyticsJob(session_factory=make_session_factory(pg_engine))

        async def complete(trip_id: int) -> None:
            async with pg_uow() as session:
                await pg_ledger.complete(session, trip_id)

        await asyncio.gather(job.run(lookback_days=7), *(complete(t) for t in trip_ids))

        async with pg_uow() as session:
            route = (await session.execute(select(RouteAnalytics))).scalar_one()
        assert route.total_trips == 20
