"""Tests for the trip ledger against a SQLite database."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import func, select

from ridership_api.errors import InvalidTransition, TripNotFound, ValidationError
from ridership_api.models import RouteAnalytics, UserMonthlySummary
from ridership_api.services.ledger.ledger import TripLedger

from .fixtures.ledger_fixture import trip_payload

pytestmark = pytest.mark.usefixtures("reference_data")


async def _count(uow: Any, model: Any) -> int:
    async with uow() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestAppend:
    @pytest.mark.asyncio
    async def test_completed_trip_is_recorded_and_folded(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            trip_id = await ledger.append(session, trip_payload())

        async with uow() as session:
            trip = await ledger.get(session, trip_id)
        assert trip.trip_status == "completed"
        assert trip.folded_state == "completed"
        assert trip.folded_at is not None
        assert await _count(uow, UserMonthlySummary) == 1
        assert await _count(uow, RouteAnalytics) == 1

    @pytest.mark.asyncio
    async def test_in_progress_trip_is_not_folded(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            trip_id = await ledger.append(session, trip_payload(trip_status="in_progress"))

        async with uow() as session:
            trip = await ledger.get(session, trip_id)
        assert trip.trip_status == "in_progress"
        assert trip.folded_state is None
        assert await _count(uow, UserMonthlySummary) == 0

    @pytest.mark.asyncio
    async def test_in_progress_without_start_time_defaults_to_now(
        self, ledger: TripLedger, uow: Any
    ) -> None:
        async with uow() as session:
            trip_id = await ledger.append(
                session, trip_payload(trip_status="in_progress", start_time=None)
            )
            trip = await ledger.get(session, trip_id)
            assert trip.start_time is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"fare_paid": Decimal("-1.00")},
            {"distance_traveled": Decimal("-0.50")},
            {"start_time": None},
            {"payment_method": "bitcoin"},
            {"trip_status": "lost"},
            {"trip_status": "in_progress", "end_time": datetime(2026, 3, 10, 9, tzinfo=timezone.utc)},
            {"end_time": datetime(2026, 3, 10, 7, tzinfo=timezone.utc)},
            {"unexpected": 1},
        ],
    )
    async def test_malformed_trip_rejected(
        self, ledger: TripLedger, uow: Any, overrides: dict[str, Any]
    ) -> None:
        with pytest.raises(ValidationError):
            async with uow() as session:
                await ledger.append(session, trip_payload(**overrides))

        assert await _count(uow, UserMonthlySummary) == 0

    @pytest.mark.asyncio
    async def test_missing_field_rejected(self, ledger: TripLedger, uow: Any) -> None:
        payload = trip_payload()
        del payload["fare_paid"]
        with pytest.raises(ValidationError):
            async with uow() as session:
                await ledger.append(session, payload)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_complete_folds_once(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            trip_id = await ledger.append(session, trip_payload(trip_status="in_progress"))

        async with uow() as session:
            result = await ledger.complete(session, trip_id)
        assert result.counted
        assert not result.already_folded
        assert result.summary_key == (1, 2026, 3)
        assert result.route_id == 1

        async with uow() as session:
            trip = await ledger.get(session, trip_id)
        assert trip.trip_status == "completed"
        assert trip.end_time is not None
        assert trip.folded_state == "completed"

    @pytest.mark.asyncio
    async def test_redelivered_complete_is_a_no_op(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            trip_id = await ledger.append(session, trip_payload(trip_status="in_progress"))
        async with uow() as session:
            await ledger.complete(session, trip_id)

        async with uow() as session:
            again = await ledger.complete(session, trip_id)
        assert again.already_folded
        assert not again.counted

        async with uow() as session:
            summary = (await session.execute(select(UserMonthlySummary))).scalar_one()
        assert summary.total_trips == 1

    @pytest.mark.asyncio
    async def test_cancel_is_never_counted(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            trip_id = await ledger.append(session, trip_payload(trip_status="in_progress"))

        async with uow() as session:
            result = await ledger.cancel(session, trip_id)
        assert not result.counted
        assert result.terminal_state == "cancelled"

        async with uow() as session:
            trip = await ledger.get(session, trip_id)
        assert trip.folded_state == "cancelled"
        assert await _count(uow, UserMonthlySummary) == 0
        assert await _count(uow, RouteAnalytics) == 0

    @pytest.mark.asyncio
    async def test_completed_trip_cannot_be_cancelled(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            trip_id = await ledger.append(session, trip_payload())

        with pytest.raises(InvalidTransition) as exc_info:
            async with uow() as session:
                await ledger.cancel(session, trip_id)
        assert exc_info.value.current == "completed"
        assert exc_info.value.requested == "cancelled"

    @pytest.mark.asyncio
    async def test_cancelled_trip_cannot_be_completed(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            trip_id = await ledger.append(session, trip_payload(trip_status="in_progress"))
        async with uow() as session:
            await ledger.cancel(session, trip_id)

        with pytest.raises(InvalidTransition):
            async with uow() as session:
                await ledger.complete(session, trip_id)
        assert await _count(uow, UserMonthlySummary) == 0

    @pytest.mark.asyncio
    async def test_unknown_trip(self, ledger: TripLedger, uow: Any) -> None:
        with pytest.raises(TripNotFound):
            async with uow() as session:
                await ledger.complete(session, 404)


class TestRangeQuery:
    @pytest.mark.asyncio
    async def test_filters_and_orders_by_date(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            for day, user_id in [(12, 1), (3, 1), (20, 2), (25, 1)]:
                await ledger.append(
                    session, trip_payload(user_id=user_id, trip_date=date(2026, 3, day))
                )
            await ledger.append(session, trip_payload(trip_date=date(2026, 4, 2)))

        async with uow() as session:
            trips = await ledger.get_by_key_range(
                session, start_date=date(2026, 3, 1), end_date=date(2026, 3, 31), user_id=1
            )
        assert [t.trip_date.day for t in trips] == [3, 12, 25]

        async with uow() as session:
            page = await ledger.get_by_key_range(
                session,
                start_date=date(2026, 3, 1),
                end_date=date(2026, 4, 30),
                limit=2,
                offset=1,
            )
        assert [t.trip_date for t in page] == [date(2026, 3, 12), date(2026, 3, 20)]

    @pytest.mark.asyncio
    async def test_filters_by_status(self, ledger: TripLedger, uow: Any) -> None:
        async with uow() as session:
            await ledger.append(session, trip_payload())
            await ledger.append(session, trip_payload(trip_status="in_progress"))

        async with uow() as session:
            trips = await ledger.get_by_key_range(
                session,
                start_date=date(2026, 3, 1),
                end_date=date(2026, 3, 31),
                status="in_progress",
            )
        assert len(trips) == 1

    @pytest.mark.asyncio
    async def test_inverted_range_rejected(self, ledger: TripLedger, uow: Any) -> None:
        with pytest.raises(ValidationError):
            async with uow() as session:
                await ledger.get_by_key_range(
                    session, start_date=date(2026, 3, 31), end_date=date(2026, 3, 1)
                )
