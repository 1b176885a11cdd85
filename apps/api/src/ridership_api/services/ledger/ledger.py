"""Trip ledger: append-mostly store of trip events.

Every write that moves a trip into a terminal state hands the trip to the
aggregation engine on the same session, so the caller's commit makes the
ledger row and the aggregate fold durable together.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence, Union

import pydantic
from sqlalchemy import select

from ridership_api.errors import InvalidTransition, TripNotFound, ValidationError
from ridership_api.logging import get_logger
from ridership_api.models import Trip
from ridership_api.models.trips import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    TERMINAL_STATUSES,
)
from ridership_api.services.aggregation.engine import (
    AggregationEngine,
    FoldResult,
    get_aggregation_engine,
)
from ridership_api.services.ledger.schemas import TripCreate

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _validate(trip: Union[TripCreate, Mapping[str, Any]]) -> TripCreate:
    if isinstance(trip, TripCreate):
        return trip
    try:
        return TripCreate.model_validate(dict(trip))
    except pydantic.ValidationError as exc:
        raise ValidationError(str(exc)) from exc


class TripLedger:
    """Records trips and their single terminal transition."""

    def __init__(self, aggregator: Optional[AggregationEngine] = None) -> None:
        self.aggregator = aggregator or get_aggregation_engine()

    async def append(
        self, session: AsyncSession, trip: Union[TripCreate, Mapping[str, Any]]
    ) -> int:
        """Record a new trip and return its id.

        A trip appended directly in a terminal state is handed to the engine
        straight away; an ``in_progress`` trip is folded later, when it
        transitions.

        Raises:
            ValidationError: negative fare, missing fields, bad status/time combination.
        """
        data = _validate(trip)
        start_time = data.start_time
        if start_time is None:
            start_time = datetime.now(timezone.utc)

        row = Trip(
            user_id=data.user_id,
            route_id=data.route_id,
            start_station_id=data.start_station_id,
            end_station_id=data.end_station_id,
            trip_date=data.trip_date,
            start_time=start_time,
            end_time=data.end_time,
            fare_paid=data.fare_paid,
            distance_traveled=data.distance_traveled,
            payment_method=data.payment_method,
            trip_status=data.trip_status,
        )
        session.add(row)
        await session.flush()

        logger.info(
            "Trip appended",
            trip_id=row.trip_id,
            user_id=row.user_id,
            route_id=row.route_id,
            trip_status=row.trip_status,
        )

        if row.trip_status in TERMINAL_STATUSES:
            await self.aggregator.on_trip_committed(session, row)
        return row.trip_id

    async def complete(
        self,
        session: AsyncSession,
        trip_id: int,
        end_time: Optional[datetime] = None,
    ) -> FoldResult:
        """Transition an in-progress trip to completed and fold it."""
        return await self._transition(session, trip_id, STATUS_COMPLETED, end_time)

    async def cancel(
        self,
        session: AsyncSession,
        trip_id: int,
        end_time: Optional[datetime] = None,
    ) -> FoldResult:
        """Transition an in-progress trip to cancelled. It is never counted."""
        return await self._transition(session, trip_id, STATUS_CANCELLED, end_time)

    async def get(self, session: AsyncSession, trip_id: int) -> Trip:
        trip = (
            await session.execute(
                select(Trip)
                .where(Trip.trip_id == trip_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if trip is None:
            raise TripNotFound(trip_id)
        return trip

    async def get_by_key_range(
        self,
        session: AsyncSession,
        *,
        start_date: date,
        end_date: date,
        user_id: Optional[int] = None,
        route_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Sequence[Trip]:
        """Trips with ``start_date <= trip_date <= end_date``, oldest first.

        Narrowed by rider and/or route so the (user_id, trip_date) and
        (route_id, trip_date) indexes serve the query.
        """
        if end_date < start_date:
            msg = "end_date precedes start_date"
            raise ValidationError(msg)

        stmt = select(Trip).where(Trip.trip_date >= start_date, Trip.trip_date <= end_date)
        if user_id is not None:
            stmt = stmt.where(Trip.user_id == user_id)
        if route_id is not None:
            stmt = stmt.where(Trip.route_id == route_id)
        if status is not None:
            stmt = stmt.where(Trip.trip_status == status)
        stmt = stmt.order_by(Trip.trip_date, Trip.trip_id).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return (await session.execute(stmt)).scalars().all()

    async def _transition(
        self,
        session: AsyncSession,
        trip_id: int,
        target: str,
        end_time: Optional[datetime],
    ) -> FoldResult:
        trip = (
            await session.execute(
                select(Trip)
                .where(Trip.trip_id == trip_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if trip is None:
            raise TripNotFound(trip_id)

        if trip.trip_status != STATUS_IN_PROGRESS:
            if trip.trip_status == target:
                # Redelivered transition: let the marker decide.
                return await self.aggregator.on_trip_committed(session, trip)
            raise InvalidTransition(trip_id, trip.trip_status, target)

        trip.trip_status = target
        trip.end_time = end_time or datetime.now(timezone.utc)
        await session.flush()

        logger.info("Trip transitioned", trip_id=trip_id, trip_status=target)
        return await self.aggregator.on_trip_committed(session, trip)


# Singleton instance for the app lifecycle
_ledger_instance: TripLedger | None = None


def get_ledger() -> TripLedger:
    """Get or create the singleton ledger instance."""
    global _ledger_instance
    if _ledger_instance is None:
        _ledger_instance = TripLedger()
    return _ledger_instance


def reset_ledger() -> None:
    """Reset the singleton (for testing)."""
    global _ledger_instance
    _ledger_instance = None
