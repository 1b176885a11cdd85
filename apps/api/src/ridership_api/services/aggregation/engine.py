"""Incremental aggregation engine.

Folds a trip's terminal-state transition into the two aggregate rows it
affects: the rider's monthly summary and the route's cumulative analytics.

Design notes
------------
- The engine runs inside the caller's unit of work (same AsyncSession as the
  ledger write). Each fold is one SAVEPOINT containing, in this order:
    1. the fold-marker claim on the trip row,
    2. the user_monthly_summaries upsert,
    3. the route_analytics upsert.
  Either all three land or the savepoint is rolled back and none do.
- Each upsert is a single INSERT ... ON CONFLICT DO UPDATE statement. The
  database holds the row lock for the duration of the statement, and the
  average is computed from the post-increment sum and count in that same
  statement, so it can never be derived from a stale count.
- Rows are always acquired summary first, route second. Every fold follows
  the same order, so two folds cannot wait on each other in a cycle.
- Only ``completed`` trips are counted. A ``cancelled`` trip is only marked.
- A conflict (serialization failure, deadlock, lock timeout, SQLite busy)
  rolls back the savepoint and retries just that step with jittered
  exponential backoff, up to ``fold_max_attempts``.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Optional

from sqlalchemy import literal, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.types import Numeric

from ridership_api.config import Settings, get_settings
from ridership_api.errors import InvalidTrip, KeyConflictExhausted
from ridership_api.logging import fold_context, get_logger
from ridership_api.models import RouteAnalytics, Trip, UserMonthlySummary
from ridership_api.models.trips import STATUS_CANCELLED, STATUS_COMPLETED, TERMINAL_STATUSES
from ridership_api.services.aggregation.periods import summary_key

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# PostgreSQL SQLSTATEs that mean "someone else holds this key, try again".
_CONFLICT_SQLSTATES = frozenset(
    {
        "40001",  # serialization_failure
        "40P01",  # deadlock_detected
        "55P03",  # lock_not_available
    }
)

_summaries = UserMonthlySummary.__table__
_route_analytics = RouteAnalytics.__table__


@dataclass(frozen=True)
class TripFacts:
    """Immutable snapshot of the trip fields a fold needs."""

    trip_id: int
    user_id: int
    route_id: int
    trip_date: date
    fare_paid: Decimal
    distance_traveled: Decimal
    trip_status: str

    @classmethod
    def from_trip(cls, trip: Trip) -> TripFacts:
        missing = [
            name
            for name in ("trip_id", "user_id", "route_id", "trip_date", "fare_paid")
            if getattr(trip, name, None) is None
        ]
        if missing:
            msg = f"Trip {getattr(trip, 'trip_id', None)} is missing {', '.join(missing)}"
            raise InvalidTrip(msg)

        fare = Decimal(trip.fare_paid)
        distance = Decimal(trip.distance_traveled) if trip.distance_traveled is not None else Decimal("0")
        if fare < 0:
            msg = f"Trip {trip.trip_id} has negative fare_paid {fare}"
            raise InvalidTrip(msg)
        if distance < 0:
            msg = f"Trip {trip.trip_id} has negative distance_traveled {distance}"
            raise InvalidTrip(msg)

        return cls(
            trip_id=trip.trip_id,
            user_id=trip.user_id,
            route_id=trip.route_id,
            trip_date=trip.trip_date,
            fare_paid=fare,
            distance_traveled=distance,
            trip_status=trip.trip_status,
        )


@dataclass(frozen=True)
class FoldResult:
    """Outcome of delivering one terminal-state event to the engine."""

    trip_id: int
    terminal_state: str
    counted: bool
    already_folded: bool
    attempts: int
    summary_key: tuple[int, int, int] | None = None
    route_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trip_id": self.trip_id,
            "terminal_state": self.terminal_state,
            "counted": self.counted,
            "already_folded": self.already_folded,
            "attempts": self.attempts,
            "summary_key": list(self.summary_key) if self.summary_key else None,
            "route_id": self.route_id,
        }


def is_conflict_error(exc: DBAPIError) -> bool:
    """True when ``exc`` is transient contention rather than a real failure."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _CONFLICT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(orig)


def _dialect_insert(session: AsyncSession) -> Callable[..., Any]:
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    msg = f"Unsupported database dialect for aggregate upserts: {name}"
    raise RuntimeError(msg)


def _true_divide(numerator: Any, denominator: Any) -> Any:
    # SQLite's NUMERIC affinity stores whole sums as integers; force decimal division.
    return (numerator * literal(Decimal("1.0000"), Numeric(12, 4))) / denominator


class AggregationEngine:
    """Applies terminal-state trip events to the aggregate store."""

    def __init__(
        self,
        *,
        max_attempts: Optional[int] = None,
        backoff_base_sec: Optional[float] = None,
        backoff_max_sec: Optional[float] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.max_attempts = max_attempts if max_attempts is not None else settings.fold_max_attempts
        self.backoff_base_sec = (
            backoff_base_sec if backoff_base_sec is not None else settings.fold_backoff_base_sec
        )
        self.backoff_max_sec = (
            backoff_max_sec if backoff_max_sec is not None else settings.fold_backoff_max_sec
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def on_trip_committed(self, session: AsyncSession, trip: Trip) -> FoldResult:
        """Fold a trip that has just reached a terminal state.

        Called by the ledger inside the unit of work that recorded the
        transition. Safe to repeat: a second delivery finds the marker set
        and changes nothing.

        Raises:
            InvalidTrip: trip is missing required fields or is not terminal.
            KeyConflictExhausted: contention outlasted the retry budget.
        """
        facts = TripFacts.from_trip(trip)
        if facts.trip_status not in TERMINAL_STATUSES:
            msg = f"Trip {facts.trip_id} is {facts.trip_status!r}, not in a terminal state"
            raise InvalidTrip(msg)
        with fold_context(facts.trip_id, facts.trip_status):
            return await self._fold_with_retry(session, facts, facts.trip_status)

    async def apply_terminal_event(
        self,
        session: AsyncSession,
        trip_id: int,
        terminal_state: str,
        *,
        expected: Optional[dict[str, Any]] = None,
    ) -> FoldResult:
        """Idempotent fold keyed by (trip_id, terminal_state).

        Intended for at-least-once delivery from an upstream pipeline. The
        ledger row is the source of truth; ``expected`` (event payload fields)
        is cross-checked against it.
        """
        if terminal_state not in TERMINAL_STATUSES:
            msg = f"{terminal_state!r} is not a terminal trip state"
            raise InvalidTrip(msg)

        trip = (
            await session.execute(
                select(Trip)
                .where(Trip.trip_id == trip_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if trip is None:
            msg = f"Trip {trip_id} is not in the ledger"
            raise InvalidTrip(msg)

        facts = TripFacts.from_trip(trip)
        if facts.trip_status != terminal_state:
            msg = (
                f"Trip {trip_id} is {facts.trip_status!r} in the ledger, "
                f"event says {terminal_state!r}"
            )
            raise InvalidTrip(msg)
        if expected:
            _check_payload(facts, expected)

        with fold_context(facts.trip_id, terminal_state):
            return await self._fold_with_retry(session, facts, terminal_state)

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _fold_with_retry(
        self, session: AsyncSession, facts: TripFacts, terminal_state: str
    ) -> FoldResult:
        last_error: DBAPIError | None = None

        for attempt in range(1, self.max_attempts + 1):
            fold_ts = datetime.now(timezone.utc)
            try:
                async with session.begin_nested():
                    claimed = await self._fold_once(session, facts, terminal_state, fold_ts)
            except DBAPIError as exc:
                if not is_conflict_error(exc):
                    raise
                last_error = exc
                if attempt < self.max_attempts:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "Aggregate fold conflicted, retrying",
                        trip_id=facts.trip_id,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        delay_sec=round(delay, 4),
                        error=str(exc.orig),
                    )
                    await asyncio.sleep(delay)
                continue

            counted = claimed and terminal_state == STATUS_COMPLETED
            logger.debug(
                "Trip folded" if counted else "Trip marked without fold",
                trip_id=facts.trip_id,
                terminal_state=terminal_state,
                already_folded=not claimed,
                attempt=attempt,
            )
            return FoldResult(
                trip_id=facts.trip_id,
                terminal_state=terminal_state,
                counted=counted,
                already_folded=not claimed,
                attempts=attempt,
                summary_key=summary_key(facts.user_id, facts.trip_date) if counted else None,
                route_id=facts.route_id if counted else None,
            )

        logger.error(
            "Aggregate fold gave up after repeated conflicts",
            trip_id=facts.trip_id,
            attempts=self.max_attempts,
            error=str(last_error.orig) if last_error else None,
        )
        raise KeyConflictExhausted(facts.trip_id, self.max_attempts) from last_error

    def _backoff_delay(self, attempt: int) -> float:
        ceiling = min(self.backoff_max_sec, self.backoff_base_sec * (2 ** (attempt - 1)))
        return ceiling * random.uniform(0.5, 1.5)

    # ------------------------------------------------------------------
    # Atomic step
    # ------------------------------------------------------------------

    async def _fold_once(
        self,
        session: AsyncSession,
        facts: TripFacts,
        terminal_state: str,
        fold_ts: datetime,
    ) -> bool:
        """Run one fold attempt. Returns False if the trip was already folded."""
        if not await self._claim_marker(session, facts.trip_id, terminal_state, fold_ts):
            return False
        if terminal_state == STATUS_CANCELLED:
            return True

        await self._upsert_monthly_summary(session, facts, fold_ts)
        await self._upsert_route_analytics(session, facts, fold_ts)
        return True

    async def _claim_marker(
        self, session: AsyncSession, trip_id: int, terminal_state: str, fold_ts: datetime
    ) -> bool:
        stmt = (
            update(Trip)
            .where(
                Trip.trip_id == trip_id,
                Trip.trip_status == terminal_state,
                Trip.folded_state.is_(None),
            )
            .values(folded_state=terminal_state, folded_at=fold_ts)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def _upsert_monthly_summary(
        self, session: AsyncSession, facts: TripFacts, fold_ts: datetime
    ) -> None:
        user_id, year, month = summary_key(facts.user_id, facts.trip_date)
        insert = _dialect_insert(session)
        stmt = insert(_summaries).values(
            user_id=user_id,
            year=year,
            month=month,
            total_trips=1,
            total_spent=facts.fare_paid,
            total_distance=facts.distance_traveled,
            avg_trip_cost=facts.fare_paid,
            last_updated=fold_ts,
        )
        new_trips = _summaries.c.total_trips + 1
        new_spent = _summaries.c.total_spent + stmt.excluded.total_spent
        stmt = stmt.on_conflict_do_update(
            index_elements=[_summaries.c.user_id, _summaries.c.year, _summaries.c.month],
            set_={
                "total_trips": new_trips,
                "total_spent": new_spent,
                "total_distance": _summaries.c.total_distance + stmt.excluded.total_distance,
                "avg_trip_cost": _true_divide(new_spent, new_trips),
                "last_updated": stmt.excluded.last_updated,
            },
        )
        await session.execute(stmt)

    async def _upsert_route_analytics(
        self, session: AsyncSession, facts: TripFacts, fold_ts: datetime
    ) -> None:
        insert = _dialect_insert(session)
        stmt = insert(_route_analytics).values(
            route_id=facts.route_id,
            total_trips=1,
            total_revenue=facts.fare_paid,
            last_updated=fold_ts,
        )
        # avg_trips_per_day / peak_usage_hour belong to the periodic job.
        stmt = stmt.on_conflict_do_update(
            index_elements=[_route_analytics.c.route_id],
            set_={
                "total_trips": _route_analytics.c.total_trips + 1,
                "total_revenue": _route_analytics.c.total_revenue + stmt.excluded.total_revenue,
                "last_updated": stmt.excluded.last_updated,
            },
        )
        await session.execute(stmt)


def _check_payload(facts: TripFacts, expected: dict[str, Any]) -> None:
    """Reject an event whose payload disagrees with the ledger row."""
    mismatched: list[str] = []
    for name in ("user_id", "route_id", "trip_date"):
        if name in expected and expected[name] is not None and expected[name] != getattr(facts, name):
            mismatched.append(name)
    if expected.get("fare_paid") is not None and Decimal(str(expected["fare_paid"])) != facts.fare_paid:
        mismatched.append("fare_paid")
    if expected.get("distance_traveled") is not None and (
        Decimal(str(expected["distance_traveled"])) != facts.distance_traveled
    ):
        mismatched.append("distance_traveled")
    if mismatched:
        msg = f"Event for trip {facts.trip_id} disagrees with the ledger on {', '.join(mismatched)}"
        raise InvalidTrip(msg)


# Singleton instance for the app lifecycle
_engine_instance: AggregationEngine | None = None


def get_aggregation_engine() -> AggregationEngine:
    """Get or create the singleton engine instance."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = AggregationEngine()
    return _engine_instance


def reset_aggregation_engine() -> None:
    """Reset the singleton (for testing)."""
    global _engine_instance
    _engine_instance = None
