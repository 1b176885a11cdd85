"""Sample data generator.

Loads the reference network (modes, stations, routes), a population of
riders, and a few months of trips. Trips go through the ledger, so the
monthly summaries and route analytics are built by the same fold that
serves live traffic.

Usage:
    python -m ridership_api.seed --users 500 --trips 12000 --days 180
"""

from __future__ import annotations

import argparse
import asyncio
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Optional, Sequence

from sqlalchemy import func, select

from ridership_api.config import get_settings
from ridership_api.database import create_engine_for_url, make_session_factory, unit_of_work
from ridership_api.logging import get_logger, setup_logging
from ridership_api.models import Base, Route, Station, TransportationMode, User
from ridership_api.models.trips import (
    PAYMENT_METHODS,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
)
from ridership_api.services.aggregation.periodic import PeriodicAnalyticsJob
from ridership_api.services.ledger.ledger import TripLedger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

MAX_FARE = Decimal("15.00")
BATCH_SIZE = 500

# (mode_name, base_fare, fare_per_mile, description)
MODES = [
    ("Bus", "2.50", "0.15", "City bus service with multiple routes"),
    ("Subway", "3.00", "0.20", "Underground rail system"),
    ("Light Rail", "3.50", "0.25", "Above-ground electric rail"),
    ("Ferry", "5.00", "0.30", "Water transportation service"),
    ("Commuter Rail", "4.00", "0.35", "Regional train service"),
]

# (station_name, latitude, longitude, city, state)
STATIONS = [
    ("Downtown Central", "42.3601", "-71.0589", "Boston", "MA"),
    ("North Station", "42.3665", "-71.0615", "Boston", "MA"),
    ("South Station", "42.3519", "-71.0552", "Boston", "MA"),
    ("Back Bay", "42.3487", "-71.0753", "Boston", "MA"),
    ("Harvard Square", "42.3736", "-71.1190", "Cambridge", "MA"),
    ("MIT", "42.3596", "-71.0935", "Cambridge", "MA"),
    ("Airport Terminal", "42.3656", "-71.0096", "Boston", "MA"),
    ("Fenway", "42.3467", "-71.0972", "Boston", "MA"),
]

# (route_name, mode_name, start_location, end_location, distance_miles, minutes)
ROUTES = [
    ("Red Line North", "Subway", "South Station", "Harvard Square", "8.5", 25),
    ("Blue Line", "Subway", "Downtown Central", "Airport Terminal", "6.2", 18),
    ("Green Line B", "Light Rail", "Downtown Central", "Boston College", "12.3", 35),
    ("Bus Route 1", "Bus", "Harvard Square", "MIT", "2.1", 12),
    ("Commuter Rail North", "Commuter Rail", "North Station", "Lowell", "25.4", 45),
    ("Ferry Service", "Ferry", "Downtown Central", "Logan Airport", "3.8", 20),
]

# Relative weight of each start hour; commuter peaks in the morning and evening.
HOUR_WEIGHTS = [
    1, 1, 1, 1, 1, 2,
    4, 9, 10, 6, 4, 4,
    5, 4, 4, 5, 8, 10,
    9, 5, 4, 3, 2, 1,
]


@dataclass(frozen=True)
class RouteFare:
    route_id: int
    base_fare: Decimal
    fare_per_mile: Decimal
    distance_miles: Decimal


def compute_fare(route: RouteFare, rng: random.Random) -> Decimal:
    """base fare plus a random share of the distance charge, capped at MAX_FARE."""
    fare = route.base_fare + Decimal(str(rng.random())) * route.fare_per_mile * route.distance_miles
    return min(fare, MAX_FARE).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def random_trip(
    rng: random.Random,
    *,
    user_ids: Sequence[int],
    routes: Sequence[RouteFare],
    station_ids: Sequence[int],
    today: date,
    days: int,
    in_progress_share: float = 0.1,
) -> dict[str, Any]:
    """One plausible trip payload for TripLedger.append."""
    route = rng.choice(routes)
    start_station, end_station = rng.sample(list(station_ids), 2)
    trip_date = today - timedelta(days=rng.randint(0, days))
    hour = rng.choices(range(24), weights=HOUR_WEIGHTS)[0]
    start_time = datetime.combine(
        trip_date, time(hour, rng.randint(0, 59), rng.randint(0, 59)), tzinfo=timezone.utc
    )
    distance = Decimal(str(rng.uniform(0.5, float(route.distance_miles)))).quantize(Decimal("0.01"))

    status = STATUS_IN_PROGRESS if rng.random() < in_progress_share else STATUS_COMPLETED
    return {
        "user_id": rng.choice(user_ids),
        "route_id": route.route_id,
        "start_station_id": start_station,
        "end_station_id": end_station,
        "trip_date": trip_date,
        "start_time": start_time,
        "end_time": None if status == STATUS_IN_PROGRESS else start_time + timedelta(minutes=rng.randint(5, 60)),
        "fare_paid": compute_fare(route, rng),
        "distance_traveled": distance,
        "payment_method": rng.choice(PAYMENT_METHODS),
        "trip_status": status,
    }


async def seed_reference_data(session: AsyncSession) -> None:
    """Insert modes, stations and routes unless they are already present."""
    existing = (await session.execute(select(func.count()).select_from(TransportationMode))).scalar_one()
    if existing:
        logger.info("Reference data already present, skipping", modes=existing)
        return

    modes = {
        name: TransportationMode(
            mode_name=name,
            base_fare=Decimal(base),
            fare_per_mile=Decimal(per_mile),
            description=description,
        )
        for name, base, per_mile, description in MODES
    }
    session.add_all(modes.values())
    session.add_all(
        Station(
            station_name=name,
            latitude=Decimal(lat),
            longitude=Decimal(lon),
            city=city,
            state=state,
        )
        for name, lat, lon, city, state in STATIONS
    )
    await session.flush()

    session.add_all(
        Route(
            route_name=name,
            mode_id=modes[mode_name].mode_id,
            start_location=start,
            end_location=end,
            distance_miles=Decimal(distance),
            estimated_duration_minutes=minutes,
        )
        for name, mode_name, start, end, distance, minutes in ROUTES
    )
    await session.flush()
    logger.info("Reference data loaded", modes=len(MODES), stations=len(STATIONS), routes=len(ROUTES))


async def seed_users(
    session: AsyncSession, count: int, rng: random.Random, today: date, days: int
) -> None:
    offset = (await session.execute(select(func.count()).select_from(User))).scalar_one()
    session.add_all(
        User(
            username=f"user_{n}",
            email=f"user{n}@email.com",
            phone=f"555-{n % 10000:04d}00",
            registration_date=today - timedelta(days=rng.randint(0, days)),
            preferred_payment_method=rng.choice(PAYMENT_METHODS),
        )
        for n in range(offset + 1, offset + count + 1)
    )
    await session.flush()
    logger.info("Users created", count=count)


async def _load_choices(
    session: AsyncSession,
) -> tuple[list[int], list[RouteFare], list[int]]:
    user_ids = list((await session.execute(select(User.user_id))).scalars().all())
    station_ids = list((await session.execute(select(Station.station_id))).scalars().all())
    route_rows = await session.execute(
        select(
            Route.route_id,
            TransportationMode.base_fare,
            TransportationMode.fare_per_mile,
            Route.distance_miles,
        ).join(TransportationMode, TransportationMode.mode_id == Route.mode_id)
    )
    routes = [
        RouteFare(
            route_id=row.route_id,
            base_fare=Decimal(row.base_fare),
            fare_per_mile=Decimal(row.fare_per_mile or 0),
            distance_miles=Decimal(row.distance_miles or 1),
        )
        for row in route_rows
    ]
    return user_ids, routes, station_ids


async def seed_trips(
    session_factory: async_sessionmaker[AsyncSession],
    count: int,
    rng: random.Random,
    today: date,
    days: int,
    *,
    cancel_share: float = 0.25,
) -> dict[str, int]:
    """Append ``count`` trips, resolving in-progress ones as completed or cancelled."""
    ledger = TripLedger()
    async with session_factory() as session:
        user_ids, routes, station_ids = await _load_choices(session)
    if not user_ids or not routes or len(station_ids) < 2:
        msg = "Seed users and reference data before trips"
        raise RuntimeError(msg)

    counts = {"completed": 0, "cancelled": 0}
    remaining = count
    while remaining > 0:
        batch = min(BATCH_SIZE, remaining)
        async with unit_of_work(session_factory) as session:
            for _ in range(batch):
                payload = random_trip(
                    rng,
                    user_ids=user_ids,
                    routes=routes,
                    station_ids=station_ids,
                    today=today,
                    days=days,
                )
                trip_id = await ledger.append(session, payload)
                if payload["trip_status"] == STATUS_COMPLETED:
                    counts["completed"] += 1
                    continue

                end_time = payload["start_time"] + timedelta(minutes=rng.randint(5, 60))
                if rng.random() < cancel_share:
                    await ledger.cancel(session, trip_id, end_time)
                    counts["cancelled"] += 1
                else:
                    await ledger.complete(session, trip_id, end_time)
                    counts["completed"] += 1
        remaining -= batch
        logger.info("Trip batch committed", batch=batch, remaining=remaining)
    return counts


async def run(
    *,
    users: int,
    trips: int,
    days: int,
    seed: Optional[int] = None,
    database_url: Optional[str] = None,
    create_schema: bool = False,
    analytics: bool = True,
) -> dict[str, Any]:
    settings = get_settings()
    engine = create_engine_for_url(database_url or settings.database_url)
    factory = make_session_factory(engine)
    rng = random.Random(seed)
    today = date.today()

    try:
        if create_schema:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        async with unit_of_work(factory) as session:
            await seed_reference_data(session)
            await seed_users(session, users, rng, today, days)

        counts = await seed_trips(factory, trips, rng, today, days)

        report: dict[str, Any] = {"users": users, **counts}
        if analytics:
            job = PeriodicAnalyticsJob(session_factory=factory)
            report["analytics"] = await job.run(lookback_days=days, today=today)
        return report
    finally:
        await engine.dispose()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Load sample riders and trips.")
    parser.add_argument("--users", type=int, default=settings.seed_users, help="Riders to create")
    parser.add_argument("--trips", type=int, default=settings.seed_trips, help="Trips to append")
    parser.add_argument(
        "--days", type=int, default=settings.seed_days, help="Spread trips over this many past days"
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable data")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create tables from the models first (local SQLite only; use Alembic elsewhere)",
    )
    parser.add_argument(
        "--skip-analytics", action="store_true", help="Do not run the periodic job afterwards"
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()
    report = asyncio.run(
        run(
            users=args.users,
            trips=args.trips,
            days=args.days,
            seed=args.seed,
            database_url=args.database_url,
            create_schema=args.create_schema,
            analytics=not args.skip_analytics,
        )
    )
    logger.info("Seed complete", **{k: v for k, v in report.items() if k != "analytics"})


if __name__ == "__main__":
    main()
