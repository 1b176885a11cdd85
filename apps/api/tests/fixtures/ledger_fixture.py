"""Ledger test fixture builders: a small reference network and trip payloads."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ridership_api.models import Route, Station, TransportationMode, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

# mode_id -> (name, base_fare, fare_per_mile)
MODES = {
    1: ("Bus", "2.50", "0.15"),
    2: ("Subway", "3.00", "0.20"),
    3: ("Ferry", "5.00", "0.30"),
}

# route_id -> (name, mode_id, distance_miles)
ROUTES = {
    1: ("Red Line North", 2, "8.5"),
    2: ("Bus Route 1", 1, "2.1"),
    3: ("Ferry Service", 3, "3.8"),
}

STATION_IDS = (1, 2, 3)
USER_IDS = tuple(range(1, 11))


async def load_reference_data(session: AsyncSession) -> None:
    """Insert modes, routes, stations and riders 1..10 with fixed ids."""
    session.add_all(
        TransportationMode(
            mode_id=mode_id,
            mode_name=name,
            base_fare=Decimal(base),
            fare_per_mile=Decimal(per_mile),
        )
        for mode_id, (name, base, per_mile) in MODES.items()
    )
    session.add_all(
        Station(station_id=station_id, station_name=f"Station {station_id}")
        for station_id in STATION_IDS
    )
    await session.flush()
    session.add_all(
        Route(
            route_id=route_id,
            route_name=name,
            mode_id=mode_id,
            start_location="A",
            end_location="B",
            distance_miles=Decimal(distance),
        )
        for route_id, (name, mode_id, distance) in ROUTES.items()
    )
    session.add_all(
        User(
            user_id=user_id,
            username=f"rider_{user_id}",
            email=f"rider{user_id}@example.com",
            registration_date=date(2025, 1, 1),
        )
        for user_id in USER_IDS
    )
    await session.flush()


def trip_payload(**overrides: Any) -> dict[str, Any]:
    """A valid completed-trip payload for TripLedger.append."""
    trip_date = overrides.get("trip_date", date(2026, 3, 10))
    hour = overrides.pop("hour", 8)
    payload: dict[str, Any] = {
        "user_id": 1,
        "route_id": 1,
        "start_station_id": 1,
        "end_station_id": 2,
        "trip_date": trip_date,
        "start_time": datetime.combine(trip_date, time(hour, 15), tzinfo=timezone.utc),
        "fare_paid": Decimal("3.00"),
        "distance_traveled": Decimal("4.20"),
        "payment_method": "card",
        "trip_status": "completed",
    }
    payload.update(overrides)
    return payload


def trip_json(**overrides: Any) -> dict[str, Any]:
    """Same as trip_payload, but JSON-serializable for API requests."""
    payload = trip_payload(**overrides)
    out: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, (date, datetime)):
            out[key] = value.isoformat()
        elif isinstance(value, Decimal):
            out[key] = str(value)
        else:
            out[key] = value
    return out
