"""Trip ledger endpoints: record trips and their terminal transitions."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, Field

from ridership_api.config import get_settings
from ridership_api.database import unit_of_work
from ridership_api.logging import get_logger
from ridership_api.services.ledger.ledger import get_ledger
from ridership_api.services.ledger.schemas import TripCreate

logger = get_logger(__name__)

router = APIRouter(prefix="/trips", tags=["trips"])


# --- Schemas ---


class TripOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trip_id: int
    user_id: int
    route_id: int
    start_station_id: Optional[int] = None
    end_station_id: Optional[int] = None
    trip_date: date
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    fare_paid: Decimal
    distance_traveled: Optional[Decimal] = None
    payment_method: str
    trip_status: str
    folded_state: Optional[str] = None


class TripTransitionRequest(BaseModel):
    end_time: Optional[datetime] = Field(
        default=None,
        description="When the trip ended. Defaults to now.",
    )


class FoldResponse(BaseModel):
    trip_id: int
    terminal_state: str
    counted: bool
    already_folded: bool
    attempts: int
    summary_key: Optional[list[int]] = None
    route_id: Optional[int] = None


class TripListResponse(BaseModel):
    trips: list[TripOut]
    limit: int
    offset: int


# --- Endpoints ---


@router.post("", response_model=TripOut, status_code=201, summary="Record a trip")
async def append_trip(body: TripCreate) -> Any:
    """Append a trip to the ledger.

    A trip recorded as completed is folded into the aggregates in the same
    transaction; an in_progress trip is folded when it completes.
    """
    ledger = get_ledger()
    async with unit_of_work() as session:
        trip_id = await ledger.append(session, body)
        trip = await ledger.get(session, trip_id)
        return TripOut.model_validate(trip)


@router.post(
    "/{trip_id}/complete",
    response_model=FoldResponse,
    summary="Mark an in-progress trip completed",
)
async def complete_trip(trip_id: int, body: Optional[TripTransitionRequest] = None) -> Any:
    ledger = get_ledger()
    end_time = body.end_time if body else None
    async with unit_of_work() as session:
        result = await ledger.complete(session, trip_id, end_time)
    return result.to_dict()


@router.post(
    "/{trip_id}/cancel",
    response_model=FoldResponse,
    summary="Mark an in-progress trip cancelled",
)
async def cancel_trip(trip_id: int, body: Optional[TripTransitionRequest] = None) -> Any:
    ledger = get_ledger()
    end_time = body.end_time if body else None
    async with unit_of_work() as session:
        result = await ledger.cancel(session, trip_id, end_time)
    return result.to_dict()


@router.get("/{trip_id}", response_model=TripOut, summary="Get one trip")
async def get_trip(trip_id: int) -> Any:
    async with unit_of_work() as session:
        trip = await get_ledger().get(session, trip_id)
        return TripOut.model_validate(trip)


@router.get("", response_model=TripListResponse, summary="List trips in a date range")
async def list_trips(
    start_date: date,
    end_date: date,
    user_id: Optional[int] = None,
    route_id: Optional[int] = None,
    status: Optional[Literal["completed", "cancelled", "in_progress"]] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    settings = get_settings()
    limit = min(limit or settings.default_page_size, settings.max_page_size)
    async with unit_of_work() as session:
        trips = await get_ledger().get_by_key_range(
            session,
            start_date=start_date,
            end_date=end_date,
            user_id=user_id,
            route_id=route_id,
            status=status,
            limit=limit,
            offset=offset,
        )
        return {
            "trips": [TripOut.model_validate(t) for t in trips],
            "limit": limit,
            "offset": offset,
        }
