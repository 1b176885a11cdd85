"""Inbound trip events from the upstream pipeline (at-least-once delivery)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from ridership_api.database import unit_of_work
from ridership_api.logging import bind_request_context, get_logger
from ridership_api.models.trips import STATUS_COMPLETED
from ridership_api.routers.trips import FoldResponse
from ridership_api.services.aggregation.engine import get_aggregation_engine
from ridership_api.services.ledger.schemas import TripCompletedEvent

logger = get_logger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.post(
    "/trip-completed",
    response_model=FoldResponse,
    summary="Deliver a TripCompleted event",
    description=(
        "Folds a completed trip into the monthly summary and route analytics. "
        "Idempotent per trip_id: redelivery returns already_folded=true and "
        "changes nothing. A 503 means contention outlasted the retry budget "
        "and the event should be redelivered later."
    ),
)
async def trip_completed(event: TripCompletedEvent) -> Any:
    bind_request_context(trip_id=event.trip_id)
    engine = get_aggregation_engine()
    async with unit_of_work() as session:
        result = await engine.apply_terminal_event(
            session,
            event.trip_id,
            STATUS_COMPLETED,
            expected=event.model_dump(exclude={"trip_id"}),
        )
    if result.already_folded:
        logger.info("Duplicate TripCompleted event ignored", trip_id=event.trip_id)
    return result.to_dict()
