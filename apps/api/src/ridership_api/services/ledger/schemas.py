"""Validated input shapes for the trip ledger."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

PaymentMethod = Literal["card", "mobile", "cash"]
TripStatus = Literal["completed", "cancelled", "in_progress"]


class TripCreate(BaseModel):
    """A trip as submitted to ``TripLedger.append``."""

    model_config = ConfigDict(extra="forbid")

    user_id: int = Field(ge=1)
    route_id: int = Field(ge=1)
    start_station_id: Optional[int] = Field(default=None, ge=1)
    end_station_id: Optional[int] = Field(default=None, ge=1)
    trip_date: date
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    fare_paid: Decimal = Field(ge=0, max_digits=6, decimal_places=2)
    distance_traveled: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=6, decimal_places=2
    )
    payment_method: PaymentMethod = "card"
    trip_status: TripStatus = "completed"

    @model_validator(mode="after")
    def _check_times(self) -> TripCreate:
        if self.trip_status == "completed" and self.start_time is None:
            msg = "start_time is required for a completed trip"
            raise ValueError(msg)
        if self.trip_status == "in_progress" and self.end_time is not None:
            msg = "an in_progress trip cannot have an end_time"
            raise ValueError(msg)
        if (
            self.start_time is not None
            and self.end_time is not None
            and self.end_time < self.start_time
        ):
            msg = "end_time precedes start_time"
            raise ValueError(msg)
        return self


class TripCompletedEvent(BaseModel):
    """Inbound at-least-once event announcing that a trip completed."""

    trip_id: int = Field(ge=1)
    user_id: int = Field(ge=1)
    route_id: int = Field(ge=1)
    trip_date: date
    fare_paid: Decimal = Field(ge=0)
    distance_traveled: Optional[Decimal] = Field(default=None, ge=0)
