"""Trip ledger model."""

from __future__ import annotations

from datetime import date, datetime  # noqa: TC003 - SQLAlchemy needs these at runtime
from decimal import Decimal  # noqa: TC003
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ridership_api.models.base import Base

STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_IN_PROGRESS = "in_progress"

TRIP_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_IN_PROGRESS)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)
PAYMENT_METHODS = ("card", "mobile", "cash")


class Trip(Base):
    """One ride recorded in the ledger.

    Immutable once recorded except for the single in_progress -> terminal
    transition (trip_status, end_time) and the fold marker columns, which the
    aggregation engine sets in the same savepoint as its aggregate upserts.
    """

    __tablename__ = "trips"
    __mapper_args__ = {"eager_defaults": True}

    trip_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.user_id"), nullable=False)
    route_id: Mapped[int] = mapped_column(Integer, ForeignKey("routes.route_id"), nullable=False)
    start_station_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("stations.station_id"), nullable=True
    )
    end_station_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("stations.station_id"), nullable=True
    )
    trip_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fare_paid: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default="card", server_default="card"
    )
    trip_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=STATUS_COMPLETED, server_default=STATUS_COMPLETED
    )
    distance_traveled: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    # Fold marker: which terminal state the engine has already applied.
    folded_state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    folded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_trips_user_date", "user_id", "trip_date"),
        Index("ix_trips_route_date", "route_id", "trip_date"),
        Index("ix_trips_date", "trip_date"),
        Index("ix_trips_start_time", "start_time"),
        Index("ix_trips_payment_method", "payment_method", "trip_date"),
        CheckConstraint("fare_paid >= 0", name="ck_trips_fare_paid"),
        CheckConstraint(
            "distance_traveled IS NULL OR distance_traveled >= 0",
            name="ck_trips_distance",
        ),
        CheckConstraint(
            "trip_status IN ('completed', 'cancelled', 'in_progress')",
            name="ck_trips_status",
        ),
        CheckConstraint(
            "payment_method IN ('card', 'mobile', 'cash')", name="ck_trips_payment_method"
        ),
        CheckConstraint(
            "folded_state IS NULL OR folded_state IN ('completed', 'cancelled')",
            name="ck_trips_folded_state",
        ),
        CheckConstraint(
            "trip_status <> 'completed' OR start_time IS NOT NULL",
            name="ck_trips_completed_start_time",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.trip_status in TERMINAL_STATUSES
