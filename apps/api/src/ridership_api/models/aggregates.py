"""Derived aggregate rows maintained from the trip ledger."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]
from decimal import Decimal  # noqa: TC003
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ridership_api.models.base import Base


class UserMonthlySummary(Base):
    """Running usage totals for one rider in one calendar month."""

    __tablename__ = "user_monthly_summaries"

    summary_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.user_id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    total_trips: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    total_spent: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=0, server_default="0"
    )
    total_distance: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=0, server_default="0"
    )
    avg_trip_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 4), nullable=False, default=0, server_default="0"
    )
    # Best-effort; recomputed by the periodic job, never by the per-event fold.
    most_used_mode: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_user_monthly_summaries_period"),
        Index("ix_user_monthly_summaries_user_period", "user_id", "year", "month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_ums_month"),
        CheckConstraint("total_trips >= 0", name="ck_ums_total_trips"),
        CheckConstraint("total_spent >= 0", name="ck_ums_total_spent"),
        CheckConstraint("total_distance >= 0", name="ck_ums_total_distance"),
    )


class RouteAnalytics(Base):
    """Cumulative per-route totals plus periodically recomputed usage stats."""

    __tablename__ = "route_analytics"

    route_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("routes.route_id"), primary_key=True
    )
    # Owned by the per-event fold.
    total_trips: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    total_revenue: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=0, server_default="0"
    )
    # Owned by the periodic analytics job.
    avg_trips_per_day: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)
    peak_usage_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("total_trips >= 0", name="ck_ra_total_trips"),
        CheckConstraint("total_revenue >= 0", name="ck_ra_total_revenue"),
        CheckConstraint(
            "peak_usage_hour IS NULL OR (peak_usage_hour BETWEEN 0 AND 23)",
            name="ck_ra_peak_usage_hour",
        ),
    )


class AggRunLog(Base):
    """Record of a single periodic analytics job run."""

    __tablename__ = "agg_run_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    lookback_days: Mapped[int] = mapped_column(Integer, nullable=False)
    routes_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    summaries_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="running")
    error_message: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (Index("ix_agg_run_log_started_at", "started_at"),)
