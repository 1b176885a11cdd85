"""Initial schema: network reference data, riders, trip ledger, aggregates.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Transportation modes and their fare schedule
    op.create_table(
        "transportation_modes",
        sa.Column("mode_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("mode_name", sa.String(30), nullable=False),
        sa.Column("base_fare", sa.Numeric(5, 2), nullable=False),
        sa.Column("fare_per_mile", sa.Numeric(4, 2), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("mode_id"),
        sa.UniqueConstraint("mode_name"),
    )

    op.create_table(
        "routes",
        sa.Column("route_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("route_name", sa.String(100), nullable=False),
        sa.Column("mode_id", sa.Integer(), nullable=True),
        sa.Column("start_location", sa.String(100), nullable=False),
        sa.Column("end_location", sa.String(100), nullable=False),
        sa.Column("distance_miles", sa.Numeric(6, 2), nullable=True),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.PrimaryKeyConstraint("route_id"),
        sa.ForeignKeyConstraint(["mode_id"], ["transportation_modes.mode_id"]),
        sa.CheckConstraint(
            "status IN ('active', 'maintenance', 'discontinued')", name="ck_routes_status"
        ),
    )
    op.create_index("ix_routes_mode", "routes", ["mode_id"])

    op.create_table(
        "stations",
        sa.Column("station_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("station_name", sa.String(100), nullable=False),
        sa.Column("latitude", sa.Numeric(10, 8), nullable=True),
        sa.Column("longitude", sa.Numeric(11, 8), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(50), nullable=True),
        sa.Column("state", sa.String(20), nullable=True),
        sa.Column("zip_code", sa.String(10), nullable=True),
        sa.PrimaryKeyConstraint("station_id"),
    )
    op.create_index("ix_stations_location", "stations", ["latitude", "longitude"])

    op.create_table(
        "route_stations",
        sa.Column("route_id", sa.Integer(), nullable=False),
        sa.Column("station_id", sa.Integer(), nullable=False),
        sa.Column("stop_order", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("route_id", "station_id"),
        sa.ForeignKeyConstraint(["route_id"], ["routes.route_id"]),
        sa.ForeignKeyConstraint(["station_id"], ["stations.station_id"]),
    )

    op.create_table(
        "users",
        sa.Column("user_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(15), nullable=True),
        sa.Column("registration_date", sa.Date(), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column(
            "preferred_payment_method", sa.String(20), nullable=False, server_default="card"
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.PrimaryKeyConstraint("user_id"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint(
            "status IN ('active', 'suspended', 'inactive')", name="ck_users_status"
        ),
    )

    # Trip ledger
    op.create_table(
        "trips",
        sa.Column("trip_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("route_id", sa.Integer(), nullable=False),
        sa.Column("start_station_id", sa.Integer(), nullable=True),
        sa.Column("end_station_id", sa.Integer(), nullable=True),
        sa.Column("trip_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fare_paid", sa.Numeric(6, 2), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default="card"),
        sa.Column("trip_status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("distance_traveled", sa.Numeric(6, 2), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("folded_state", sa.String(20), nullable=True),
        sa.Column("folded_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("trip_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"]),
        sa.ForeignKeyConstraint(["route_id"], ["routes.route_id"]),
        sa.ForeignKeyConstraint(["start_station_id"], ["stations.station_id"]),
        sa.ForeignKeyConstraint(["end_station_id"], ["stations.station_id"]),
        sa.CheckConstraint("fare_paid >= 0", name="ck_trips_fare_paid"),
        sa.CheckConstraint(
            "distance_traveled IS NULL OR distance_traveled >= 0", name="ck_trips_distance"
        ),
        sa.CheckConstraint(
            "trip_status IN ('completed', 'cancelled', 'in_progress')", name="ck_trips_status"
        ),
        sa.CheckConstraint(
            "payment_method IN ('card', 'mobile', 'cash')", name="ck_trips_payment_method"
        ),
        sa.CheckConstraint(
            "folded_state IS NULL OR folded_state IN ('completed', 'cancelled')",
            name="ck_trips_folded_state",
        ),
        sa.CheckConstraint(
            "trip_status <> 'completed' OR start_time IS NOT NULL",
            name="ck_trips_completed_start_time",
        ),
    )
    op.create_index("ix_trips_user_date", "trips", ["user_id", "trip_date"])
    op.create_index("ix_trips_route_date", "trips", ["route_id", "trip_date"])
    op.create_index("ix_trips_date", "trips", ["trip_date"])
    op.create_index("ix_trips_start_time", "trips", ["start_time"])
    op.create_index("ix_trips_payment_method", "trips", ["payment_method", "trip_date"])

    # Aggregates maintained from the ledger
    op.create_table(
        "user_monthly_summaries",
        sa.Column("summary_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("total_trips", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("total_distance", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("avg_trip_cost", sa.Numeric(10, 4), nullable=False, server_default="0"),
        sa.Column("most_used_mode", sa.String(30), nullable=True),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("summary_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"]),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_user_monthly_summaries_period"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_ums_month"),
        sa.CheckConstraint("total_trips >= 0", name="ck_ums_total_trips"),
        sa.CheckConstraint("total_spent >= 0", name="ck_ums_total_spent"),
        sa.CheckConstraint("total_distance >= 0", name="ck_ums_total_distance"),
    )
    op.create_index(
        "ix_user_monthly_summaries_user_period",
        "user_monthly_summaries",
        ["user_id", "year", "month"],
    )

    op.create_table(
        "route_analytics",
        sa.Column("route_id", sa.Integer(), nullable=False),
        sa.Column("total_trips", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_revenue", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("avg_trips_per_day", sa.Numeric(8, 2), nullable=True),
        sa.Column("peak_usage_hour", sa.Integer(), nullable=True),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("route_id"),
        sa.ForeignKeyConstraint(["route_id"], ["routes.route_id"]),
        sa.CheckConstraint("total_trips >= 0", name="ck_ra_total_trips"),
        sa.CheckConstraint("total_revenue >= 0", name="ck_ra_total_revenue"),
        sa.CheckConstraint(
            "peak_usage_hour IS NULL OR (peak_usage_hour BETWEEN 0 AND 23)",
            name="ck_ra_peak_usage_hour",
        ),
    )

    op.create_table(
        "agg_run_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lookback_days", sa.Integer, nullable=False),
        sa.Column("routes_updated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("summaries_updated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="running"),
        sa.Column("error_message", sa.Text, nullable=False, server_default=""),
    )
    op.create_index("ix_agg_run_log_started_at", "agg_run_log", ["started_at"])


def downgrade() -> None:
    op.drop_index("ix_agg_run_log_started_at", table_name="agg_run_log")
    op.drop_table("agg_run_log")
    op.drop_table("route_analytics")
    op.drop_index("ix_user_monthly_summaries_user_period", table_name="user_monthly_summaries")
    op.drop_table("user_monthly_summaries")
    op.drop_index("ix_trips_payment_method", table_name="trips")
    op.drop_index("ix_trips_start_time", table_name="trips")
    op.drop_index("ix_trips_date", table_name="trips")
    op.drop_index("ix_trips_route_date", table_name="trips")
    op.drop_index("ix_trips_user_date", table_name="trips")
    op.drop_table("trips")
    op.drop_table("users")
    op.drop_table("route_stations")
    op.drop_index("ix_stations_location", table_name="stations")
    op.drop_table("stations")
    op.drop_index("ix_routes_mode", table_name="routes")
    op.drop_table("routes")
    op.drop_table("transportation_modes")
