"""Transit network reference data: modes, routes, stations."""

from __future__ import annotations

from decimal import Decimal  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[Decimal]
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridership_api.models.base import Base


class TransportationMode(Base):
    """A kind of service (bus, subway, ferry, ...) with its fare schedule."""

    __tablename__ = "transportation_modes"

    mode_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mode_name: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    base_fare: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    fare_per_mile: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    routes: Mapped[list[Route]] = relationship("Route", back_populates="mode")


class Route(Base):
    """Transit route."""

    __tablename__ = "routes"

    route_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    route_name: Mapped[str] = mapped_column(String(100), nullable=False)
    mode_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("transportation_modes.mode_id"), nullable=True
    )
    start_location: Mapped[str] = mapped_column(String(100), nullable=False)
    end_location: Mapped[str] = mapped_column(String(100), nullable=False)
    distance_miles: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active", server_default="active"
    )

    mode: Mapped[Optional[TransportationMode]] = relationship(
        "TransportationMode", back_populates="routes"
    )

    __table_args__ = (
        Index("ix_routes_mode", "mode_id"),
        CheckConstraint(
            "status IN ('active', 'maintenance', 'discontinued')",
            name="ck_routes_status",
        ),
    )


class Station(Base):
    """Transit stop/station."""

    __tablename__ = "stations"

    station_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    station_name: Mapped[str] = mapped_column(String(100), nullable=False)
    latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8), nullable=True)
    longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    __table_args__ = (Index("ix_stations_location", "latitude", "longitude"),)


class RouteStation(Base):
    """Ordered membership of a station on a route."""

    __tablename__ = "route_stations"

    route_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("routes.route_id"), primary_key=True
    )
    station_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stations.station_id"), primary_key=True
    )
    stop_order: Mapped[int] = mapped_column(Integer, nullable=False)
