"""SQLAlchemy models for the Ridership Usage API."""

from ridership_api.models.aggregates import AggRunLog, RouteAnalytics, UserMonthlySummary
from ridership_api.models.base import Base
from ridership_api.models.network import Route, RouteStation, Station, TransportationMode
from ridership_api.models.trips import Trip
from ridership_api.models.users import User

__all__ = [
    "AggRunLog",
    "Base",
    "Route",
    "RouteAnalytics",
    "RouteStation",
    "Station",
    "TransportationMode",
    "Trip",
    "User",
    "UserMonthlySummary",
]
