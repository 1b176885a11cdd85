"""Aggregate maintenance: the per-event fold and the periodic recomputation."""

from ridership_api.services.aggregation.engine import (
    AggregationEngine,
    FoldResult,
    get_aggregation_engine,
)
from ridership_api.services.aggregation.periodic import PeriodicAnalyticsJob
from ridership_api.services.aggregation.worker import AnalyticsWorker

__all__ = [
    "AggregationEngine",
    "AnalyticsWorker",
    "FoldResult",
    "PeriodicAnalyticsJob",
    "get_aggregation_engine",
]
