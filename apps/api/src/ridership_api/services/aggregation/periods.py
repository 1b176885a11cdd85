"""Pure-Python period arithmetic and derived-metric helpers.

All functions here are stateless and free of I/O so they can be unit-tested
without a database or settings object.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

# ---------------------------------------------------------------------------
# Aggregate keys
# ---------------------------------------------------------------------------


def summary_key(user_id: int, trip_date: date) -> tuple[int, int, int]:
    """Return the (user_id, year, month) key of the monthly summary a trip folds into."""
    return user_id, trip_date.year, trip_date.month


# ---------------------------------------------------------------------------
# Month arithmetic
# ---------------------------------------------------------------------------


def subtract_months(d: date, months: int) -> date:
    """Return ``d`` shifted back by ``months`` calendar months.

    The day is clamped to the length of the target month, so
    subtract_months(2026-03-31, 1) == 2026-02-28.
    """
    if months < 0:
        msg = "months must be non-negative"
        raise ValueError(msg)
    index = d.year * 12 + (d.month - 1) - months
    year, month0 = divmod(index, 12)
    month = month0 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def retention_cutoff(today: date, retain_months: int) -> date:
    """First date still inside a retention window of ``retain_months``."""
    return subtract_months(today, retain_months)


def month_start(d: date) -> date:
    return d.replace(day=1)


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------

_PER_DAY_QUANT = Decimal("0.01")


def trips_per_day(trip_count: int, active_days: int) -> Decimal | None:
    """Average trips per day with at least one trip, or None with no activity."""
    if active_days <= 0:
        return None
    return (Decimal(trip_count) / active_days).quantize(_PER_DAY_QUANT, rounding=ROUND_HALF_UP)


def pick_peak_hour(hour_counts: Mapping[int, int]) -> int | None:
    """Hour of day with the most trips; ties go to the earliest hour."""
    best_hour: int | None = None
    best_count = 0
    for hour in sorted(hour_counts):
        count = hour_counts[hour]
        if count > best_count:
            best_hour, best_count = hour, count
    return best_hour


def pick_most_used(mode_counts: Mapping[str, int]) -> str | None:
    """Mode name with the most trips; ties go to the alphabetically first name."""
    if not mode_counts:
        return None
    return min(mode_counts, key=lambda name: (-mode_counts[name], name))


# ---------------------------------------------------------------------------
# Read-side labels
# ---------------------------------------------------------------------------


def usage_category(total_trips: int) -> str:
    """Bucket a route by cumulative trip count."""
    if total_trips > 1000:
        return "High Usage"
    if total_trips > 500:
        return "Medium Usage"
    return "Low Usage"


def revenue_per_trip(total_revenue: Decimal, total_trips: int) -> Decimal | None:
    if total_trips <= 0:
        return None
    return (Decimal(total_revenue) / total_trips).quantize(_PER_DAY_QUANT, rounding=ROUND_HALF_UP)
