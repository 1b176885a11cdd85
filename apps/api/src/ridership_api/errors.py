"""Error taxonomy for the trip ledger and the aggregation engine."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for trip ledger failures."""


class ValidationError(LedgerError):
    """Raised when a trip is malformed and is rejected before it is recorded."""


class TripNotFound(LedgerError):
    """Raised when a trip id does not exist in the ledger."""

    def __init__(self, trip_id: int) -> None:
        self.trip_id = trip_id
        super().__init__(f"Trip {trip_id} not found")


class InvalidTransition(LedgerError):
    """Raised when a trip status change is not in_progress -> completed|cancelled."""

    def __init__(self, trip_id: int, current: str, requested: str) -> None:
        self.trip_id = trip_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Trip {trip_id} cannot transition from {current!r} to {requested!r}"
        )


class AggregationError(Exception):
    """Base class for aggregation engine failures.

    A raised AggregationError always means nothing was applied: the trip's
    folded marker is still unset and the event can be retried.
    """


class KeyConflictExhausted(AggregationError):
    """Raised when contention on an aggregate key outlasts the retry budget."""

    def __init__(self, trip_id: int, attempts: int) -> None:
        self.trip_id = trip_id
        self.attempts = attempts
        super().__init__(
            f"Fold for trip {trip_id} still conflicting after {attempts} attempts"
        )


class InvalidTrip(AggregationError):
    """Raised when a trip reaching the engine lacks required fields or state."""
