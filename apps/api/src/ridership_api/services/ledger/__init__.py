"""Trip ledger: recording, terminal transitions, retention."""

from ridership_api.services.ledger.ledger import TripLedger, get_ledger
from ridership_api.services.ledger.maintenance import cleanup
from ridership_api.services.ledger.schemas import TripCompletedEvent, TripCreate

__all__ = [
    "TripCompletedEvent",
    "TripCreate",
    "TripLedger",
    "cleanup",
    "get_ledger",
]
