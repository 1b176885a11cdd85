"""Ridership Usage API: trip ledger and incrementally maintained usage aggregates."""

__version__ = "0.1.0"
