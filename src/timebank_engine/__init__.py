"""Time-tracking reconciliation and time-bank ledger engine."""

__version__ = "0.1.0"
