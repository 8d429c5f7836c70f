"""HTTP API for the time-bank engine."""
