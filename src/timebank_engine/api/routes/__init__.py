"""API routes."""

from timebank_engine.api.routes.health import router as health_router
from timebank_engine.api.routes.integrations import router as integrations_router
from timebank_engine.api.routes.time_bank import router as time_bank_router
from timebank_engine.api.routes.time_entries import router as time_entries_router

__all__ = [
    "health_router",
    "integrations_router",
    "time_bank_router",
    "time_entries_router",
]
