"""Business logic services."""

from timebank_engine.services.adjustment_service import AdjustmentService, parse_delta
from timebank_engine.services.closure_service import ClosureService, ClosureWithTotals
from timebank_engine.services.connection_service import ConnectionService, mask_secret
from timebank_engine.services.identity_linker import IdentityLinker
from timebank_engine.services.ingestor import EntryIngestor, SyncSummary, sync_tenant
from timebank_engine.services.ledger_service import LedgerService, LedgerSummary
from timebank_engine.services.scheduler import AutoSyncScheduler, next_run_at_utc_hour
from timebank_engine.services.state_machine import (
    AdjustmentStateMachine,
    AdjustmentStatus,
    ClosureStateMachine,
    ClosureStatus,
    InvalidTransitionError,
)

__all__ = [
    "AdjustmentService",
    "parse_delta",
    "ClosureService",
    "ClosureWithTotals",
    "ConnectionService",
    "mask_secret",
    "IdentityLinker",
    "EntryIngestor",
    "SyncSummary",
    "sync_tenant",
    "LedgerService",
    "LedgerSummary",
    "AutoSyncScheduler",
    "next_run_at_utc_hour",
    "AdjustmentStateMachine",
    "AdjustmentStatus",
    "ClosureStateMachine",
    "ClosureStatus",
    "InvalidTransitionError",
]
