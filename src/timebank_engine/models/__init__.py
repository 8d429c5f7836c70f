"""ORM models for the time-bank engine."""

from timebank_engine.models.base import Base, TenantScopedMixin, TimestampMixin
from timebank_engine.models.employee import Employee, EmployeeStatus
from timebank_engine.models.integration import IdentityLink, ProviderConnection
from timebank_engine.models.time_bank import (
    DEFAULT_TARGET_DAILY_MINUTES,
    MAX_TARGET_DAILY_MINUTES,
    TimeBankAdjustment,
    TimeBankClosure,
    TimeBankClosureItem,
    TimeBankSettings,
)
from timebank_engine.models.time_entry import SOURCE_CLOCKIFY, TimeEntry

__all__ = [
    "Base",
    "TenantScopedMixin",
    "TimestampMixin",
    "Employee",
    "EmployeeStatus",
    "IdentityLink",
    "ProviderConnection",
    "TimeEntry",
    "SOURCE_CLOCKIFY",
    "TimeBankSettings",
    "TimeBankAdjustment",
    "TimeBankClosure",
    "TimeBankClosureItem",
    "DEFAULT_TARGET_DAILY_MINUTES",
    "MAX_TARGET_DAILY_MINUTES",
]
