"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from timebank_engine.timeutils import as_utc

# SQLite returns naive timestamps; responses are always UTC
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


# ============================================================================
# Provider integration schemas
# ============================================================================


class ProviderConfigRequest(BaseModel):
    """Schema for saving the provider connection."""

    api_key: str = ""
    workspace_id: str = ""


class ProviderConfigResponse(BaseModel):
    """Connection config with the credential masked."""

    configured: bool
    workspace_id: str | None = None
    api_key_masked: str | None = None
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None


class UnmappedEmployeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: int
    name: str
    email: str


class ProviderStatusResponse(BaseModel):
    """Sync health and identity-mapping coverage."""

    model_config = ConfigDict(from_attributes=True)

    configured: bool
    workspace_id: str | None = None
    api_key_masked: str | None = None
    last_sync_at: UtcDatetime | None = None
    last_entry_start_at: UtcDatetime | None = None
    last_entry_end_at: UtcDatetime | None = None
    entries_total: int = 0
    entries_last_7_days: int = 0
    entries_running: int = 0
    active_employees: int = 0
    mapped_employees: int = 0
    active_unmapped_employees: int = 0
    unmapped_employees_preview: list[UnmappedEmployeeResponse] = Field(default_factory=list)


class SyncRequest(BaseModel):
    """Schema for triggering a sync pass. Dates are YYYY-MM-DD."""

    start_date: str | None = None
    end_date: str | None = None
    allow_closed_period: bool = False


class SyncSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    range_start: date
    range_end: date
    employees_total: int
    users_found: int
    employees_mapped: int
    entries_processed: int
    entries_upserted: int
    entries_skipped_closed: int
    running_entries: int
    synced_at: UtcDatetime


class IdentityLinkRequest(BaseModel):
    """Schema for pinning an employee to a provider user."""

    employee_id: int = Field(gt=0)
    external_user_id: str


class IdentityLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: int
    employee_name: str | None = None
    external_user_id: str
    external_user_name: str | None = None
    external_user_email: str | None = None
    last_synced_at: UtcDatetime | None = None


# ============================================================================
# Ledger schemas
# ============================================================================


class TimeEntryResponse(BaseModel):
    """One ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    employee_id: int | None = None
    source: str
    external_entry_id: str
    external_user_id: str
    workspace_id: str
    project_id: str | None = None
    task_id: str | None = None
    description: str | None = None
    tag_ids: list[str] | None = None
    start_at: UtcDatetime
    end_at: UtcDatetime | None = None
    duration_seconds: int
    is_running: bool
    billable: bool
    synced_at: UtcDatetime
    created_at: UtcDatetime
    updated_at: UtcDatetime


# ============================================================================
# Time bank schemas
# ============================================================================


class TimeBankSettingsRequest(BaseModel):
    """Partial settings update; omitted fields keep their value."""

    target_daily_minutes: int | None = None
    include_saturday: bool | None = None


class TimeBankSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target_daily_minutes: int
    include_saturday: bool
    updated_at: UtcDatetime | None = None


class EmployeeBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: int
    name: str
    status: str
    hire_date: date | None = None
    termination_date: date | None = None
    worked_seconds: int
    expected_seconds: int
    adjustment_seconds: int
    balance_seconds: int


class BalanceTotalsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    worked_seconds: int
    expected_seconds: int
    adjustment_seconds: int
    balance_seconds: int


class TimeBankSummaryResponse(BaseModel):
    """Per-employee balances and totals over a date range."""

    model_config = ConfigDict(from_attributes=True)

    start_date: date
    end_date: date
    target_daily_minutes: int
    include_saturday: bool
    employees: list[EmployeeBalanceResponse]
    totals: BalanceTotalsResponse


class AdjustmentCreate(BaseModel):
    """Schema for creating an adjustment; give seconds or minutes, not both."""

    employee_id: int
    effective_date: str
    seconds_delta: int | None = None
    minutes_delta: int | None = None
    reason: str | None = None


class NoteRequest(BaseModel):
    """Optional free-text note for decisions and reopen."""

    note: str | None = None


class AdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    employee_id: int
    employee_name: str
    effective_date: date
    seconds_delta: int
    status: str
    reason: str | None = None
    review_note: str | None = None
    created_by: int | None = None
    reviewed_by: int | None = None
    reviewed_at: UtcDatetime | None = None
    created_at: UtcDatetime


class CloseRequest(BaseModel):
    """Schema for closing a period. Dates are YYYY-MM-DD."""

    start_date: str = ""
    end_date: str = ""
    note: str | None = None


class ClosureResponse(BaseModel):
    """Closure with aggregated snapshot totals."""

    id: int
    tenant_id: int
    period_start: date
    period_end: date
    status: str
    note: str | None = None
    closed_at: UtcDatetime | None = None
    closed_by: int | None = None
    reopened_at: UtcDatetime | None = None
    reopened_by: int | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    employees_count: int
    total_worked_seconds: int
    total_expected_seconds: int
    total_adjustment_seconds: int
    total_balance_seconds: int


class ClosureItemResponse(BaseModel):
    """Frozen per-employee snapshot row."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: int
    employee_name: str
    worked_seconds: int
    expected_seconds: int
    adjustment_seconds: int
    balance_seconds: int


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
