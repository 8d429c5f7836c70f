"""Time-bank endpoints: settings, balances, adjustments and closures."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status
from fastapi.responses import Response

from timebank_engine.api.dependencies import ActorId, DbSession, TenantId
from timebank_engine.api.schemas import (
    AdjustmentCreate,
    AdjustmentResponse,
    ClosureItemResponse,
    ClosureResponse,
    CloseRequest,
    ErrorResponse,
    NoteRequest,
    TimeBankSettingsRequest,
    TimeBankSettingsResponse,
    TimeBankSummaryResponse,
)
from timebank_engine.exceptions import ValidationError
from timebank_engine.services.adjustment_service import AdjustmentService, AdjustmentView
from timebank_engine.services.closure_service import ClosureService, ClosureWithTotals
from timebank_engine.services.ledger_service import LedgerService
from timebank_engine.timeutils import parse_date, report_range

router = APIRouter(prefix="/time-bank", tags=["time-bank"])

CONFLICT_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _adjustment_response(view: AdjustmentView) -> AdjustmentResponse:
    adjustment = view.adjustment
    return AdjustmentResponse(
        id=adjustment.id,
        tenant_id=adjustment.tenant_id,
        employee_id=adjustment.employee_id,
        employee_name=view.employee_name,
        effective_date=adjustment.effective_date,
        seconds_delta=adjustment.seconds_delta,
        status=adjustment.status,
        reason=adjustment.reason,
        review_note=adjustment.review_note,
        created_by=adjustment.created_by,
        reviewed_by=adjustment.reviewed_by,
        reviewed_at=adjustment.reviewed_at,
        created_at=adjustment.created_at,
    )


def _closure_response(view: ClosureWithTotals) -> ClosureResponse:
    closure = view.closure
    return ClosureResponse(
        id=closure.id,
        tenant_id=closure.tenant_id,
        period_start=closure.period_start,
        period_end=closure.period_end,
        status=closure.status,
        note=closure.note,
        closed_at=closure.closed_at,
        closed_by=closure.closed_by,
        reopened_at=closure.reopened_at,
        reopened_by=closure.reopened_by,
        created_at=closure.created_at,
        updated_at=closure.updated_at,
        employees_count=view.employees_count,
        total_worked_seconds=view.totals.worked_seconds,
        total_expected_seconds=view.totals.expected_seconds,
        total_adjustment_seconds=view.totals.adjustment_seconds,
        total_balance_seconds=view.totals.balance_seconds,
    )


# ============================================================================
# Settings
# ============================================================================


@router.get("/settings", response_model=TimeBankSettingsResponse)
async def get_settings(db: DbSession, tenant_id: TenantId) -> TimeBankSettingsResponse:
    """Get the tenant's settings, or the defaults when never saved."""
    settings = await LedgerService(db).get_settings(tenant_id)
    return TimeBankSettingsResponse.model_validate(settings)


@router.put(
    "/settings",
    response_model=TimeBankSettingsResponse,
    responses={400: {"model": ErrorResponse}},
)
async def update_settings(
    db: DbSession,
    tenant_id: TenantId,
    actor_id: ActorId,
    payload: TimeBankSettingsRequest,
) -> TimeBankSettingsResponse:
    settings = await LedgerService(db).update_settings(
        tenant_id,
        target_daily_minutes=payload.target_daily_minutes,
        include_saturday=payload.include_saturday,
        actor_id=actor_id,
    )
    await db.commit()
    return TimeBankSettingsResponse.model_validate(settings)


# ============================================================================
# Summary
# ============================================================================


@router.get(
    "/summary",
    response_model=TimeBankSummaryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def get_summary(
    db: DbSession,
    tenant_id: TenantId,
    start_date: Annotated[str | None, Query()] = None,
    end_date: Annotated[str | None, Query()] = None,
) -> TimeBankSummaryResponse:
    """Worked, expected, adjustment and balance seconds per employee."""
    start, end = report_range(start_date, end_date)
    summary = await LedgerService(db).summary(tenant_id, start, end)
    return TimeBankSummaryResponse.model_validate(summary)


# ============================================================================
# Adjustments
# ============================================================================


@router.get(
    "/adjustments",
    response_model=list[AdjustmentResponse],
    responses={400: {"model": ErrorResponse}},
)
async def list_adjustments(
    db: DbSession,
    tenant_id: TenantId,
    employee_id: Annotated[int | None, Query(gt=0)] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    start_date: Annotated[str | None, Query()] = None,
    end_date: Annotated[str | None, Query()] = None,
    limit: Annotated[int | None, Query(gt=0)] = None,
) -> list[AdjustmentResponse]:
    start, end = report_range(start_date, end_date)
    views = await AdjustmentService(db).list_adjustments(
        tenant_id,
        start,
        end,
        employee_id=employee_id,
        status=status_filter,
        limit=limit,
    )
    return [_adjustment_response(view) for view in views]


@router.post(
    "/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=CONFLICT_ERRORS,
)
async def create_adjustment(
    db: DbSession,
    tenant_id: TenantId,
    actor_id: ActorId,
    payload: AdjustmentCreate,
) -> AdjustmentResponse:
    """Create a pending adjustment; the date must not be in a closed period."""
    view = await AdjustmentService(db).create(
        tenant_id,
        payload.employee_id,
        parse_date(payload.effective_date, "effective_date"),
        seconds_delta=payload.seconds_delta,
        minutes_delta=payload.minutes_delta,
        reason=payload.reason,
        actor_id=actor_id,
    )
    await db.commit()
    return _adjustment_response(view)


@router.post(
    "/adjustments/{adjustment_id}/approve",
    response_model=AdjustmentResponse,
    responses=CONFLICT_ERRORS,
)
async def approve_adjustment(
    db: DbSession,
    tenant_id: TenantId,
    actor_id: ActorId,
    adjustment_id: Annotated[int, Path(gt=0)],
    payload: NoteRequest | None = None,
) -> AdjustmentResponse:
    view = await AdjustmentService(db).approve(
        tenant_id,
        adjustment_id,
        note=payload.note if payload else None,
        actor_id=actor_id,
    )
    await db.commit()
    return _adjustment_response(view)


@router.post(
    "/adjustments/{adjustment_id}/reject",
    response_model=AdjustmentResponse,
    responses=CONFLICT_ERRORS,
)
async def reject_adjustment(
    db: DbSession,
    tenant_id: TenantId,
    actor_id: ActorId,
    adjustment_id: Annotated[int, Path(gt=0)],
    payload: NoteRequest | None = None,
) -> AdjustmentResponse:
    view = await AdjustmentService(db).reject(
        tenant_id,
        adjustment_id,
        note=payload.note if payload else None,
        actor_id=actor_id,
    )
    await db.commit()
    return _adjustment_response(view)


# ============================================================================
# Closures
# ============================================================================


@router.post(
    "/closures/close",
    response_model=ClosureResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def close_period(
    db: DbSession,
    tenant_id: TenantId,
    actor_id: ActorId,
    payload: CloseRequest,
) -> ClosureResponse:
    """Lock a period and snapshot every employee's balance."""
    if not payload.start_date.strip():
        raise ValidationError("start_date is required")
    if not payload.end_date.strip():
        raise ValidationError("end_date is required")
    start = parse_date(payload.start_date, "start_date")
    end = parse_date(payload.end_date, "end_date")

    view = await ClosureService(db).close(
        tenant_id, start, end, note=payload.note, actor_id=actor_id
    )
    await db.commit()
    return _closure_response(view)


@router.get("/closures", response_model=list[ClosureResponse])
async def list_closures(
    db: DbSession,
    tenant_id: TenantId,
    limit: Annotated[int | None, Query(gt=0)] = None,
) -> list[ClosureResponse]:
    views = await ClosureService(db).list_closures(tenant_id, limit)
    return [_closure_response(view) for view in views]


@router.post(
    "/closures/{closure_id}/reopen",
    response_model=ClosureResponse,
    responses=CONFLICT_ERRORS,
)
async def reopen_closure(
    db: DbSession,
    tenant_id: TenantId,
    actor_id: ActorId,
    closure_id: Annotated[int, Path(gt=0)],
    payload: NoteRequest | None = None,
) -> ClosureResponse:
    """Reopen a closed period. The snapshot is kept."""
    view = await ClosureService(db).reopen(
        tenant_id,
        closure_id,
        note=payload.note if payload else None,
        actor_id=actor_id,
    )
    await db.commit()
    return _closure_response(view)


@router.get(
    "/closures/{closure_id}/employees",
    response_model=list[ClosureItemResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_closure_items(
    db: DbSession,
    tenant_id: TenantId,
    closure_id: Annotated[int, Path(gt=0)],
) -> list[ClosureItemResponse]:
    items = await ClosureService(db).items(tenant_id, closure_id)
    return [ClosureItemResponse.model_validate(item) for item in items]


@router.get(
    "/closures/{closure_id}/export.csv",
    response_class=Response,
    responses={404: {"model": ErrorResponse}},
)
async def export_closure_csv(
    db: DbSession,
    tenant_id: TenantId,
    closure_id: Annotated[int, Path(gt=0)],
) -> Response:
    content = await ClosureService(db).export_to_csv(tenant_id, closure_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="time-bank-closure-{closure_id}.csv"'
        },
    )
