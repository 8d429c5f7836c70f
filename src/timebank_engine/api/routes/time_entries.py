"""Ledger read endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from timebank_engine.api.dependencies import DbSession, TenantId
from timebank_engine.api.schemas import ErrorResponse, TimeEntryResponse
from timebank_engine.services.ledger_service import LedgerService
from timebank_engine.timeutils import parse_optional_date

router = APIRouter(prefix="/time-entries", tags=["time-entries"])


@router.get(
    "",
    response_model=list[TimeEntryResponse],
    responses={400: {"model": ErrorResponse}},
)
async def list_time_entries(
    db: DbSession,
    tenant_id: TenantId,
    employee_id: Annotated[int | None, Query(gt=0)] = None,
    start_date: Annotated[str | None, Query()] = None,
    end_date: Annotated[str | None, Query()] = None,
    limit: Annotated[int | None, Query(gt=0)] = None,
) -> list[TimeEntryResponse]:
    """List ledger rows, most recent first (limit 200 by default, at most 1000)."""
    entries = await LedgerService(db).list_entries(
        tenant_id,
        employee_id=employee_id,
        start=parse_optional_date(start_date, "start_date"),
        end=parse_optional_date(end_date, "end_date"),
        limit=limit,
    )
    return [TimeEntryResponse.model_validate(entry) for entry in entries]
