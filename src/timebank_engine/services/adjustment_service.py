"""Adjustment workflow: manual balance corrections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timebank_engine.database import acquire_tenant_lock
from timebank_engine.exceptions import NotFoundError, ValidationError
from timebank_engine.models import Employee, TimeBankAdjustment
from timebank_engine.services.closure_service import ClosureService
from timebank_engine.services.common import CLOSURE_LOCK_SCOPE, clamp_limit, normalize_note
from timebank_engine.services.state_machine import AdjustmentStateMachine, AdjustmentStatus
from timebank_engine.timeutils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 30
MAX_LIST_LIMIT = 200


def parse_delta(seconds_delta: int | None, minutes_delta: int | None) -> int:
    """Resolve the signed delta in seconds; exactly one unit must be given."""
    if seconds_delta is not None and minutes_delta is not None:
        raise ValidationError("seconds_delta and minutes_delta cannot be used together")
    if seconds_delta is not None:
        delta = seconds_delta
    elif minutes_delta is not None:
        delta = minutes_delta * 60
    else:
        raise ValidationError("seconds_delta or minutes_delta is required")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    return delta


@dataclass
class AdjustmentView:
    adjustment: TimeBankAdjustment
    employee_name: str


class AdjustmentService:
    """Creates and decides time-bank adjustments.

    Writes hold the closure lock shared so a concurrent close either sees
    the adjustment or the adjustment sees the closed period.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.closures = ClosureService(session)

    async def create(
        self,
        tenant_id: int,
        employee_id: int,
        effective_date: date,
        *,
        seconds_delta: int | None = None,
        minutes_delta: int | None = None,
        reason: str | None = None,
        actor_id: int | None = None,
        now: datetime | None = None,
    ) -> AdjustmentView:
        """Create a pending adjustment.

        Raises:
            ValidationError: Bad or missing delta, or a non-positive employee id
            PeriodClosedError: Effective date is inside a closed period
            NotFoundError: Employee unknown for the tenant
        """
        if employee_id <= 0:
            raise ValidationError("invalid employee id")
        delta = parse_delta(seconds_delta, minutes_delta)

        await acquire_tenant_lock(self.session, tenant_id, CLOSURE_LOCK_SCOPE, shared=True)
        await self.closures.ensure_date_open(tenant_id, effective_date)

        employee = await self._get_employee(tenant_id, employee_id)

        now = now or utcnow()
        adjustment = TimeBankAdjustment(
            tenant_id=tenant_id,
            employee_id=employee_id,
            effective_date=effective_date,
            seconds_delta=delta,
            status=AdjustmentStatus.PENDING.value,
            reason=normalize_note(reason),
            created_by=actor_id,
            created_at=now,
        )
        self.session.add(adjustment)
        await self.session.flush()

        logger.info(
            "Created adjustment %s for employee %s (%+ds on %s)",
            adjustment.id,
            employee_id,
            delta,
            effective_date,
        )
        return AdjustmentView(adjustment, employee.name)

    async def approve(self, tenant_id: int, adjustment_id: int, **kwargs) -> AdjustmentView:
        return await self.decide(tenant_id, adjustment_id, AdjustmentStatus.APPROVED, **kwargs)

    async def reject(self, tenant_id: int, adjustment_id: int, **kwargs) -> AdjustmentView:
        return await self.decide(tenant_id, adjustment_id, AdjustmentStatus.REJECTED, **kwargs)

    async def decide(
        self,
        tenant_id: int,
        adjustment_id: int,
        target: AdjustmentStatus,
        *,
        note: str | None = None,
        actor_id: int | None = None,
        now: datetime | None = None,
    ) -> AdjustmentView:
        """Move a pending adjustment to approved or rejected.

        Deciding is refused while the effective date sits in a closed
        period; the period must be reopened first.
        """
        await acquire_tenant_lock(self.session, tenant_id, CLOSURE_LOCK_SCOPE, shared=True)

        view = await self.get(tenant_id, adjustment_id)
        adjustment = view.adjustment
        AdjustmentStateMachine.validate_transition(adjustment.status, target)
        await self.closures.ensure_date_open(tenant_id, adjustment.effective_date)

        adjustment.status = target.value
        adjustment.review_note = normalize_note(note)
        adjustment.reviewed_by = actor_id
        adjustment.reviewed_at = now or utcnow()
        await self.session.flush()

        logger.info("Adjustment %s %s by %s", adjustment_id, target.value, actor_id)
        return view

    async def get(self, tenant_id: int, adjustment_id: int) -> AdjustmentView:
        result = await self.session.execute(
            select(TimeBankAdjustment, Employee.name)
            .join(Employee, Employee.id == TimeBankAdjustment.employee_id)
            .where(TimeBankAdjustment.tenant_id == tenant_id)
            .where(TimeBankAdjustment.id == adjustment_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundError("time bank adjustment not found")
        return AdjustmentView(row[0], row[1])

    async def list_adjustments(
        self,
        tenant_id: int,
        start: date,
        end: date,
        *,
        employee_id: int | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[AdjustmentView]:
        """List adjustments with effective dates in ``[start, end]``, newest first."""
        stmt = (
            select(TimeBankAdjustment, Employee.name)
            .join(Employee, Employee.id == TimeBankAdjustment.employee_id)
            .where(TimeBankAdjustment.tenant_id == tenant_id)
            .where(TimeBankAdjustment.effective_date >= start)
            .where(TimeBankAdjustment.effective_date <= end)
        )
        if employee_id is not None:
            stmt = stmt.where(TimeBankAdjustment.employee_id == employee_id)
        if status:
            status = status.strip().lower()
            if not AdjustmentStateMachine.is_valid_status(status):
                raise ValidationError("adjustment status must be pending|approved|rejected")
            stmt = stmt.where(TimeBankAdjustment.status == status)

        stmt = stmt.order_by(
            TimeBankAdjustment.effective_date.desc(), TimeBankAdjustment.id.desc()
        ).limit(clamp_limit(limit, DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT))

        result = await self.session.execute(stmt)
        return [AdjustmentView(adjustment, name) for adjustment, name in result.all()]

    async def _get_employee(self, tenant_id: int, employee_id: int) -> Employee:
        employee = await self.session.scalar(
            select(Employee)
            .where(Employee.tenant_id == tenant_id)
            .where(Employee.id == employee_id)
        )
        if employee is None:
            raise NotFoundError("employee not found")
        return employee
