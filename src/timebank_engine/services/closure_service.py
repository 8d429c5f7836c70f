"""Closure manager: locking and reopening time-bank periods."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timebank_engine.database import acquire_tenant_lock
from timebank_engine.exceptions import (
    NotFoundError,
    PeriodClosedError,
    PeriodOverlapError,
    ValidationError,
)
from timebank_engine.models import TimeBankClosure, TimeBankClosureItem
from timebank_engine.services.common import CLOSURE_LOCK_SCOPE, clamp_limit, normalize_note
from timebank_engine.services.ledger_service import BalanceTotals, LedgerService
from timebank_engine.services.state_machine import ClosureStateMachine, ClosureStatus
from timebank_engine.timeutils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 30
MAX_LIST_LIMIT = 200


@dataclass
class ClosureWithTotals:
    """A closure plus aggregated snapshot totals."""

    closure: TimeBankClosure
    employees_count: int
    totals: BalanceTotals


class ClosureService:
    """Service for period closures.

    The overlap check and the closure write run in one transaction under an
    exclusive per-tenant lock, so two concurrent closes cannot both pass the
    check. Ledger and adjustment writers take the same lock shared.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Lock state
    # =========================================================================

    async def is_date_closed(self, tenant_id: int, target: date) -> bool:
        """Check if ``target`` falls inside any closed period."""
        count = await self.session.scalar(
            select(func.count())
            .select_from(TimeBankClosure)
            .where(TimeBankClosure.tenant_id == tenant_id)
            .where(TimeBankClosure.status == ClosureStatus.CLOSED.value)
            .where(TimeBankClosure.period_start <= target)
            .where(TimeBankClosure.period_end >= target)
        )
        return bool(count)

    async def ensure_date_open(self, tenant_id: int, target: date) -> None:
        if await self.is_date_closed(tenant_id, target):
            raise PeriodClosedError()

    async def closed_periods(self, tenant_id: int) -> list[tuple[date, date]]:
        """All closed ``(start, end)`` ranges for the tenant."""
        result = await self.session.execute(
            select(TimeBankClosure.period_start, TimeBankClosure.period_end)
            .where(TimeBankClosure.tenant_id == tenant_id)
            .where(TimeBankClosure.status == ClosureStatus.CLOSED.value)
        )
        return [(start, end) for start, end in result.all()]

    async def has_overlap(
        self,
        tenant_id: int,
        start: date,
        end: date,
        ignore_id: int | None = None,
    ) -> bool:
        """Check if another closed period intersects ``[start, end]``."""
        stmt = (
            select(func.count())
            .select_from(TimeBankClosure)
            .where(TimeBankClosure.tenant_id == tenant_id)
            .where(TimeBankClosure.status == ClosureStatus.CLOSED.value)
            .where(~((TimeBankClosure.period_end < start) | (TimeBankClosure.period_start > end)))
        )
        if ignore_id is not None:
            stmt = stmt.where(TimeBankClosure.id != ignore_id)
        return bool(await self.session.scalar(stmt))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(
        self,
        tenant_id: int,
        start: date,
        end: date,
        note: str | None = None,
        actor_id: int | None = None,
        now: datetime | None = None,
    ) -> ClosureWithTotals:
        """Close ``[start, end]`` and snapshot every employee's balance.

        Re-closing the exact same range reuses its row and replaces the
        snapshot wholesale.
        """
        if end < start:
            raise ValidationError("end_date must be >= start_date")
        now = now or utcnow()

        await acquire_tenant_lock(self.session, tenant_id, CLOSURE_LOCK_SCOPE)

        closure = await self.session.scalar(
            select(TimeBankClosure)
            .where(TimeBankClosure.tenant_id == tenant_id)
            .where(TimeBankClosure.period_start == start)
            .where(TimeBankClosure.period_end == end)
        )
        if await self.has_overlap(tenant_id, start, end, closure.id if closure else None):
            raise PeriodOverlapError()

        summary = await LedgerService(self.session).summary(tenant_id, start, end, now=now)

        if closure is None:
            closure = TimeBankClosure(
                tenant_id=tenant_id,
                period_start=start,
                period_end=end,
                created_at=now,
                updated_at=now,
            )
            self.session.add(closure)
        elif closure.status != ClosureStatus.CLOSED:
            ClosureStateMachine.validate_transition(closure.status, ClosureStatus.CLOSED)

        closure.status = ClosureStatus.CLOSED.value
        closure.note = normalize_note(note)
        closure.closed_at = now
        closure.closed_by = actor_id
        closure.reopened_at = None
        closure.reopened_by = None
        closure.updated_at = now
        await self.session.flush()

        await self.session.execute(
            delete(TimeBankClosureItem)
            .where(TimeBankClosureItem.tenant_id == tenant_id)
            .where(TimeBankClosureItem.closure_id == closure.id)
        )
        for item in summary.employees:
            self.session.add(
                TimeBankClosureItem(
                    tenant_id=tenant_id,
                    closure_id=closure.id,
                    employee_id=item.employee_id,
                    employee_name=item.name,
                    worked_seconds=item.worked_seconds,
                    expected_seconds=item.expected_seconds,
                    adjustment_seconds=item.adjustment_seconds,
                    balance_seconds=item.balance_seconds,
                )
            )
        await self.session.flush()

        logger.info(
            "Closed period %s..%s for tenant %s (closure %s, %d employees)",
            start,
            end,
            tenant_id,
            closure.id,
            len(summary.employees),
        )
        return await self.get(tenant_id, closure.id)

    async def reopen(
        self,
        tenant_id: int,
        closure_id: int,
        note: str | None = None,
        actor_id: int | None = None,
        now: datetime | None = None,
    ) -> ClosureWithTotals:
        """Reopen a closed period, keeping its snapshot as history."""
        await acquire_tenant_lock(self.session, tenant_id, CLOSURE_LOCK_SCOPE)

        closure = await self._get_closure(tenant_id, closure_id)
        ClosureStateMachine.validate_transition(closure.status, ClosureStatus.REOPENED)

        now = now or utcnow()
        closure.status = ClosureStatus.REOPENED.value
        closure.note = normalize_note(note) or closure.note
        closure.reopened_at = now
        closure.reopened_by = actor_id
        closure.updated_at = now
        await self.session.flush()

        logger.info("Reopened closure %s for tenant %s", closure_id, tenant_id)
        return await self.get(tenant_id, closure_id)

    # =========================================================================
    # Reads
    # =========================================================================

    def _with_totals(self):
        return (
            select(
                TimeBankClosure,
                func.count(TimeBankClosureItem.id),
                func.coalesce(func.sum(TimeBankClosureItem.worked_seconds), 0),
                func.coalesce(func.sum(TimeBankClosureItem.expected_seconds), 0),
                func.coalesce(func.sum(TimeBankClosureItem.adjustment_seconds), 0),
                func.coalesce(func.sum(TimeBankClosureItem.balance_seconds), 0),
            )
            .outerjoin(
                TimeBankClosureItem,
                (TimeBankClosureItem.closure_id == TimeBankClosure.id)
                & (TimeBankClosureItem.tenant_id == TimeBankClosure.tenant_id),
            )
            .group_by(TimeBankClosure.id)
        )

    @staticmethod
    def _row_to_view(row) -> ClosureWithTotals:
        closure, count, worked, expected, adjustment, balance = row
        return ClosureWithTotals(
            closure=closure,
            employees_count=int(count),
            totals=BalanceTotals(int(worked), int(expected), int(adjustment), int(balance)),
        )

    async def _get_closure(self, tenant_id: int, closure_id: int) -> TimeBankClosure:
        closure = await self.session.scalar(
            select(TimeBankClosure)
            .where(TimeBankClosure.tenant_id == tenant_id)
            .where(TimeBankClosure.id == closure_id)
        )
        if closure is None:
            raise NotFoundError("time bank closure not found")
        return closure

    async def get(self, tenant_id: int, closure_id: int) -> ClosureWithTotals:
        result = await self.session.execute(
            self._with_totals()
            .where(TimeBankClosure.tenant_id == tenant_id)
            .where(TimeBankClosure.id == closure_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundError("time bank closure not found")
        return self._row_to_view(row)

    async def list_closures(
        self, tenant_id: int, limit: int | None = None
    ) -> list[ClosureWithTotals]:
        """List closures, latest period first."""
        result = await self.session.execute(
            self._with_totals()
            .where(TimeBankClosure.tenant_id == tenant_id)
            .order_by(TimeBankClosure.period_end.desc(), TimeBankClosure.id.desc())
            .limit(clamp_limit(limit, DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT))
        )
        return [self._row_to_view(row) for row in result.all()]

    async def items(self, tenant_id: int, closure_id: int) -> list[TimeBankClosureItem]:
        """Frozen per-employee snapshot for a closure."""
        await self._get_closure(tenant_id, closure_id)
        result = await self.session.execute(
            select(TimeBankClosureItem)
            .where(TimeBankClosureItem.tenant_id == tenant_id)
            .where(TimeBankClosureItem.closure_id == closure_id)
            .order_by(TimeBankClosureItem.employee_name, TimeBankClosureItem.employee_id)
        )
        return list(result.scalars().all())

    async def export_to_csv(self, tenant_id: int, closure_id: int) -> str:
        """Export a closure snapshot to CSV.

        Returns CSV content as a string.
        """
        closure = await self._get_closure(tenant_id, closure_id)
        items = await self.items(tenant_id, closure_id)

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "period_start",
            "period_end",
            "employee_id",
            "employee_name",
            "worked_seconds",
            "expected_seconds",
            "adjustment_seconds",
            "balance_seconds",
        ])
        for item in items:
            writer.writerow([
                closure.period_start.isoformat(),
                closure.period_end.isoformat(),
                item.employee_id,
                item.employee_name,
                item.worked_seconds,
                item.expected_seconds,
                item.adjustment_seconds,
                item.balance_seconds,
            ])
        return output.getvalue()
