"""Period ledger: time-bank settings and balance summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timebank_engine.database import upsert
from timebank_engine.exceptions import ValidationError
from timebank_engine.models import (
    DEFAULT_TARGET_DAILY_MINUTES,
    MAX_TARGET_DAILY_MINUTES,
    Employee,
    TimeBankAdjustment,
    TimeBankSettings,
    TimeEntry,
)
from timebank_engine.services.common import clamp_limit
from timebank_engine.services.state_machine import AdjustmentStateMachine
from timebank_engine.timeutils import as_utc, count_workdays, day_end_exclusive, day_start, utcnow

logger = logging.getLogger(__name__)

DEFAULT_ENTRIES_LIMIT = 200
MAX_ENTRIES_LIMIT = 1000
COUNTED_STATUSES = [s.value for s in AdjustmentStateMachine.COUNTS_TOWARD_BALANCE]


@dataclass
class SettingsView:
    """Effective settings for a tenant; defaults when never saved."""

    target_daily_minutes: int = DEFAULT_TARGET_DAILY_MINUTES
    include_saturday: bool = False
    updated_at: datetime | None = None


@dataclass
class EmployeeBalance:
    employee_id: int
    name: str
    status: str
    hire_date: date | None
    termination_date: date | None
    worked_seconds: int = 0
    expected_seconds: int = 0
    adjustment_seconds: int = 0
    balance_seconds: int = 0


@dataclass
class BalanceTotals:
    worked_seconds: int = 0
    expected_seconds: int = 0
    adjustment_seconds: int = 0
    balance_seconds: int = 0

    def add(self, item: EmployeeBalance) -> None:
        self.worked_seconds += item.worked_seconds
        self.expected_seconds += item.expected_seconds
        self.adjustment_seconds += item.adjustment_seconds
        self.balance_seconds += item.balance_seconds


@dataclass
class LedgerSummary:
    start_date: date
    end_date: date
    target_daily_minutes: int
    include_saturday: bool
    employees: list[EmployeeBalance] = field(default_factory=list)
    totals: BalanceTotals = field(default_factory=BalanceTotals)


def expected_seconds_for(
    start: date,
    end: date,
    hire_date: date | None,
    termination_date: date | None,
    target_daily_minutes: int,
    include_saturday: bool,
) -> int:
    """Expected seconds over ``[start, end]`` clipped to the employment window."""
    active_start = max(start, hire_date) if hire_date else start
    active_end = min(end, termination_date) if termination_date else end
    if active_end < active_start:
        return 0
    return count_workdays(active_start, active_end, include_saturday) * target_daily_minutes * 60


class LedgerService:
    """Computes worked/expected/adjustment/balance figures for a tenant."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Settings
    # =========================================================================

    async def get_settings(self, tenant_id: int) -> SettingsView:
        row = await self.session.get(TimeBankSettings, tenant_id, populate_existing=True)
        if row is None:
            return SettingsView()
        return SettingsView(
            target_daily_minutes=row.target_daily_minutes,
            include_saturday=row.include_saturday,
            updated_at=as_utc(row.updated_at),
        )

    async def update_settings(
        self,
        tenant_id: int,
        *,
        target_daily_minutes: int | None = None,
        include_saturday: bool | None = None,
        actor_id: int | None = None,
    ) -> SettingsView:
        """Merge the given fields over the current settings and save."""
        current = await self.get_settings(tenant_id)
        if target_daily_minutes is not None:
            if not 1 <= target_daily_minutes <= MAX_TARGET_DAILY_MINUTES:
                raise ValidationError(
                    f"target_daily_minutes must be between 1 and {MAX_TARGET_DAILY_MINUTES}"
                )
            current.target_daily_minutes = target_daily_minutes
        if include_saturday is not None:
            current.include_saturday = include_saturday

        now = utcnow()
        stmt = upsert(self.session, TimeBankSettings.__table__).values(
            tenant_id=tenant_id,
            target_daily_minutes=current.target_daily_minutes,
            include_saturday=current.include_saturday,
            updated_by=actor_id,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id"],
            set_={
                "target_daily_minutes": stmt.excluded.target_daily_minutes,
                "include_saturday": stmt.excluded.include_saturday,
                "updated_by": stmt.excluded.updated_by,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

        logger.info(
            "Time-bank settings for tenant %s: target=%s include_saturday=%s",
            tenant_id,
            current.target_daily_minutes,
            current.include_saturday,
        )
        return await self.get_settings(tenant_id)

    # =========================================================================
    # Summary
    # =========================================================================

    async def summary(
        self,
        tenant_id: int,
        start: date,
        end: date,
        settings: SettingsView | None = None,
        now: datetime | None = None,
    ) -> LedgerSummary:
        """Build the per-employee balance summary for ``[start, end]``.

        Employees whose employment window overlaps the range are included,
        ordered by name. Running entries count as ``now - start_at``.
        """
        if end < start:
            raise ValidationError("end_date must be >= start_date")
        settings = settings or await self.get_settings(tenant_id)
        now = now or utcnow()

        result = await self.session.execute(
            select(Employee)
            .where(Employee.tenant_id == tenant_id)
            .where(or_(Employee.hire_date.is_(None), Employee.hire_date <= end))
            .where(or_(Employee.termination_date.is_(None), Employee.termination_date >= start))
            .order_by(Employee.name, Employee.id)
        )
        employees = list(result.scalars().all())

        worked = await self._worked_seconds(tenant_id, start, end, now)
        adjustments = await self._adjustment_seconds(tenant_id, start, end)

        summary = LedgerSummary(
            start_date=start,
            end_date=end,
            target_daily_minutes=settings.target_daily_minutes,
            include_saturday=settings.include_saturday,
        )
        for emp in employees:
            item = EmployeeBalance(
                employee_id=emp.id,
                name=emp.name,
                status=emp.status,
                hire_date=emp.hire_date,
                termination_date=emp.termination_date,
                worked_seconds=worked.get(emp.id, 0),
                expected_seconds=expected_seconds_for(
                    start,
                    end,
                    emp.hire_date,
                    emp.termination_date,
                    settings.target_daily_minutes,
                    settings.include_saturday,
                ),
                adjustment_seconds=adjustments.get(emp.id, 0),
            )
            item.balance_seconds = (
                item.worked_seconds + item.adjustment_seconds - item.expected_seconds
            )
            summary.employees.append(item)
            summary.totals.add(item)

        return summary

    async def _worked_seconds(
        self,
        tenant_id: int,
        start: date,
        end: date,
        now: datetime,
    ) -> dict[int, int]:
        window = (
            TimeEntry.tenant_id == tenant_id,
            TimeEntry.employee_id.is_not(None),
            TimeEntry.start_at >= day_start(start),
            TimeEntry.start_at < day_end_exclusive(end),
        )

        result = await self.session.execute(
            select(TimeEntry.employee_id, func.coalesce(func.sum(TimeEntry.duration_seconds), 0))
            .where(*window)
            .where(TimeEntry.is_running.is_(False))
            .group_by(TimeEntry.employee_id)
        )
        worked = {employee_id: int(total) for employee_id, total in result.all()}

        # Running entries are measured live; the stored duration is stale
        result = await self.session.execute(
            select(TimeEntry.employee_id, TimeEntry.start_at)
            .where(*window)
            .where(TimeEntry.is_running.is_(True))
        )
        for employee_id, start_at in result.all():
            elapsed = int((now - as_utc(start_at)).total_seconds())
            worked[employee_id] = worked.get(employee_id, 0) + max(elapsed, 0)

        return worked

    async def _adjustment_seconds(self, tenant_id: int, start: date, end: date) -> dict[int, int]:
        result = await self.session.execute(
            select(
                TimeBankAdjustment.employee_id,
                func.coalesce(func.sum(TimeBankAdjustment.seconds_delta), 0),
            )
            .where(TimeBankAdjustment.tenant_id == tenant_id)
            .where(TimeBankAdjustment.status.in_(COUNTED_STATUSES))
            .where(TimeBankAdjustment.effective_date >= start)
            .where(TimeBankAdjustment.effective_date <= end)
            .group_by(TimeBankAdjustment.employee_id)
        )
        return {employee_id: int(total) for employee_id, total in result.all()}

    # =========================================================================
    # Ledger rows
    # =========================================================================

    async def list_entries(
        self,
        tenant_id: int,
        *,
        employee_id: int | None = None,
        start: date | None = None,
        end: date | None = None,
        limit: int | None = None,
    ) -> list[TimeEntry]:
        """Ledger rows, most recent start first."""
        stmt = select(TimeEntry).where(TimeEntry.tenant_id == tenant_id)
        if employee_id is not None:
            stmt = stmt.where(TimeEntry.employee_id == employee_id)
        if start is not None:
            stmt = stmt.where(TimeEntry.start_at >= day_start(start))
        if end is not None:
            stmt = stmt.where(TimeEntry.start_at < day_end_exclusive(end))
        stmt = stmt.order_by(TimeEntry.start_at.desc(), TimeEntry.id.desc()).limit(
            clamp_limit(limit, DEFAULT_ENTRIES_LIMIT, MAX_ENTRIES_LIMIT)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
