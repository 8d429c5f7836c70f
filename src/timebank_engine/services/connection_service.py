"""Provider connection configuration and sync status."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timebank_engine.database import upsert
from timebank_engine.exceptions import ValidationError
from timebank_engine.models import (
    Employee,
    EmployeeStatus,
    IdentityLink,
    ProviderConnection,
    TimeEntry,
)
from timebank_engine.provider.client import ClockifyClient
from timebank_engine.timeutils import as_utc, day_start, today_utc, utcnow

logger = logging.getLogger(__name__)

UNMAPPED_PREVIEW_LIMIT = 20


def mask_secret(value: str | None) -> str:
    """Mask a credential, keeping the first and last four characters."""
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 8) + value[-4:]


@dataclass
class UnmappedEmployee:
    employee_id: int
    name: str
    email: str


@dataclass
class ProviderStatus:
    configured: bool
    workspace_id: str | None = None
    api_key_masked: str | None = None
    last_sync_at: datetime | None = None
    last_entry_start_at: datetime | None = None
    last_entry_end_at: datetime | None = None
    entries_total: int = 0
    entries_last_7_days: int = 0
    entries_running: int = 0
    active_employees: int = 0
    mapped_employees: int = 0
    active_unmapped_employees: int = 0
    unmapped_employees_preview: list[UnmappedEmployee] = field(default_factory=list)


class ConnectionService:
    """Reads and writes the per-tenant provider connection."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, tenant_id: int) -> ProviderConnection | None:
        return await self.session.get(ProviderConnection, tenant_id, populate_existing=True)

    async def require(self, tenant_id: int) -> ProviderConnection:
        connection = await self.get(tenant_id)
        if connection is None:
            raise ValidationError("clockify is not configured")
        return connection

    async def list_all(self) -> list[ProviderConnection]:
        """Every configured tenant, in tenant order."""
        result = await self.session.execute(
            select(ProviderConnection).order_by(ProviderConnection.tenant_id)
        )
        return list(result.scalars().all())

    async def save(
        self,
        tenant_id: int,
        api_key: str,
        workspace_id: str,
        client_factory: Callable[[str], ClockifyClient],
        actor_id: int | None = None,
    ) -> ProviderConnection:
        """Validate the credential against the provider, then persist it.

        Raises:
            ValidationError: Missing key or workspace
            ProviderError: The provider rejected the credential or failed
        """
        api_key = (api_key or "").strip()
        workspace_id = (workspace_id or "").strip()
        if not api_key:
            raise ValidationError("clockify api_key is required")
        if not workspace_id:
            raise ValidationError("clockify workspace_id is required")

        async with client_factory(api_key) as client:
            await client.list_users(workspace_id)

        now = utcnow()
        stmt = upsert(self.session, ProviderConnection.__table__).values(
            tenant_id=tenant_id,
            workspace_id=workspace_id,
            api_key=api_key,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id"],
            set_={
                "workspace_id": stmt.excluded.workspace_id,
                "api_key": stmt.excluded.api_key,
                "updated_by": stmt.excluded.updated_by,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

        logger.info(
            "Provider connection saved for tenant %s (workspace %s)", tenant_id, workspace_id
        )
        return await self.require(tenant_id)

    async def status(self, tenant_id: int) -> ProviderStatus:
        """Connection health and mapping coverage for the tenant."""
        connection = await self.get(tenant_id)
        if connection is None:
            return ProviderStatus(configured=False)

        agg = (
            await self.session.execute(
                select(
                    func.max(TimeEntry.synced_at),
                    func.max(TimeEntry.start_at),
                    func.max(TimeEntry.end_at),
                    func.count(TimeEntry.id),
                ).where(TimeEntry.tenant_id == tenant_id)
            )
        ).one()
        running = await self.session.scalar(
            select(func.count(TimeEntry.id))
            .where(TimeEntry.tenant_id == tenant_id)
            .where(TimeEntry.is_running.is_(True))
        )
        last_7_days = await self.session.scalar(
            select(func.count(TimeEntry.id))
            .where(TimeEntry.tenant_id == tenant_id)
            .where(TimeEntry.start_at >= day_start(today_utc() - timedelta(days=7)))
        )
        mapped = await self.session.scalar(
            select(func.count(IdentityLink.id)).where(IdentityLink.tenant_id == tenant_id)
        )

        active = (
            select(Employee)
            .where(Employee.tenant_id == tenant_id)
            .where(Employee.status != EmployeeStatus.TERMINATED)
        )
        active_count = await self.session.scalar(
            select(func.count()).select_from(active.subquery())
        )
        unmapped = active.outerjoin(
            IdentityLink,
            (IdentityLink.tenant_id == Employee.tenant_id)
            & (IdentityLink.employee_id == Employee.id),
        ).where(IdentityLink.id.is_(None))
        unmapped_count = await self.session.scalar(
            select(func.count()).select_from(unmapped.subquery())
        )
        preview = await self.session.execute(
            unmapped.order_by(Employee.name, Employee.id).limit(UNMAPPED_PREVIEW_LIMIT)
        )

        return ProviderStatus(
            configured=True,
            workspace_id=connection.workspace_id,
            api_key_masked=mask_secret(connection.api_key),
            last_sync_at=as_utc(agg[0]),
            last_entry_start_at=as_utc(agg[1]),
            last_entry_end_at=as_utc(agg[2]),
            entries_total=int(agg[3] or 0),
            entries_last_7_days=int(last_7_days or 0),
            entries_running=int(running or 0),
            active_employees=int(active_count or 0),
            mapped_employees=int(mapped or 0),
            active_unmapped_employees=int(unmapped_count or 0),
            unmapped_employees_preview=[
                UnmappedEmployee(emp.id, emp.name, emp.email or "")
                for emp in preview.scalars().all()
            ],
        )
