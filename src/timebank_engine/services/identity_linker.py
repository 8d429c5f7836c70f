"""Identity linker: provider users to internal employees."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timebank_engine.database import upsert
from timebank_engine.exceptions import NotFoundError, ValidationError
from timebank_engine.models import Employee, EmployeeStatus, IdentityLink
from timebank_engine.provider.base import ExternalUser
from timebank_engine.timeutils import utcnow

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _nullable(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


@dataclass(frozen=True)
class ResolvedLink:
    """One external user resolved to an employee during a sync pass."""

    external_user_id: str
    employee_id: int
    by_email: bool = False


class IdentityLinker:
    """Resolves and persists provider user ↔ employee links for a tenant.

    Resolution order per external user:
    1. An existing persisted link for the external id wins outright.
    2. Otherwise a case-insensitive, trimmed email match against an active
       employee who is not already linked to a different external user.

    Users with neither are skipped for the pass.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def active_employees(self, tenant_id: int) -> list[Employee]:
        result = await self.session.execute(
            select(Employee)
            .where(Employee.tenant_id == tenant_id)
            .where(Employee.status != EmployeeStatus.TERMINATED)
            .order_by(Employee.id)
        )
        return list(result.scalars().all())

    async def existing_links(self, tenant_id: int) -> list[IdentityLink]:
        result = await self.session.execute(
            select(IdentityLink).where(IdentityLink.tenant_id == tenant_id)
        )
        return list(result.scalars().all())

    async def resolve(
        self,
        tenant_id: int,
        users: list[ExternalUser],
        employees: list[Employee],
    ) -> list[ResolvedLink]:
        """Resolve ``users`` and upsert every resulting link.

        Returns one entry per linked external user, in provider order.
        """
        links = await self.existing_links(tenant_id)
        linked_by_user = {link.external_user_id: link.employee_id for link in links}
        user_by_employee = {link.employee_id: link.external_user_id for link in links}

        employee_by_email: dict[str, int] = {}
        for emp in employees:
            email = normalize_email(emp.email)
            if email:
                employee_by_email[email] = emp.id

        now = utcnow()
        resolved: list[ResolvedLink] = []
        for user in users:
            external_id = user.id.strip()
            if not external_id:
                continue

            employee_id = linked_by_user.get(external_id)
            by_email = False
            if employee_id is None:
                email = normalize_email(user.email)
                if not email:
                    continue
                employee_id = employee_by_email.get(email)
                if employee_id is None:
                    continue
                owner = user_by_employee.get(employee_id)
                if owner is not None and owner != external_id:
                    logger.debug(
                        "Employee %s already linked to %s; not linking %s by email",
                        employee_id,
                        owner,
                        external_id,
                    )
                    continue
                by_email = True

            await self._upsert_link(tenant_id, employee_id, user, now)
            linked_by_user[external_id] = employee_id
            user_by_employee[employee_id] = external_id
            resolved.append(ResolvedLink(external_id, employee_id, by_email))

        return resolved

    async def _upsert_link(
        self,
        tenant_id: int,
        employee_id: int,
        user: ExternalUser,
        now: datetime,
    ) -> None:
        stmt = upsert(self.session, IdentityLink.__table__).values(
            tenant_id=tenant_id,
            employee_id=employee_id,
            external_user_id=user.id.strip(),
            external_user_name=_nullable(user.name),
            external_user_email=_nullable(user.email),
            last_synced_at=now,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "external_user_id"],
            set_={
                "employee_id": stmt.excluded.employee_id,
                "external_user_name": stmt.excluded.external_user_name,
                "external_user_email": stmt.excluded.external_user_email,
                "last_synced_at": stmt.excluded.last_synced_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)

    # =========================================================================
    # Manual configuration
    # =========================================================================

    async def list_links(self, tenant_id: int) -> list[tuple[IdentityLink, str]]:
        """Return links with the linked employee's name, ordered by name."""
        result = await self.session.execute(
            select(IdentityLink, Employee.name)
            .join(Employee, Employee.id == IdentityLink.employee_id)
            .where(IdentityLink.tenant_id == tenant_id)
            .order_by(Employee.name, IdentityLink.employee_id)
        )
        return [(link, name) for link, name in result.all()]

    async def set_link(
        self,
        tenant_id: int,
        employee_id: int,
        external_user_id: str,
    ) -> IdentityLink:
        """Pin an employee to an external user.

        Any existing link for either side is replaced. Sync passes never
        overwrite a pinned link.
        """
        external_user_id = external_user_id.strip()
        if not external_user_id:
            raise ValidationError("external_user_id is required")

        employee = await self.session.scalar(
            select(Employee)
            .where(Employee.tenant_id == tenant_id)
            .where(Employee.id == employee_id)
        )
        if employee is None:
            raise NotFoundError("employee not found")

        await self.session.execute(
            delete(IdentityLink)
            .where(IdentityLink.tenant_id == tenant_id)
            .where(
                or_(
                    IdentityLink.employee_id == employee_id,
                    IdentityLink.external_user_id == external_user_id,
                )
            )
        )
        link = IdentityLink(
            tenant_id=tenant_id,
            employee_id=employee_id,
            external_user_id=external_user_id,
        )
        self.session.add(link)
        await self.session.flush()
        await self.session.refresh(link)
        logger.info(
            "Linked employee %s to external user %s for tenant %s",
            employee_id,
            external_user_id,
            tenant_id,
        )
        return link

    async def remove_link(self, tenant_id: int, employee_id: int) -> None:
        result = await self.session.execute(
            delete(IdentityLink)
            .where(IdentityLink.tenant_id == tenant_id)
            .where(IdentityLink.employee_id == employee_id)
        )
        if result.rowcount == 0:
            raise NotFoundError("identity link not found")
        logger.info("Removed link for employee %s, tenant %s", employee_id, tenant_id)
