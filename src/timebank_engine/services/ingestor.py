"""Entry ingestor: one sync pass from the provider into the ledger."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from timebank_engine.database import Database, acquire_tenant_lock, upsert
from timebank_engine.models import SOURCE_CLOCKIFY, TimeEntry
from timebank_engine.provider.base import ExternalTimeEntry, TimeTrackingProvider
from timebank_engine.provider.client import ClockifyClient
from timebank_engine.services.closure_service import ClosureService
from timebank_engine.services.common import CLOSURE_LOCK_SCOPE
from timebank_engine.services.identity_linker import IdentityLinker, ResolvedLink
from timebank_engine.timeutils import day_end_exclusive, day_start, parse_rfc3339, utcnow

logger = logging.getLogger(__name__)

ISO_DURATION_RE = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")


def parse_iso_duration_seconds(raw: str | None) -> int:
    """Parse an ISO-8601 duration such as ``PT1H30M``; 0 when unparseable."""
    match = ISO_DURATION_RE.match((raw or "").strip())
    if not match:
        return 0
    days, hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def calc_duration_seconds(
    start: datetime,
    end: datetime | None,
    iso_duration: str | None,
    now: datetime,
) -> int:
    """Duration of an entry in whole seconds, floored at 0.

    Finished entries use ``end - start``. Running entries prefer the
    provider's ISO duration and fall back to ``now - start``.
    """
    if end is not None:
        return max(int((end - start).total_seconds()), 0)
    from_iso = parse_iso_duration_seconds(iso_duration)
    if from_iso > 0:
        return from_iso
    return max(int((now - start).total_seconds()), 0)


def _nullable(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


@dataclass
class SyncSummary:
    """Counters reported by one sync pass."""

    range_start: date
    range_end: date
    employees_total: int = 0
    users_found: int = 0
    employees_mapped: int = 0
    entries_processed: int = 0
    entries_upserted: int = 0
    entries_skipped_closed: int = 0
    running_entries: int = 0
    synced_at: datetime | None = None


class EntryIngestor:
    """Pulls a tenant's entries for a date range and upserts them.

    Each external user's batch commits in its own transaction, so a
    cancelled or failed pass leaves earlier batches in place. Re-running the
    same range converges on the same rows.
    """

    def __init__(self, database: Database, provider: TimeTrackingProvider):
        self.database = database
        self.provider = provider

    async def sync(
        self,
        tenant_id: int,
        workspace_id: str,
        start: date,
        end: date,
        allow_closed_period: bool = False,
        now: datetime | None = None,
    ) -> SyncSummary:
        """Run one sync pass over ``[start, end]`` (inclusive days)."""
        now = now or utcnow()
        summary = SyncSummary(range_start=start, range_end=end, synced_at=now)
        logger.info(
            "Sync started for tenant %s, workspace %s, %s..%s",
            tenant_id,
            workspace_id,
            start,
            end,
        )

        users = await self.provider.list_users(workspace_id)
        summary.users_found = len(users)

        async with self.database.session() as session:
            linker = IdentityLinker(session)
            employees = await linker.active_employees(tenant_id)
            links = await linker.resolve(tenant_id, users, employees)
        summary.employees_total = len(employees)
        summary.employees_mapped = len({link.employee_id for link in links})

        api_start = day_start(start)
        api_end = day_end_exclusive(end)
        for link in links:
            entries = await self.provider.list_time_entries(
                workspace_id, link.external_user_id, api_start, api_end
            )
            async with self.database.session() as session:
                await self._ingest_batch(
                    session,
                    tenant_id,
                    workspace_id,
                    link,
                    entries,
                    allow_closed_period,
                    summary,
                    now,
                )

        logger.info(
            "Sync finished for tenant %s: processed=%d upserted=%d skipped_closed=%d running=%d",
            tenant_id,
            summary.entries_processed,
            summary.entries_upserted,
            summary.entries_skipped_closed,
            summary.running_entries,
        )
        return summary

    async def _ingest_batch(
        self,
        session: AsyncSession,
        tenant_id: int,
        workspace_id: str,
        link: ResolvedLink,
        entries: list[ExternalTimeEntry],
        allow_closed_period: bool,
        summary: SyncSummary,
        now: datetime,
    ) -> None:
        await acquire_tenant_lock(session, tenant_id, CLOSURE_LOCK_SCOPE, shared=True)
        closed: list[tuple[date, date]] = []
        if not allow_closed_period:
            closed = await ClosureService(session).closed_periods(tenant_id)

        for entry in entries:
            summary.entries_processed += 1
            if not entry.id.strip():
                continue

            try:
                start_at = parse_rfc3339(entry.start)
            except ValueError:
                logger.debug("Skipping entry %s: bad start %r", entry.id, entry.start)
                continue
            if start_at is None:
                continue

            start_date = start_at.date()
            if any(p_start <= start_date <= p_end for p_start, p_end in closed):
                summary.entries_skipped_closed += 1
                continue

            try:
                end_at = parse_rfc3339(entry.end)
            except ValueError:
                logger.debug("Skipping entry %s: bad end %r", entry.id, entry.end)
                continue

            is_running = end_at is None
            if is_running:
                summary.running_entries += 1

            await self._upsert_entry(
                session,
                tenant_id,
                workspace_id,
                link,
                entry,
                start_at,
                end_at,
                calc_duration_seconds(start_at, end_at, entry.duration, now),
                now,
            )
            summary.entries_upserted += 1

    async def _upsert_entry(
        self,
        session: AsyncSession,
        tenant_id: int,
        workspace_id: str,
        link: ResolvedLink,
        entry: ExternalTimeEntry,
        start_at: datetime,
        end_at: datetime | None,
        duration_seconds: int,
        now: datetime,
    ) -> None:
        stmt = upsert(session, TimeEntry.__table__).values(
            tenant_id=tenant_id,
            employee_id=link.employee_id,
            source=SOURCE_CLOCKIFY,
            external_entry_id=entry.id.strip(),
            external_user_id=entry.user_id or link.external_user_id,
            workspace_id=workspace_id,
            project_id=_nullable(entry.project_id),
            task_id=_nullable(entry.task_id),
            description=_nullable(entry.description),
            tag_ids=list(entry.tag_ids),
            start_at=start_at,
            end_at=end_at,
            duration_seconds=duration_seconds,
            is_running=end_at is None,
            billable=entry.billable,
            raw_json=entry.raw,
            synced_at=now,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "source", "external_entry_id"],
            set_={
                column: getattr(stmt.excluded, column)
                for column in (
                    "employee_id",
                    "external_user_id",
                    "project_id",
                    "task_id",
                    "description",
                    "tag_ids",
                    "start_at",
                    "end_at",
                    "duration_seconds",
                    "is_running",
                    "billable",
                    "raw_json",
                    "synced_at",
                    "updated_at",
                )
            },
        )
        await session.execute(stmt)


async def sync_tenant(
    database: Database,
    client_factory: Callable[[str], ClockifyClient],
    tenant_id: int,
    workspace_id: str,
    api_key: str,
    start: date,
    end: date,
    allow_closed_period: bool = False,
) -> SyncSummary:
    """Run one pass with a client built for the tenant's credential."""
    async with client_factory(api_key) as client:
        return await EntryIngestor(database, client).sync(
            tenant_id, workspace_id, start, end, allow_closed_period
        )
