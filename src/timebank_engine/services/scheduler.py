"""Daily auto-sync across all configured tenants."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, time, timedelta, timezone

from timebank_engine.database import Database
from timebank_engine.provider.client import ClockifyClient
from timebank_engine.services.connection_service import ConnectionService
from timebank_engine.services.ingestor import sync_tenant
from timebank_engine.timeutils import utcnow

logger = logging.getLogger(__name__)


def next_run_at_utc_hour(now: datetime, hour_utc: int) -> datetime:
    """Next ``hour_utc:00`` strictly after ``now``."""
    now = now.astimezone(timezone.utc)
    run = datetime.combine(now.date(), time(hour=hour_utc), tzinfo=timezone.utc)
    if run <= now:
        run += timedelta(days=1)
    return run


class AutoSyncScheduler:
    """Runs a sync pass at startup and then once a day at a fixed UTC hour.

    Tenants are synced one after another; a failure for one tenant is
    logged and the pass moves on. Holds no state between passes, so a
    restart simply runs the next pass.
    """

    def __init__(
        self,
        database: Database,
        client_factory: Callable[[str], ClockifyClient],
        hour_utc: int = 3,
        lookback_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self.client_factory = client_factory
        self.hour_utc = hour_utc if 0 <= hour_utc <= 23 else 3
        self.lookback_days = max(lookback_days, 1)
        self.clock = clock
        self.sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Sync every configured tenant; returns the number that succeeded."""
        async with self.database.session() as session:
            connections = [
                (conn.tenant_id, conn.workspace_id, conn.api_key)
                for conn in await ConnectionService(session).list_all()
            ]
        if not connections:
            logger.info("Auto sync: no configured tenants")
            return 0

        end = self.clock().date()
        start = end - timedelta(days=self.lookback_days)
        succeeded = 0
        for tenant_id, workspace_id, api_key in connections:
            try:
                summary = await sync_tenant(
                    self.database,
                    self.client_factory,
                    tenant_id,
                    workspace_id,
                    api_key,
                    start,
                    end,
                )
            except Exception:
                logger.exception("Auto sync failed for tenant %s", tenant_id)
                continue
            succeeded += 1
            logger.info(
                "Auto sync tenant %s: processed=%d upserted=%d",
                tenant_id,
                summary.entries_processed,
                summary.entries_upserted,
            )

        logger.info("Auto sync finished: %d/%d tenants", succeeded, len(connections))
        return succeeded

    async def _run_pass(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("Auto sync pass failed; retrying at the next scheduled run")

    async def run_forever(self) -> None:
        """Loop until cancelled. A failed pass is logged and the loop reschedules."""
        await self._run_pass()
        while True:
            now = self.clock()
            next_run = next_run_at_utc_hour(now, self.hour_utc)
            logger.info("Auto sync next run at %s", next_run.isoformat())
            await self.sleep((next_run - now).total_seconds())
            await self._run_pass()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="auto-sync")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("Auto sync scheduler stopped")
