"""Database connection and session management."""

from __future__ import annotations

import zlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from timebank_engine.models import Base

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.ext.asyncio import AsyncEngine


class Database:
    """Engine and session factory owned by one application instance."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            # In-memory databases must share one connection across sessions
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session committed on success, rolled back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def upsert(session: AsyncSession, table: Table) -> Any:
    """Return a dialect-specific INSERT supporting ``on_conflict_do_update``."""
    if dialect_name(session) == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def _lock_key(tenant_id: int, scope: str) -> int:
    # Signed 64-bit key: scope hash in the high half, tenant in the low half
    key = (zlib.crc32(scope.encode()) << 32) | (tenant_id & 0xFFFFFFFF)
    return key - (1 << 64) if key >= (1 << 63) else key


async def acquire_tenant_lock(
    session: AsyncSession,
    tenant_id: int,
    scope: str,
    shared: bool = False,
) -> None:
    """Take a transaction-scoped advisory lock for one tenant.

    Released automatically at commit/rollback. Exclusive holders wait for
    all shared holders of the same key and vice versa. SQLite serializes
    writers on its own, so the call is a no-op there.
    """
    if dialect_name(session) != "postgresql":
        return
    fn = "pg_advisory_xact_lock_shared" if shared else "pg_advisory_xact_lock"
    await session.execute(
        text(f"SELECT {fn}(:key)"),
        {"key": _lock_key(tenant_id, scope)},
    )
