"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator, Callable
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from timebank_engine.database import Database
from timebank_engine.exceptions import ValidationError
from timebank_engine.provider.client import ClockifyClient

HR_ROLE = "hr"


def get_database(request: Request) -> Database:
    """Database owned by the running application."""
    return request.app.state.database


def get_client_factory(request: Request) -> Callable[[str], ClockifyClient]:
    return request.app.state.client_factory


async def get_db_session(
    database: Annotated[Database, Depends(get_database)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with database.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _parse_id(raw: str, header: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValidationError(f"Invalid {header} format") from None
    if value <= 0:
        raise ValidationError(f"Invalid {header} format")
    return value


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> int:
    """Extract tenant ID from header."""
    if not x_tenant_id:
        raise ValidationError("X-Tenant-ID header is required")
    return _parse_id(x_tenant_id, "X-Tenant-ID")


async def get_actor_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> int | None:
    """Acting user from the upstream auth layer, if any."""
    if not x_user_id:
        return None
    return _parse_id(x_user_id, "X-User-ID")


async def get_actor_role(
    x_user_role: Annotated[str | None, Header()] = None,
) -> str:
    return (x_user_role or "").strip().lower()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppDatabase = Annotated[Database, Depends(get_database)]
ClientFactory = Annotated[Callable[[str], ClockifyClient], Depends(get_client_factory)]
TenantId = Annotated[int, Depends(get_tenant_id)]
ActorId = Annotated[int | None, Depends(get_actor_id)]
ActorRole = Annotated[str, Depends(get_actor_role)]
