"""Shared pytest fixtures.

Every test gets its own in-memory SQLite database with the schema created
and a small set of employees for tenant 1.
"""

from datetime import date, datetime, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from timebank_engine.api.app import create_app
from timebank_engine.config import Settings
from timebank_engine.database import Database
from timebank_engine.models import Employee, EmployeeStatus, ProviderConnection, TimeEntry
from timebank_engine.provider.base import ExternalTimeEntry, ExternalUser
from timebank_engine.provider.client import ClockifyClientFactory

TENANT_ID = 1
OTHER_TENANT_ID = 2
HR_USER_ID = 900

FIXED_NOW = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///:memory:",
        "host": "127.0.0.1",
        "port": 8000,
        "debug": False,
        "log_level": "INFO",
        "create_schema": False,
    }
    values.update(overrides)
    return Settings(**values)


def make_entry(
    tenant_id: int,
    employee_id: int | None,
    external_id: str,
    start_at: datetime,
    end_at: datetime | None,
    duration_seconds: int | None = None,
) -> TimeEntry:
    """Build a ledger row without going through a sync pass."""
    if duration_seconds is None:
        duration_seconds = int((end_at - start_at).total_seconds()) if end_at else 0
    return TimeEntry(
        tenant_id=tenant_id,
        employee_id=employee_id,
        source="clockify",
        external_entry_id=external_id,
        external_user_id=f"user-{employee_id}",
        workspace_id="ws-1",
        start_at=start_at,
        end_at=end_at,
        duration_seconds=duration_seconds,
        is_running=end_at is None,
        billable=False,
        synced_at=FIXED_NOW,
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )


def clockify_entry(
    entry_id: str,
    user_id: str,
    start: str,
    end: str | None = None,
    duration: str | None = None,
    description: str = "",
) -> dict:
    """A time-entry payload shaped like the Clockify API returns it."""
    return {
        "id": entry_id,
        "userId": user_id,
        "description": description,
        "projectId": "proj-1",
        "taskId": None,
        "billable": True,
        "tagIds": ["tag-a"],
        "timeInterval": {"start": start, "end": end, "duration": duration},
    }


class FakeProvider:
    """In-memory provider recording the calls made to it."""

    def __init__(self, users: list[dict], entries: dict[str, list[dict]] | None = None):
        self.users = users
        self.entries = entries or {}
        self.entry_calls: list[tuple[str, str, datetime, datetime]] = []

    async def list_users(self, workspace_id: str) -> list[ExternalUser]:
        return [ExternalUser.from_payload(user) for user in self.users]

    async def list_time_entries(
        self,
        workspace_id: str,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> list[ExternalTimeEntry]:
        self.entry_calls.append((workspace_id, user_id, start, end))
        return [ExternalTimeEntry.from_payload(row) for row in self.entries.get(user_id, [])]


class FakeClockify:
    """Routes MockTransport requests to canned users and entries."""

    def __init__(self):
        self.users: list[dict] = []
        self.entries: dict[str, list[dict]] = {}
        self.rejected_keys: set[str] = set()
        self.html_pages = False
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("X-Api-Key") in self.rejected_keys:
            return httpx.Response(401, json={"message": "Api key does not exist"})
        if self.html_pages:
            return httpx.Response(200, text="<html>proxy login</html>")

        parts = request.url.path.strip("/").split("/")
        page = int(request.url.params.get("page", "1"))
        if parts[-1] == "users":
            return httpx.Response(200, json=self.users if page == 1 else [])
        if parts[-1] == "time-entries":
            user_id = parts[-2]
            return httpx.Response(200, json=self.entries.get(user_id, []) if page == 1 else [])
        return httpx.Response(404, json={"message": "not found"})


async def no_sleep(delay: float) -> None:
    return None


# ============================================================================
# Database fixtures
# ============================================================================


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database with tables created."""
    database = Database("sqlite+aiosqlite:///:memory:")
    await database.create_schema()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def employees(db: Database) -> dict[str, int]:
    """Seed employees for tenant 1 and one for tenant 2.

    Returns a name → id map.
    """
    rows = {
        "ana": Employee(
            tenant_id=TENANT_ID,
            name="Ana Souza",
            email="ana@example.com",
            status=EmployeeStatus.ACTIVE,
        ),
        "bruno": Employee(
            tenant_id=TENANT_ID,
            name="Bruno Lima",
            email="Bruno@Example.com",
            status=EmployeeStatus.ACTIVE,
            hire_date=date(2026, 2, 4),
        ),
        "carla": Employee(
            tenant_id=TENANT_ID,
            name="Carla Dias",
            email="carla@example.com",
            status=EmployeeStatus.TERMINATED,
            hire_date=date(2025, 1, 1),
            termination_date=date(2026, 1, 31),
        ),
        "diego": Employee(
            tenant_id=TENANT_ID,
            name="Diego Alves",
            email=None,
            status=EmployeeStatus.ON_LEAVE,
        ),
        "other": Employee(
            tenant_id=OTHER_TENANT_ID,
            name="Outsider",
            email="ana@example.com",
            status=EmployeeStatus.ACTIVE,
        ),
    }
    async with db.session() as session:
        for employee in rows.values():
            employee.created_at = FIXED_NOW
            employee.updated_at = FIXED_NOW
            session.add(employee)
        await session.flush()
        ids = {key: employee.id for key, employee in rows.items()}
    return ids


@pytest_asyncio.fixture
async def session(db: Database, employees: dict[str, int]):
    """Session for service-level tests; the caller commits if needed."""
    async with db.session_factory() as session:
        yield session


# ============================================================================
# API fixtures
# ============================================================================


@pytest.fixture
def clockify() -> FakeClockify:
    return FakeClockify()


@pytest.fixture
def client_factory(clockify: FakeClockify) -> ClockifyClientFactory:
    return ClockifyClientFactory(
        make_settings(),
        transport=httpx.MockTransport(clockify),
        sleep=no_sleep,
    )


@pytest.fixture
def app(db: Database, employees: dict[str, int], client_factory: ClockifyClientFactory):
    return create_app(settings=make_settings(), database=db, client_factory=client_factory)


@pytest_asyncio.fixture
async def client(app):
    """HTTP client acting as an HR user of tenant 1."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={
            "X-Tenant-ID": str(TENANT_ID),
            "X-User-ID": str(HR_USER_ID),
            "X-User-Role": "hr",
        },
    ) as client:
        yield client


@pytest_asyncio.fixture
async def connected(db: Database, employees: dict[str, int]) -> None:
    """Tenant 1 has a saved provider connection."""
    async with db.session() as session:
        session.add(
            ProviderConnection(
                tenant_id=TENANT_ID,
                workspace_id="ws-1",
                api_key="key-tenant-one-0001",
                created_at=FIXED_NOW,
                updated_at=FIXED_NOW,
            )
        )
