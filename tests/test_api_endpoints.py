"""API endpoint tests.

Tests the FastAPI endpoints end to end against an in-memory database and a
mocked Clockify transport.
"""

import csv
import io

import pytest
from httpx import AsyncClient

from .conftest import OTHER_TENANT_ID, clockify_entry

pytestmark = pytest.mark.asyncio

SYNC_RANGE = {"start_date": "2026-02-01", "end_date": "2026-02-09"}


def seed_clockify(clockify) -> None:
    clockify.users = [
        {"id": "u-ana", "name": "Ana", "email": "ana@example.com"},
        {"id": "u-bruno", "name": "Bruno", "email": "bruno@example.com"},
    ]
    clockify.entries = {
        "u-ana": [
            clockify_entry(
                "e1", "u-ana", "2026-02-02T09:00:00Z", "2026-02-02T17:00:00Z", "PT8H"
            ),
            clockify_entry(
                "e2", "u-ana", "2026-02-03T09:00:00Z", "2026-02-03T13:00:00Z", "PT4H"
            ),
        ],
    }


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["auto_sync"] == "disabled"

    async def test_health_reports_running_scheduler(self, app, client: AsyncClient):
        class RunningScheduler:
            running = True

        app.state.scheduler = RunningScheduler()

        response = await client.get("/health")

        assert response.json()["auto_sync"] == "running"

    async def test_readiness_and_liveness(self, client: AsyncClient):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestTenantHeaders:
    """Test tenant and actor header handling."""

    async def test_tenant_header_required(self, client: AsyncClient):
        response = await client.get("/time-bank/settings", headers={"X-Tenant-ID": ""})

        assert response.status_code == 400
        assert response.json()["detail"] == "X-Tenant-ID header is required"
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_tenant_header_must_be_numeric(self, client: AsyncClient):
        response = await client.get("/time-bank/settings", headers={"X-Tenant-ID": "abc"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid X-Tenant-ID format"
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_user_header_must_be_positive(self, client: AsyncClient):
        response = await client.put(
            "/time-bank/settings",
            json={"target_daily_minutes": 480},
            headers={"X-User-ID": "0"},
        )

        assert response.status_code == 400
        assert response.json() == {
            "detail": "Invalid X-User-ID format",
            "code": "VALIDATION_ERROR",
        }


class TestProviderIntegration:
    """Test connection config, sync and links."""

    async def test_unconfigured(self, client: AsyncClient):
        response = await client.get("/integrations/provider")

        assert response.status_code == 200
        assert response.json()["configured"] is False

    async def test_save_config_validates_and_masks(self, client: AsyncClient, clockify):
        seed_clockify(clockify)

        response = await client.post(
            "/integrations/provider",
            json={"api_key": " abcd1234efgh5678 ", "workspace_id": "ws-1"},
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["configured"] is True
        assert data["workspace_id"] == "ws-1"
        assert data["api_key_masked"] == "abcd********5678"
        assert clockify.requests[0].headers["X-Api-Key"] == "abcd1234efgh5678"

    async def test_save_config_rejected_key(self, client: AsyncClient, clockify):
        clockify.rejected_keys.add("bad-key")

        response = await client.post(
            "/integrations/provider", json={"api_key": "bad-key", "workspace_id": "ws-1"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "PROVIDER_CREDENTIAL"
        assert (await client.get("/integrations/provider")).json()["configured"] is False

    async def test_save_config_requires_fields(self, client: AsyncClient):
        response = await client.post("/integrations/provider", json={"workspace_id": "ws-1"})

        assert response.status_code == 400
        assert response.json()["detail"] == "clockify api_key is required"

    async def test_sync_requires_configuration(self, client: AsyncClient):
        response = await client.post("/integrations/provider/sync", json=SYNC_RANGE)

        assert response.status_code == 400
        assert response.json()["detail"] == "clockify is not configured"

    async def test_sync_and_read_ledger(self, client: AsyncClient, clockify, connected):
        seed_clockify(clockify)

        response = await client.post("/integrations/provider/sync", json=SYNC_RANGE)

        assert response.status_code == 200, response.text
        summary = response.json()
        assert summary["users_found"] == 2
        assert summary["employees_mapped"] == 2
        assert summary["entries_upserted"] == 2
        assert summary["range_start"] == "2026-02-01"

        entries = (await client.get("/time-entries", params=SYNC_RANGE)).json()
        assert [entry["external_entry_id"] for entry in entries] == ["e2", "e1"]
        assert entries[1]["duration_seconds"] == 28800

        limited = (await client.get("/time-entries", params={"limit": 1})).json()
        assert len(limited) == 1

    async def test_sync_override_requires_hr(self, client: AsyncClient, connected):
        response = await client.post(
            "/integrations/provider/sync",
            json={**SYNC_RANGE, "allow_closed_period": True},
            headers={"X-User-Role": "manager"},
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "allow_closed_period only for hr"

    async def test_sync_bad_range(self, client: AsyncClient, connected):
        response = await client.post(
            "/integrations/provider/sync",
            json={"start_date": "2026-02-09", "end_date": "2026-02-01"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "end_date must be >= start_date"

    async def test_sync_non_json_provider_body(self, client: AsyncClient, clockify, connected):
        clockify.html_pages = True

        response = await client.post("/integrations/provider/sync", json=SYNC_RANGE)

        assert response.status_code == 502
        assert response.json() == {
            "detail": "clockify request failed",
            "code": "PROVIDER_FAILURE",
        }

    async def test_status(self, client: AsyncClient, clockify, connected):
        seed_clockify(clockify)
        await client.post("/integrations/provider/sync", json=SYNC_RANGE)

        data = (await client.get("/integrations/provider/status")).json()

        assert data["configured"] is True
        assert data["api_key_masked"] == "key-***********0001"
        assert data["entries_total"] == 2
        assert data["active_employees"] == 3
        assert data["mapped_employees"] == 2
        assert data["active_unmapped_employees"] == 1
        assert [e["name"] for e in data["unmapped_employees_preview"]] == ["Diego Alves"]

    async def test_manual_links(self, client: AsyncClient, employees):
        response = await client.put(
            "/integrations/provider/links",
            json={"employee_id": employees["diego"], "external_user_id": "u-diego"},
        )
        assert response.status_code == 200, response.text

        links = (await client.get("/integrations/provider/links")).json()
        assert [(link["employee_name"], link["external_user_id"]) for link in links] == [
            ("Diego Alves", "u-diego")
        ]

        response = await client.delete(f"/integrations/provider/links/{employees['diego']}")
        assert response.status_code == 204
        response = await client.delete(f"/integrations/provider/links/{employees['diego']}")
        assert response.status_code == 404


class TestTimeBank:
    """Test settings, summary and adjustments endpoints."""

    async def test_settings_roundtrip(self, client: AsyncClient):
        response = await client.put("/time-bank/settings", json={"target_daily_minutes": 420})
        assert response.status_code == 200

        data = (await client.get("/time-bank/settings")).json()
        assert data["target_daily_minutes"] == 420
        assert data["include_saturday"] is False

    async def test_settings_out_of_range(self, client: AsyncClient):
        response = await client.put("/time-bank/settings", json={"target_daily_minutes": 2000})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_summary(self, client: AsyncClient, clockify, connected, employees):
        seed_clockify(clockify)
        await client.post("/integrations/provider/sync", json=SYNC_RANGE)

        response = await client.get(
            "/time-bank/summary", params={"start_date": "2026-02-02", "end_date": "2026-02-03"}
        )

        assert response.status_code == 200
        data = response.json()
        ana = next(e for e in data["employees"] if e["employee_id"] == employees["ana"])
        assert ana["worked_seconds"] == 12 * 3600
        assert ana["expected_seconds"] == 2 * 480 * 60
        assert ana["balance_seconds"] == -4 * 3600

    async def test_summary_bad_date(self, client: AsyncClient):
        response = await client.get("/time-bank/summary", params={"start_date": "02/01/2026"})

        assert response.status_code == 400
        assert response.json()["detail"] == "start_date must be YYYY-MM-DD"

    async def test_adjustment_lifecycle(self, client: AsyncClient, employees):
        response = await client.post(
            "/time-bank/adjustments",
            json={
                "employee_id": employees["ana"],
                "effective_date": "2026-02-03",
                "minutes_delta": -30,
                "reason": "long lunch",
            },
        )
        assert response.status_code == 201, response.text
        created = response.json()
        assert created["status"] == "pending"
        assert created["seconds_delta"] == -1800
        assert created["created_by"] == 900

        response = await client.post(f"/time-bank/adjustments/{created['id']}/approve")
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = await client.post(
            f"/time-bank/adjustments/{created['id']}/reject", json={"note": "too late"}
        )
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

        listed = (
            await client.get(
                "/time-bank/adjustments",
                params={"start_date": "2026-02-01", "end_date": "2026-02-28", "status": "approved"},
            )
        ).json()
        assert [item["id"] for item in listed] == [created["id"]]

    async def test_adjustment_bad_delta(self, client: AsyncClient, employees):
        response = await client.post(
            "/time-bank/adjustments",
            json={
                "employee_id": employees["ana"],
                "effective_date": "2026-02-03",
                "seconds_delta": 60,
                "minutes_delta": 1,
            },
        )

        assert response.status_code == 400
        assert response.json()["detail"] == (
            "seconds_delta and minutes_delta cannot be used together"
        )

    async def test_adjustment_malformed_body(self, client: AsyncClient):
        response = await client.post(
            "/time-bank/adjustments",
            json={"employee_id": "abc", "effective_date": "2026-02-03", "seconds_delta": 60},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["detail"].startswith("employee_id")

    async def test_adjustment_unknown_employee(self, client: AsyncClient, employees):
        response = await client.post(
            "/time-bank/adjustments",
            json={
                "employee_id": employees["other"],
                "effective_date": "2026-02-03",
                "seconds_delta": 60,
            },
        )

        assert response.status_code == 404


class TestClosures:
    """Test closure endpoints."""

    async def close(self, client: AsyncClient, start: str, end: str, **extra):
        return await client.post(
            "/time-bank/closures/close", json={"start_date": start, "end_date": end, **extra}
        )

    async def test_close_requires_dates(self, client: AsyncClient):
        response = await client.post("/time-bank/closures/close", json={"end_date": "2026-02-20"})

        assert response.status_code == 400
        assert response.json()["detail"] == "start_date is required"

    async def test_overlap_conflict(self, client: AsyncClient):
        first = await self.close(client, "2026-02-10", "2026-02-20")
        assert first.status_code == 200, first.text

        overlapping = await self.close(client, "2026-02-01", "2026-02-15")
        assert overlapping.status_code == 409
        assert overlapping.json()["code"] == "PERIOD_OVERLAP"

        disjoint = await self.close(client, "2026-02-21", "2026-02-28")
        assert disjoint.status_code == 200

    async def test_closed_period_blocks_adjustments(self, client: AsyncClient, employees):
        await self.close(client, "2026-02-01", "2026-02-07")

        response = await client.post(
            "/time-bank/adjustments",
            json={
                "employee_id": employees["ana"],
                "effective_date": "2026-02-03",
                "seconds_delta": 60,
            },
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "period is closed for this date"

    async def test_close_reopen_and_export(self, client: AsyncClient, employees):
        closed = (await self.close(client, "2026-02-02", "2026-02-06", note="wk1")).json()
        assert closed["status"] == "closed"
        assert closed["closed_by"] == 900
        assert closed["employees_count"] == 3
        assert closed["total_expected_seconds"] == (5 + 3 + 5) * 480 * 60

        items = (await client.get(f"/time-bank/closures/{closed['id']}/employees")).json()
        assert [item["employee_name"] for item in items] == [
            "Ana Souza",
            "Bruno Lima",
            "Diego Alves",
        ]

        export = await client.get(f"/time-bank/closures/{closed['id']}/export.csv")
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        assert f"time-bank-closure-{closed['id']}.csv" in export.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(export.text)))
        assert rows[0][0] == "period_start"
        assert len(rows) == 4

        reopened = await client.post(f"/time-bank/closures/{closed['id']}/reopen")
        assert reopened.status_code == 200
        assert reopened.json()["status"] == "reopened"
        assert reopened.json()["employees_count"] == 3

        again = await client.post(f"/time-bank/closures/{closed['id']}/reopen")
        assert again.status_code == 409

        listed = (await client.get("/time-bank/closures")).json()
        assert [item["id"] for item in listed] == [closed["id"]]

    async def test_unknown_closure(self, client: AsyncClient):
        response = await client.get("/time-bank/closures/999/employees")

        assert response.status_code == 404
        assert response.json()["detail"] == "time bank closure not found"

    async def test_closures_are_tenant_scoped(self, client: AsyncClient):
        closed = (await self.close(client, "2026-02-02", "2026-02-06")).json()

        response = await client.get(
            f"/time-bank/closures/{closed['id']}/export.csv",
            headers={"X-Tenant-ID": str(OTHER_TENANT_ID)},
        )

        assert response.status_code == 404
