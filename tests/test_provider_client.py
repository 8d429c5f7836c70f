"""Tests for the Clockify client: retries, backoff, pagination, error mapping."""

import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from timebank_engine.provider.client import ClockifyClient, parse_retry_after
from timebank_engine.provider.errors import (
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderPayloadError,
    is_retryable,
    map_provider_error,
)


class Recorder:
    """Replays queued responses and records every request."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        # Fresh copy so a repeated response is never read twice
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )


def make_client(handler, sleeps: list[float] | None = None, **kwargs) -> ClockifyClient:
    async def record_sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    kwargs.setdefault("sleep", record_sleep)
    return ClockifyClient(
        "secret-key",
        base_url="https://clockify.test/api/v1",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
class TestRetries:
    """Test backoff on rate limits and server errors."""

    async def test_retries_429_then_succeeds(self):
        """Two 429s then success: three attempts, exponential delays."""
        recorder = Recorder([
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json={"ok": True}),
        ])
        sleeps: list[float] = []

        async with make_client(recorder, sleeps) as client:
            result = await client.get_json("/workspaces")

        assert result == {"ok": True}
        assert len(recorder.requests) == 3
        assert sleeps == [0.75, 1.5]

    async def test_retry_after_replaces_backoff_but_is_capped(self):
        recorder = Recorder([
            httpx.Response(429, headers={"Retry-After": "100"}),
            httpx.Response(503, headers={"Retry-After": "2"}),
            httpx.Response(200, json=[]),
        ])
        sleeps: list[float] = []

        async with make_client(recorder, sleeps) as client:
            await client.get_json("/x")

        assert sleeps == [6.0, 2.0]

    async def test_client_error_is_not_retried(self):
        """A 400 surfaces after exactly one attempt."""
        recorder = Recorder([httpx.Response(400, text="bad request")])

        async with make_client(recorder, []) as client:
            with pytest.raises(ProviderHTTPError) as exc_info:
                await client.get_json("/x")

        assert len(recorder.requests) == 1
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "bad request"

    async def test_gives_up_after_max_attempts(self):
        recorder = Recorder([httpx.Response(500)])

        async with make_client(recorder, [], max_attempts=4) as client:
            with pytest.raises(ProviderHTTPError) as exc_info:
                await client.get_json("/x")

        assert len(recorder.requests) == 4
        assert exc_info.value.status_code == 500

    async def test_transport_error_is_retried(self):
        recorder = Recorder([
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json={"ok": True}),
        ])

        async with make_client(recorder, []) as client:
            assert await client.get_json("/x") == {"ok": True}

        assert len(recorder.requests) == 2

    async def test_transport_error_surfaces_as_connection_error(self):
        recorder = Recorder([httpx.ReadTimeout("timed out")])

        async with make_client(recorder, []) as client:
            with pytest.raises(ProviderConnectionError):
                await client.get_json("/x")

        assert len(recorder.requests) == 3

    async def test_cancel_during_backoff_propagates(self):
        """Cancelling while waiting to retry stops the call immediately."""
        sleeping = asyncio.Event()

        async def slow_sleep(delay: float) -> None:
            sleeping.set()
            await asyncio.sleep(3600)

        recorder = Recorder([httpx.Response(503)])
        client = make_client(recorder, sleep=slow_sleep)
        try:
            task = asyncio.create_task(client.get_json("/x"))
            await sleeping.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            await client.aclose()

        assert len(recorder.requests) == 1

    async def test_sends_api_key_header(self):
        recorder = Recorder([httpx.Response(200, json=[])])

        async with make_client(recorder) as client:
            await client.get_json("/x")

        assert recorder.requests[0].headers["X-Api-Key"] == "secret-key"


@pytest.mark.asyncio
class TestPagination:
    """Test page walking."""

    async def test_users_span_pages(self):
        """A full page of 200 triggers a second request; a short page ends."""
        first = [{"id": f"u{i}", "name": f"User {i}", "email": f"u{i}@x.io"} for i in range(200)]
        second = [{"id": "u200", "name": "Last", "email": "last@x.io"}]
        recorder = Recorder([httpx.Response(200, json=first), httpx.Response(200, json=second)])

        async with make_client(recorder) as client:
            users = await client.list_users("ws-1")

        assert len(users) == 201
        assert users[-1].id == "u200"
        pages = [request.url.params["page"] for request in recorder.requests]
        assert pages == ["1", "2"]
        assert recorder.requests[0].url.params["page-size"] == "200"
        assert recorder.requests[0].url.path == "/api/v1/workspaces/ws-1/users"

    async def test_time_entry_query(self):
        payload = [
            {
                "id": "e1",
                "userId": "u1",
                "timeInterval": {
                    "start": "2026-02-02T09:00:00Z",
                    "end": "2026-02-02T17:00:00Z",
                    "duration": "PT8H",
                },
            }
        ]
        recorder = Recorder([httpx.Response(200, json=payload)])
        start = datetime(2026, 2, 2, tzinfo=timezone.utc)

        async with make_client(recorder) as client:
            entries = await client.list_time_entries("ws-1", "u1", start, start + timedelta(days=1))

        params = recorder.requests[0].url.params
        assert recorder.requests[0].url.path == "/api/v1/workspaces/ws-1/user/u1/time-entries"
        assert params["start"] == "2026-02-02T00:00:00Z"
        assert params["end"] == "2026-02-03T00:00:00Z"
        assert params["hydrated"] == "false"
        assert entries[0].start == "2026-02-02T09:00:00Z"
        assert entries[0].duration == "PT8H"

    async def test_empty_body_is_empty_page(self):
        recorder = Recorder([httpx.Response(200)])

        async with make_client(recorder) as client:
            assert await client.list_users("ws-1") == []

    async def test_non_json_body_is_a_provider_error(self):
        recorder = Recorder([httpx.Response(200, text="<html>proxy login</html>")])

        async with make_client(recorder) as client:
            with pytest.raises(ProviderPayloadError):
                await client.list_users("ws-1")

        assert len(recorder.requests) == 1

    async def test_non_list_page_is_a_provider_error(self):
        recorder = Recorder([httpx.Response(200, json={"message": "workspace archived"})])

        async with make_client(recorder) as client:
            with pytest.raises(ProviderPayloadError, match="expected a list"):
                await client.list_users("ws-1")


class TestRetryAfter:
    """Test Retry-After header parsing."""

    def test_seconds(self):
        assert parse_retry_after("5") == 5.0

    def test_http_date(self):
        now = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)
        raw = format_datetime(now + timedelta(seconds=30), usegmt=True)
        assert parse_retry_after(raw, now=now) == 30.0

    def test_past_date_is_zero(self):
        now = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)
        raw = format_datetime(now - timedelta(minutes=1), usegmt=True)
        assert parse_retry_after(raw, now=now) == 0.0

    def test_missing_or_malformed(self):
        assert parse_retry_after(None) == 0.0
        assert parse_retry_after("") == 0.0
        assert parse_retry_after("soon") == 0.0


class TestErrorMapping:
    """Test provider errors → API status mapping."""

    @pytest.mark.parametrize(
        "status_code,http_status,code",
        [
            (401, 400, "PROVIDER_CREDENTIAL"),
            (403, 400, "PROVIDER_CREDENTIAL"),
            (404, 400, "PROVIDER_WORKSPACE"),
            (429, 429, "PROVIDER_RATE_LIMIT"),
            (500, 502, "PROVIDER_FAILURE"),
            (418, 502, "PROVIDER_FAILURE"),
        ],
    )
    def test_http_errors(self, status_code, http_status, code):
        mapped = map_provider_error(ProviderHTTPError(status_code))
        assert mapped.http_status == http_status
        assert mapped.code == code

    def test_connection_error(self):
        mapped = map_provider_error(ProviderConnectionError("reset"))
        assert mapped.http_status == 502

    def test_payload_error(self):
        mapped = map_provider_error(ProviderPayloadError("invalid json body"))
        assert mapped.http_status == 502
        assert mapped.code == "PROVIDER_FAILURE"
        assert is_retryable(ProviderPayloadError("x")) is False

    def test_retryable_classification(self):
        assert is_retryable(ProviderHTTPError(429)) is True
        assert is_retryable(ProviderHTTPError(502)) is True
        assert is_retryable(ProviderHTTPError(401)) is False
        assert is_retryable(ProviderConnectionError("x")) is True
        assert is_retryable(ValueError("x")) is False
