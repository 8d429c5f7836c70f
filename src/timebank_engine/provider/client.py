"""Clockify REST client with pagination and rate-limit aware retries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from timebank_engine.config import Settings
from timebank_engine.provider.base import ExternalTimeEntry, ExternalUser
from timebank_engine.provider.errors import (
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderPayloadError,
    is_retryable,
)

logger = logging.getLogger(__name__)

CLOCKIFY_BASE_URL = "https://api.clockify.me/api/v1"
PAGE_SIZE = 200
MAX_ERROR_BODY = 1 << 20


def parse_retry_after(raw: str | None, now: datetime | None = None) -> float:
    """Parse a ``Retry-After`` header into seconds.

    Accepts delta-seconds or an HTTP-date. Returns 0 when absent, malformed
    or already in the past.
    """
    value = (raw or "").strip()
    if not value:
        return 0.0
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return delta if delta > 0 else 0.0


class wait_retry_after(wait_base):
    """Exponential backoff from ``base`` capped at ``cap``.

    A positive ``Retry-After`` from the provider replaces the computed delay,
    still subject to the cap.
    """

    def __init__(self, base: float, cap: float):
        self.base = base if base > 0 else 0.5
        self.cap = cap

    def __call__(self, retry_state: Any) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None) or 0.0
        if retry_after > 0:
            delay = retry_after
        else:
            delay = self.base * (2 ** (retry_state.attempt_number - 1))
        if self.cap > 0:
            delay = min(delay, self.cap)
        return delay


class ClockifyClient:
    """Read-only Clockify client.

    The underlying ``httpx.AsyncClient`` is either injected (and left open
    on ``aclose``) or created here with the request timeout.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = CLOCKIFY_BASE_URL,
        timeout: float = 30.0,
        max_attempts: int = 3,
        base_delay: float = 0.75,
        max_delay: float = 6.0,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep or asyncio.sleep
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> ClockifyClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_retry_after(self.base_delay, self.max_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        try:
            response = await self._http.get(
                self.base_url + path,
                params=params,
                headers={"X-Api-Key": self.api_key, "Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise ProviderConnectionError(str(exc) or exc.__class__.__name__) from exc

        if not response.is_success:
            message = response.text[:MAX_ERROR_BODY].strip() or response.reason_phrase
            raise ProviderHTTPError(
                response.status_code,
                message,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderPayloadError(f"invalid json body from {path}") from exc

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a JSON document, retrying transport errors, 429 and 5xx."""
        return await self._retrying()(self._request, path, params or {})

    async def _paginate(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            batch = await self.get_json(
                path, {**params, "page": page, "page-size": PAGE_SIZE}
            )
            batch = batch or []
            if not isinstance(batch, list):
                raise ProviderPayloadError(f"expected a list from {path}")
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                return items
            page += 1

    async def list_users(self, workspace_id: str) -> list[ExternalUser]:
        rows = await self._paginate(f"/workspaces/{workspace_id}/users", {})
        return [ExternalUser.from_payload(row) for row in rows]

    async def list_time_entries(
        self,
        workspace_id: str,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> list[ExternalTimeEntry]:
        rows = await self._paginate(
            f"/workspaces/{workspace_id}/user/{user_id}/time-entries",
            {
                "start": _rfc3339(start),
                "end": _rfc3339(end),
                "hydrated": "false",
            },
        )
        return [ExternalTimeEntry.from_payload(row) for row in rows]


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ClockifyClientFactory:
    """Builds one client per connection from application settings."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.settings = settings
        self.transport = transport
        self.sleep = sleep

    def __call__(self, api_key: str) -> ClockifyClient:
        return ClockifyClient(
            api_key,
            base_url=self.settings.clockify_base_url,
            timeout=self.settings.clockify_timeout_seconds,
            max_attempts=self.settings.clockify_max_attempts,
            base_delay=self.settings.clockify_retry_base_delay,
            max_delay=self.settings.clockify_retry_max_delay,
            transport=self.transport,
            sleep=self.sleep,
        )
