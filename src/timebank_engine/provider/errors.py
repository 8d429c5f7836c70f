"""Errors raised by the provider client and their HTTP mapping."""

from __future__ import annotations

from dataclasses import dataclass


class ProviderError(Exception):
    """Base class for failures talking to the time-tracking provider."""


class ProviderConnectionError(ProviderError):
    """Transport-level failure (DNS, connect, timeout, reset)."""


class ProviderPayloadError(ProviderError):
    """2xx response whose body is not the JSON shape the client expects."""


class ProviderHTTPError(ProviderError):
    """Non-2xx response from the provider."""

    def __init__(self, status_code: int, message: str = "", retry_after: float | None = None):
        self.status_code = status_code
        self.message = message
        self.retry_after = retry_after
        if message:
            super().__init__(f"clockify status {status_code}: {message}")
        else:
            super().__init__(f"clockify status {status_code}")

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


def is_retryable(exc: BaseException) -> bool:
    """Transport errors, 429 and 5xx are retried; everything else surfaces."""
    if isinstance(exc, ProviderConnectionError):
        return True
    if isinstance(exc, ProviderHTTPError):
        return exc.retryable
    return False


@dataclass(frozen=True)
class MappedProviderError:
    http_status: int
    message: str
    code: str


def map_provider_error(exc: BaseException) -> MappedProviderError:
    """Translate a provider failure into the status the API answers with."""
    if isinstance(exc, ProviderHTTPError):
        if exc.status_code in (401, 403):
            return MappedProviderError(400, "clockify api key is invalid", "PROVIDER_CREDENTIAL")
        if exc.status_code == 404:
            return MappedProviderError(400, "clockify workspace not found", "PROVIDER_WORKSPACE")
        if exc.status_code == 429:
            return MappedProviderError(429, "clockify rate limit exceeded", "PROVIDER_RATE_LIMIT")
        return MappedProviderError(502, "clockify request failed", "PROVIDER_FAILURE")
    if isinstance(exc, ProviderPayloadError):
        return MappedProviderError(502, "clockify request failed", "PROVIDER_FAILURE")
    return MappedProviderError(502, "clockify connection failed", "PROVIDER_CONNECTION")
