"""Time-tracking provider client."""

from timebank_engine.provider.base import ExternalTimeEntry, ExternalUser, TimeTrackingProvider
from timebank_engine.provider.client import (
    ClockifyClient,
    ClockifyClientFactory,
    parse_retry_after,
)
from timebank_engine.provider.errors import (
    ProviderConnectionError,
    ProviderError,
    ProviderHTTPError,
    ProviderPayloadError,
    map_provider_error,
)

__all__ = [
    "ExternalUser",
    "ExternalTimeEntry",
    "TimeTrackingProvider",
    "ClockifyClient",
    "ClockifyClientFactory",
    "parse_retry_after",
    "ProviderError",
    "ProviderConnectionError",
    "ProviderHTTPError",
    "ProviderPayloadError",
    "map_provider_error",
]
