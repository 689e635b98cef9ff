"""Provider adapters and the kind -> adapter registry.

Sub-modules
-----------
base
    :class:`ProviderAdapter` with the shared authorization-code plumbing.
google, facebook, apple, azure_b2c
    Adapters for the built-in identity providers.
custom
    Adapter driven entirely by configured endpoints.
"""

from __future__ import annotations

import httpx

from easyauth.core.clock import Clock, default_clock
from easyauth.core.config import ProviderConfig
from easyauth.core.errors import ConfigurationError

from .apple import AppleProvider
from .azure_b2c import AzureB2CProvider
from .base import AuthorizationRequest, ProviderAdapter, encode_query
from .custom import CustomProvider
from .facebook import FacebookProvider
from .google import GoogleProvider

PROVIDER_CLASSES: dict[str, type[ProviderAdapter]] = {
    "google": GoogleProvider,
    "facebook": FacebookProvider,
    "apple": AppleProvider,
    "azure-b2c": AzureB2CProvider,
    "custom": CustomProvider,
}


def create_provider(
    config: ProviderConfig,
    http_client: httpx.AsyncClient,
    *,
    clock: Clock = default_clock,
) -> ProviderAdapter:
    """Instantiate the adapter selected by ``config.kind``."""
    try:
        cls = PROVIDER_CLASSES[config.kind]
    except KeyError:
        raise ConfigurationError(f"Unsupported provider kind {config.kind!r}") from None
    return cls(config, http_client, clock=clock)


__all__ = [
    "AuthorizationRequest",
    "ProviderAdapter",
    "encode_query",
    "create_provider",
    "PROVIDER_CLASSES",
    "GoogleProvider",
    "FacebookProvider",
    "AppleProvider",
    "AzureB2CProvider",
    "CustomProvider",
]
