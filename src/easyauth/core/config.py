"""Engine configuration.

Provider configuration is a tagged union: each provider config class carries a
fixed ``kind`` and its own typed fields, and the provider registry dispatches
on that tag.

Configuration can be built in code or from ``EASYAUTH_*`` environment
variables through :meth:`AuthConfig.from_env`:

EASYAUTH_API_BASE_URL            backend base URL (required)
EASYAUTH_DEFAULT_PROVIDER        provider used when a login names none
EASYAUTH_STORAGE                 local | session | memory | cookie
EASYAUTH_STORAGE_DIR             directory for ``local`` storage
EASYAUTH_STORAGE_KEY             storage key of the session blob
EASYAUTH_AUTO_REFRESH            refresh near-expiry tokens on access
EASYAUTH_REFRESH_THRESHOLD_MINUTES
EASYAUTH_PKCE_ENABLED / EASYAUTH_HTTPS_ONLY / EASYAUTH_ALLOWED_REDIRECT_ORIGINS
EASYAUTH_HTTP_TIMEOUT            seconds
EASYAUTH_<KIND>_CLIENT_ID / _CLIENT_SECRET / _REDIRECT_URI / _SCOPES / _ENABLED
    with KIND one of GOOGLE, FACEBOOK, APPLE, AZURE_B2C, CUSTOM
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Final, Literal, Mapping, Tuple, Union

from easyauth.core.errors import ConfigurationError
from easyauth.core.storage import StorageType
from easyauth.core.urls import is_valid_return_url

_LOG = logging.getLogger("easyauth.core.config")

ProviderKind = Literal["google", "facebook", "apple", "azure-b2c", "custom"]

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")


def _truthy(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def _split_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(v for v in value.replace(",", " ").split() if v)


# --------------------------------------------------------------------------- #
# Provider configs                                                            #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, kw_only=True)
class _ProviderConfigBase:
    client_id: str
    client_secret: str | None = None
    redirect_uri: str | None = None
    scopes: tuple[str, ...] = ()
    enabled: bool = True
    custom_params: Mapping[str, str] = field(default_factory=dict)
    name: str | None = None

    @property
    def provider_name(self) -> str:
        return self.name or self.kind  # type: ignore[attr-defined]


@dataclass(frozen=True, kw_only=True)
class GoogleProviderConfig(_ProviderConfigBase):
    kind: Literal["google"] = field(default="google", init=False)
    hosted_domain: str | None = None
    include_granted_scopes: bool = False
    access_type: Literal["online", "offline"] = "offline"
    prompt: str | None = None


@dataclass(frozen=True, kw_only=True)
class FacebookProviderConfig(_ProviderConfigBase):
    kind: Literal["facebook"] = field(default="facebook", init=False)
    graph_api_version: str = "v18.0"


@dataclass(frozen=True, kw_only=True)
class AppleProviderConfig(_ProviderConfigBase):
    """Sign in with Apple.

    ``client_secret`` must be the pre-generated ES256 client-secret JWT;
    this library does not sign JWTs.
    """

    kind: Literal["apple"] = field(default="apple", init=False)
    team_id: str
    key_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class AzureB2CProviderConfig(_ProviderConfigBase):
    kind: Literal["azure-b2c"] = field(default="azure-b2c", init=False)
    tenant_name: str
    sign_in_policy: str
    tenant_id: str | None = None
    reset_password_policy: str | None = None
    edit_profile_policy: str | None = None


@dataclass(frozen=True, kw_only=True)
class CustomProviderConfig(_ProviderConfigBase):
    kind: Literal["custom"] = field(default="custom", init=False)
    authorization_url: str
    token_url: str
    userinfo_url: str | None = None
    revoke_url: str | None = None
    health_url: str | None = None
    display_name: str | None = None
    custom_headers: Mapping[str, str] = field(default_factory=dict)
    token_location: Literal["header", "query"] = "header"
    supports_pkce: bool = True


ProviderConfig = Union[
    GoogleProviderConfig,
    FacebookProviderConfig,
    AppleProviderConfig,
    AzureB2CProviderConfig,
    CustomProviderConfig,
]


# --------------------------------------------------------------------------- #
# Engine config                                                               #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class SessionConfig:
    storage: StorageType = "local"
    storage_key: str = "easyauth_session"
    storage_dir: str | None = None
    refresh_threshold_minutes: int = 5
    auto_refresh: bool = True

    @property
    def refresh_threshold_seconds(self) -> int:
        return self.refresh_threshold_minutes * 60


@dataclass(frozen=True)
class SecurityConfig:
    pkce_enabled: bool = True
    state_length: int = 32
    https_only: bool = False
    allowed_redirect_origins: tuple[str, ...] = ()
    same_site_cookie: Literal["strict", "lax", "none"] = "lax"


@dataclass(frozen=True)
class AuthConfig:
    api_base_url: str
    providers: tuple[ProviderConfig, ...] = ()
    default_provider: str | None = None
    session: SessionConfig = field(default_factory=SessionConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    http_timeout: float = 10.0

    def get_provider_config(self, name: str) -> ProviderConfig | None:
        for cfg in self.providers:
            if cfg.provider_name == name:
                return cfg
        return None

    def redirect_uri_for(self, cfg: ProviderConfig) -> str:
        """Explicit redirect URI, else the backend's callback route."""
        if cfg.redirect_uri:
            return cfg.redirect_uri
        return f"{self.api_base_url.rstrip('/')}/api/auth/callback/{cfg.provider_name}"

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` on a malformed setup."""
        if not self.api_base_url:
            raise ConfigurationError("API base URL is required")
        if not is_valid_return_url(self.api_base_url):
            raise ConfigurationError(
                "API base URL must be an absolute http(s) URL",
                {"api_base_url": self.api_base_url},
            )
        if not self.providers:
            raise ConfigurationError("At least one provider must be configured")

        seen: set[str] = set()
        for cfg in self.providers:
            name = cfg.provider_name
            if name in seen:
                raise ConfigurationError(f"Duplicate provider name {name!r}")
            seen.add(name)
            if cfg.enabled and not cfg.client_id:
                raise ConfigurationError(f"{name.capitalize()} provider client ID is required")

        if self.default_provider and self.default_provider not in seen:
            raise ConfigurationError(
                f"Default provider {self.default_provider!r} is not configured"
            )
        if self.security.state_length < 16:
            raise ConfigurationError("State tokens need at least 16 characters")

    # ------------------------------------------------------------------ #
    # Environment loading                                                #
    # ------------------------------------------------------------------ #
    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AuthConfig:
        env = os.environ if environ is None else environ
        providers: list[ProviderConfig] = []

        def get(key: str) -> str | None:
            value = env.get(f"EASYAUTH_{key}")
            return value.strip() if value and value.strip() else None

        def common(prefix: str) -> dict[str, object]:
            return {
                "client_id": get(f"{prefix}_CLIENT_ID") or "",
                "client_secret": get(f"{prefix}_CLIENT_SECRET"),
                "redirect_uri": get(f"{prefix}_REDIRECT_URI"),
                "scopes": _split_list(get(f"{prefix}_SCOPES")),
                "enabled": _truthy(get(f"{prefix}_ENABLED"), default=True),
            }

        if get("GOOGLE_CLIENT_ID"):
            providers.append(
                GoogleProviderConfig(
                    **common("GOOGLE"),  # type: ignore[arg-type]
                    hosted_domain=get("GOOGLE_HOSTED_DOMAIN"),
                )
            )
        if get("FACEBOOK_CLIENT_ID"):
            providers.append(
                FacebookProviderConfig(
                    **common("FACEBOOK"),  # type: ignore[arg-type]
                    graph_api_version=get("FACEBOOK_GRAPH_API_VERSION") or "v18.0",
                )
            )
        if get("APPLE_CLIENT_ID"):
            providers.append(
                AppleProviderConfig(
                    **common("APPLE"),  # type: ignore[arg-type]
                    team_id=get("APPLE_TEAM_ID") or "",
                    key_id=get("APPLE_KEY_ID"),
                )
            )
        if get("AZURE_B2C_CLIENT_ID"):
            providers.append(
                AzureB2CProviderConfig(
                    **common("AZURE_B2C"),  # type: ignore[arg-type]
                    tenant_name=get("AZURE_B2C_TENANT_NAME") or "",
                    tenant_id=get("AZURE_B2C_TENANT_ID"),
                    sign_in_policy=get("AZURE_B2C_SIGN_IN_POLICY") or "",
                )
            )
        if get("CUSTOM_CLIENT_ID"):
            providers.append(
                CustomProviderConfig(
                    **common("CUSTOM"),  # type: ignore[arg-type]
                    name=get("CUSTOM_NAME"),
                    authorization_url=get("CUSTOM_AUTHORIZATION_URL") or "",
                    token_url=get("CUSTOM_TOKEN_URL") or "",
                    userinfo_url=get("CUSTOM_USERINFO_URL"),
                    revoke_url=get("CUSTOM_REVOKE_URL"),
                )
            )

        session = SessionConfig(
            storage=(get("STORAGE") or "local"),  # type: ignore[arg-type]
            storage_key=get("STORAGE_KEY") or "easyauth_session",
            storage_dir=get("STORAGE_DIR"),
            refresh_threshold_minutes=int(get("REFRESH_THRESHOLD_MINUTES") or 5),
            auto_refresh=_truthy(get("AUTO_REFRESH"), default=True),
        )
        security = SecurityConfig(
            pkce_enabled=_truthy(get("PKCE_ENABLED"), default=True),
            https_only=_truthy(get("HTTPS_ONLY"), default=False),
            allowed_redirect_origins=_split_list(get("ALLOWED_REDIRECT_ORIGINS")),
        )
        config = cls(
            api_base_url=get("API_BASE_URL") or "",
            providers=tuple(providers),
            default_provider=get("DEFAULT_PROVIDER"),
            session=session,
            security=security,
            http_timeout=float(get("HTTP_TIMEOUT") or 10.0),
        )
        _LOG.debug(
            "Loaded config from environment: providers=%s storage=%s",
            [p.provider_name for p in config.providers],
            session.storage,
        )
        return config
