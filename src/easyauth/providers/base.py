"""Shared OAuth 2.0 plumbing for provider adapters.

An adapter owns nothing but its configuration and a borrowed
:class:`httpx.AsyncClient`; the engine creates and closes the client.
Adapters never retry: retry policy belongs to the caller.

Error mapping
-------------
* transport failures (``httpx.HTTPError``) -> :class:`NetworkError`
  (``TIMEOUT_ERROR`` for timeouts)
* non-2xx responses -> :class:`ProviderError` carrying the provider's
  ``error`` / ``error_description``; 429 and 5xx are retryable
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Sequence
from urllib.parse import quote, urlencode

import httpx

from easyauth.core.clock import Clock, default_clock, utc_now
from easyauth.core.crypto import decode_jwt_payload
from easyauth.core.errors import (
    AuthErrorCode,
    EasyAuthError,
    NetworkError,
    ProviderError,
)
from easyauth.core.log_utils import mask_sensitive
from easyauth.core.models import (
    ProviderCapability,
    ProviderHealth,
    ProviderInfo,
    TokenSet,
    UserInfo,
)

_FORM_HEADERS: dict[str, str] = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


@dataclass(frozen=True, slots=True)
class AuthorizationRequest:
    """Everything needed to build one authorization URL."""

    state: str
    redirect_uri: str
    scopes: tuple[str, ...] = ()
    code_challenge: str | None = None
    nonce: str | None = None
    custom_params: Mapping[str, str] = field(default_factory=dict)


def encode_query(params: Mapping[str, str]) -> str:
    """Form-encode *params* with spaces as ``%20`` (never ``+``)."""
    return urlencode(params, quote_via=quote)


class ProviderAdapter:
    """Base class implementing the standard authorization-code flow.

    Subclasses set the endpoint attributes and :meth:`_map_user`, and
    override the hooks where the provider deviates from RFC 6749.
    """

    display_name_default: ClassVar[str] = "OAuth 2.0"
    default_scopes: ClassVar[tuple[str, ...]] = ()
    capabilities: ClassVar[tuple[ProviderCapability, ...]] = (
        "oauth2",
        "refresh_token",
        "user_info",
    )
    supports_pkce: bool = True

    authorization_endpoint: str = ""
    token_endpoint: str = ""
    userinfo_endpoint: str | None = None
    revoke_endpoint: str | None = None
    health_endpoint: str | None = None

    def __init__(
        self,
        config: Any,
        http_client: httpx.AsyncClient,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config
        self._http = http_client
        self._clock = clock
        self._log = logging.getLogger(f"easyauth.providers.{config.kind.replace('-', '_')}")

    # ------------------------------------------------------------------ #
    # Identity                                                           #
    # ------------------------------------------------------------------ #
    @property
    def name(self) -> str:
        return self.config.provider_name

    @property
    def kind(self) -> str:
        return self.config.kind

    @property
    def display_name(self) -> str:
        return self.display_name_default

    @property
    def is_enabled(self) -> bool:
        return bool(self.config.enabled)

    def info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.name,
            kind=self.kind,
            display_name=self.display_name,
            is_enabled=self.is_enabled,
            capabilities=self.capabilities,
        )

    def validate_configuration(self) -> bool:
        return bool(self.config.client_id and self.authorization_endpoint and self.token_endpoint)

    def scopes_for(self, requested: Sequence[str] | None = None) -> tuple[str, ...]:
        """Requested scopes, else the configured ones, else the defaults."""
        if requested:
            return tuple(requested)
        return tuple(self.config.scopes) or self.default_scopes

    # ------------------------------------------------------------------ #
    # Authorization URL                                                  #
    # ------------------------------------------------------------------ #
    def _authorization_params(self, request: AuthorizationRequest) -> dict[str, str]:
        params: dict[str, str] = {
            "client_id": self.config.client_id,
            "redirect_uri": request.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes_for(request.scopes)),
            "state": request.state,
        }
        if request.code_challenge and self.supports_pkce:
            params["code_challenge"] = request.code_challenge
            params["code_challenge_method"] = "S256"
        if request.nonce:
            params["nonce"] = request.nonce
        return params

    def build_authorization_url(self, request: AuthorizationRequest) -> str:
        params = self._authorization_params(request)
        params.update(self.config.custom_params or {})
        params.update(request.custom_params or {})
        return f"{self.authorization_endpoint}?{encode_query(params)}"

    # ------------------------------------------------------------------ #
    # HTTP                                                               #
    # ------------------------------------------------------------------ #
    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"{self.display_name} request timed out",
                provider=self.name,
                code=AuthErrorCode.TIMEOUT_ERROR,
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"{self.display_name} request failed: {exc}",
                provider=self.name,
            ) from exc
        if resp.is_success:
            return resp
        raise self._error_from_response(resp)

    def _error_from_response(self, resp: httpx.Response) -> ProviderError:
        error_code: str | None = None
        description: str | None = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict):  # Graph API style
                error_code = str(err.get("type") or err.get("code") or "") or None
                description = err.get("message")
            elif err:
                error_code = str(err)
                description = body.get("error_description")

        if error_code in ("invalid_grant", "invalid_token"):
            code = AuthErrorCode.INVALID_TOKEN
        elif resp.status_code in (401, 403) or error_code == "access_denied":
            code = AuthErrorCode.ACCESS_DENIED
        else:
            code = AuthErrorCode.API_ERROR
        retryable = resp.status_code == 429 or resp.status_code >= 500
        self._log.warning(
            "%s returned HTTP %s (error=%s)", self.display_name, resp.status_code, error_code
        )
        return ProviderError(
            self.name,
            description or error_code or f"{self.display_name} returned HTTP {resp.status_code}",
            code,
            provider_error_code=error_code,
            provider_error_description=description,
            details={"status_code": resp.status_code},
            is_retryable=retryable,
        )

    def _json(self, resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(self.name, f"{self.display_name} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(self.name, f"{self.display_name} returned an unexpected payload")
        return data

    def _client_credentials(self) -> dict[str, str]:
        creds = {"client_id": self.config.client_id}
        if self.config.client_secret:
            creds["client_secret"] = self.config.client_secret
        return creds

    def _token_set(
        self, data: Mapping[str, Any], *, fallback_refresh_token: str | None = None
    ) -> TokenSet:
        try:
            return TokenSet.from_token_response(
                data,
                obtained_at=utc_now(self._clock),
                fallback_refresh_token=fallback_refresh_token,
            )
        except (ValueError, TypeError) as exc:
            raise ProviderError(self.name, str(exc), AuthErrorCode.INVALID_TOKEN) from exc

    # ------------------------------------------------------------------ #
    # Token endpoint                                                     #
    # ------------------------------------------------------------------ #
    async def exchange_code_for_tokens(
        self,
        code: str,
        *,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenSet:
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            **self._client_credentials(),
        }
        if code_verifier and self.supports_pkce:
            payload["code_verifier"] = code_verifier
        resp = await self._request(
            "POST", self.token_endpoint, data=payload, headers=_FORM_HEADERS
        )
        tokens = self._token_set(self._json(resp))
        self._log.info(
            "Exchanged authorization code with %s (expires in %ss)",
            self.display_name,
            tokens.expires_in,
        )
        return tokens

    async def refresh_tokens(self, refresh_token: str) -> TokenSet:
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._client_credentials(),
        }
        resp = await self._request(
            "POST", self.token_endpoint, data=payload, headers=_FORM_HEADERS
        )
        # providers may omit the refresh token when it is unchanged
        tokens = self._token_set(self._json(resp), fallback_refresh_token=refresh_token)
        self._log.info(
            "Refreshed %s tokens refresh_token=%s",
            self.display_name,
            mask_sensitive(refresh_token),
        )
        return tokens

    # ------------------------------------------------------------------ #
    # User info                                                          #
    # ------------------------------------------------------------------ #
    async def get_user_info(self, access_token: str, *, id_token: str | None = None) -> UserInfo:
        if not self.userinfo_endpoint:
            return self._user_from_id_token(id_token)
        resp = await self._request(
            "GET",
            self.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        return self._map_user(self._json(resp))

    def _user_from_id_token(self, id_token: str | None) -> UserInfo:
        if not id_token:
            raise ProviderError(
                self.name,
                f"{self.display_name} did not return an id_token",
                AuthErrorCode.INVALID_TOKEN,
            )
        try:
            claims = decode_jwt_payload(id_token)
        except ValueError as exc:
            raise ProviderError(self.name, str(exc), AuthErrorCode.INVALID_TOKEN) from exc
        return self._map_user(claims)

    def _map_user(self, data: Mapping[str, Any]) -> UserInfo:
        """Standard OIDC claim names."""
        subject = data.get("sub") or data.get("id")
        if not subject:
            raise ProviderError(
                self.name, f"{self.display_name} user profile has no subject"
            )
        subject = str(subject)
        return UserInfo(
            id=subject,
            provider=self.name,
            provider_user_id=subject,
            email=data.get("email"),
            email_verified=_as_bool(data.get("email_verified")),
            name=data.get("name"),
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
            picture=data.get("picture"),
            locale=data.get("locale"),
            last_login_at=utc_now(self._clock),
        )

    # ------------------------------------------------------------------ #
    # Revocation & health                                                #
    # ------------------------------------------------------------------ #
    async def _revoke_one(self, token: str) -> None:
        if not self.revoke_endpoint:
            raise ProviderError(self.name, f"{self.display_name} has no revocation endpoint")
        await self._request(
            "POST",
            self.revoke_endpoint,
            data={"token": token, **self._client_credentials()},
            headers=_FORM_HEADERS,
        )

    async def revoke_tokens(self, tokens: TokenSet) -> bool:
        """Best-effort revocation; ``False`` when any token was not revoked."""
        if not self.revoke_endpoint:
            return False
        ok = True
        for token in (tokens.access_token, tokens.refresh_token):
            if not token:
                continue
            try:
                await self._revoke_one(token)
            except EasyAuthError as exc:
                self._log.warning("Token revocation failed: %s", exc)
                ok = False
        return ok

    async def get_health_status(self) -> ProviderHealth:
        """Timed GET of the health endpoint. Never raises."""
        url = self.health_endpoint or self.authorization_endpoint
        started = time.perf_counter()

        def elapsed() -> float:
            return max(1.0, (time.perf_counter() - started) * 1000)

        try:
            resp = await self._http.get(url)
        except httpx.HTTPError as exc:
            return ProviderHealth(
                provider=self.name,
                is_healthy=False,
                response_time_ms=elapsed(),
                status="Unavailable",
                error=str(exc) or type(exc).__name__,
            )
        if resp.is_success:
            return ProviderHealth(self.name, True, elapsed(), "Available")
        return ProviderHealth(
            self.name, False, elapsed(), "Degraded", error=f"HTTP {resp.status_code}"
        )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)
