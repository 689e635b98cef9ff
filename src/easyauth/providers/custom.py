"""Generic OAuth 2.0 / OIDC provider driven entirely by configuration."""

from __future__ import annotations

from typing import Any

import httpx

from easyauth.core.clock import Clock, default_clock
from easyauth.core.models import ProviderCapability, UserInfo
from easyauth.core.urls import is_valid_return_url
from easyauth.providers.base import ProviderAdapter


class CustomProvider(ProviderAdapter):
    def __init__(
        self,
        config: Any,
        http_client: httpx.AsyncClient,
        *,
        clock: Clock = default_clock,
    ) -> None:
        super().__init__(config, http_client, clock=clock)
        self.authorization_endpoint = config.authorization_url
        self.token_endpoint = config.token_url
        self.userinfo_endpoint = config.userinfo_url
        self.revoke_endpoint = config.revoke_url
        self.health_endpoint = config.health_url
        self.supports_pkce = config.supports_pkce

    @property
    def display_name(self) -> str:
        return self.config.display_name or self.name.replace("-", " ").title()

    @property
    def capabilities(self) -> tuple[ProviderCapability, ...]:  # type: ignore[override]
        caps: list[ProviderCapability] = ["oauth2", "refresh_token", "user_info"]
        if "openid" in self.scopes_for():
            caps.insert(1, "openid_connect")
        if self.revoke_endpoint:
            caps.append("revoke_token")
        return tuple(caps)

    def validate_configuration(self) -> bool:
        urls = [self.authorization_endpoint, self.token_endpoint]
        urls += [u for u in (self.userinfo_endpoint, self.revoke_endpoint) if u]
        return bool(self.config.client_id) and all(is_valid_return_url(u) for u in urls)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self.config.custom_headers:
            kwargs["headers"] = {**self.config.custom_headers, **(kwargs.get("headers") or {})}
        return await super()._request(method, url, **kwargs)

    async def get_user_info(self, access_token: str, *, id_token: str | None = None) -> UserInfo:
        if not self.userinfo_endpoint:
            return self._user_from_id_token(id_token)
        if self.config.token_location == "query":
            resp = await self._request(
                "GET",
                self.userinfo_endpoint,
                params={"access_token": access_token},
                headers={"Accept": "application/json"},
            )
        else:
            resp = await self._request(
                "GET",
                self.userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        return self._map_user(self._json(resp))
