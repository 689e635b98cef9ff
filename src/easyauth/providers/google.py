"""Google Sign-In (OAuth 2.0 + OpenID Connect)."""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Final, Mapping

from easyauth.core.models import UserInfo
from easyauth.providers.base import AuthorizationRequest, ProviderAdapter

_CLIENT_ID_RE: Final = re.compile(
    r"^[a-zA-Z0-9]+([._-][a-zA-Z0-9]+)*\.googleusercontent\.com$"
)


class GoogleProvider(ProviderAdapter):
    display_name_default = "Google"
    default_scopes = ("openid", "profile", "email")
    capabilities = ("oauth2", "openid_connect", "refresh_token", "revoke_token", "user_info")

    authorization_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    userinfo_endpoint = "https://www.googleapis.com/oauth2/v2/userinfo"
    revoke_endpoint = "https://oauth2.googleapis.com/revoke"
    health_endpoint = "https://accounts.google.com/.well-known/openid-configuration"

    def validate_configuration(self) -> bool:
        return bool(_CLIENT_ID_RE.match(self.config.client_id or ""))

    def _authorization_params(self, request: AuthorizationRequest) -> dict[str, str]:
        params = super()._authorization_params(request)
        cfg = self.config
        params["access_type"] = cfg.access_type
        if cfg.include_granted_scopes:
            params["include_granted_scopes"] = "true"
        if cfg.hosted_domain:
            params["hd"] = cfg.hosted_domain
        if cfg.prompt:
            params["prompt"] = cfg.prompt
        return params

    async def _revoke_one(self, token: str) -> None:
        # Google takes the token as a query parameter and no client auth
        await self._request("POST", self.revoke_endpoint, params={"token": token})

    def _map_user(self, data: Mapping[str, Any]) -> UserInfo:
        # v2 userinfo uses id / verified_email; OIDC claims use sub / email_verified
        normalized = dict(data)
        if "email_verified" not in normalized and "verified_email" in normalized:
            normalized["email_verified"] = normalized["verified_email"]
        user = super()._map_user(normalized)
        hd = data.get("hd")
        if hd:
            user = dataclasses.replace(user, custom_claims={**user.custom_claims, "hd": hd})
        return user
