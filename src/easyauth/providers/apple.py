"""Sign in with Apple.

Apple has no userinfo endpoint: the profile comes from the ``id_token``
claims returned by the token endpoint.  Name and email scopes force
``response_mode=form_post``, so the callback arrives as a POST.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Mapping

from easyauth.core.models import UserInfo
from easyauth.providers.base import AuthorizationRequest, ProviderAdapter

_FORM_POST_SCOPES = frozenset({"name", "email"})


class AppleProvider(ProviderAdapter):
    display_name_default = "Apple"
    default_scopes = ("name", "email")
    capabilities = ("oauth2", "openid_connect", "refresh_token", "revoke_token", "user_info")

    authorization_endpoint = "https://appleid.apple.com/auth/authorize"
    token_endpoint = "https://appleid.apple.com/auth/token"
    userinfo_endpoint = None
    revoke_endpoint = "https://appleid.apple.com/auth/revoke"
    health_endpoint = "https://appleid.apple.com/.well-known/openid-configuration"

    def validate_configuration(self) -> bool:
        cfg = self.config
        return bool(cfg.client_id and cfg.team_id and cfg.client_secret)

    def _authorization_params(self, request: AuthorizationRequest) -> dict[str, str]:
        params = super()._authorization_params(request)
        if _FORM_POST_SCOPES & set(self.scopes_for(request.scopes)):
            params["response_mode"] = "form_post"
        return params

    async def _revoke_one(self, token: str) -> None:
        await self._request(
            "POST",
            self.revoke_endpoint,
            data={
                "token": token,
                "token_type_hint": "access_token",
                **self._client_credentials(),
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    def _map_user(self, data: Mapping[str, Any]) -> UserInfo:
        user = super()._map_user(data)
        private = data.get("is_private_email")
        if private is not None:
            user = dataclasses.replace(
                user,
                custom_claims={"is_private_email": str(private).lower() == "true"},
            )
        return user
