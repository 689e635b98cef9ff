"""Facebook Login through the Graph API."""

from __future__ import annotations

from typing import Any, Mapping

from easyauth.core.clock import utc_now
from easyauth.core.errors import AuthErrorCode, EasyAuthError, ProviderError
from easyauth.core.models import TokenSet, UserInfo
from easyauth.providers.base import ProviderAdapter

_PROFILE_FIELDS = "id,email,first_name,last_name,name,picture.type(large)"


class FacebookProvider(ProviderAdapter):
    """Facebook issues no refresh tokens; sessions end with the access token."""

    display_name_default = "Facebook"
    default_scopes = ("email", "public_profile")
    capabilities = ("oauth2", "revoke_token", "user_info")

    @property
    def _graph(self) -> str:
        return f"https://graph.facebook.com/{self.config.graph_api_version}"

    @property
    def authorization_endpoint(self) -> str:  # type: ignore[override]
        return f"https://www.facebook.com/{self.config.graph_api_version}/dialog/oauth"

    @property
    def token_endpoint(self) -> str:  # type: ignore[override]
        return f"{self._graph}/oauth/access_token"

    @property
    def userinfo_endpoint(self) -> str:  # type: ignore[override]
        return f"{self._graph}/me?fields={_PROFILE_FIELDS}"

    @property
    def revoke_endpoint(self) -> str:  # type: ignore[override]
        return f"{self._graph}/me/permissions"

    def validate_configuration(self) -> bool:
        # app ids are numeric
        return bool(self.config.client_id and self.config.client_id.isdigit())

    async def refresh_tokens(self, refresh_token: str) -> TokenSet:
        raise ProviderError(
            self.name,
            "Facebook does not support refresh tokens",
            AuthErrorCode.INVALID_TOKEN,
        )

    async def revoke_tokens(self, tokens: TokenSet) -> bool:
        try:
            resp = await self._request(
                "DELETE",
                self.revoke_endpoint,
                params={"access_token": tokens.access_token},
            )
            data = self._json(resp)
        except EasyAuthError as exc:
            self._log.warning("Token revocation failed: %s", exc)
            return False
        return bool(data.get("success", False))

    def _map_user(self, data: Mapping[str, Any]) -> UserInfo:
        if not data.get("id"):
            raise ProviderError(self.name, "Facebook user profile has no id")
        picture = data.get("picture")
        picture_url = None
        if isinstance(picture, dict):
            picture_url = (picture.get("data") or {}).get("url")
        subject = str(data["id"])
        email = data.get("email")
        return UserInfo(
            id=subject,
            provider=self.name,
            provider_user_id=subject,
            email=email,
            # Graph only exposes confirmed addresses
            email_verified=bool(email),
            name=data.get("name"),
            given_name=data.get("first_name"),
            family_name=data.get("last_name"),
            picture=picture_url,
            last_login_at=utc_now(self._clock),
        )
