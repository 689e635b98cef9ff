"""Azure AD B2C user flows.

Endpoints are per tenant and per policy (user flow).  A ``p`` custom
parameter on a login selects another policy, e.g. password reset.
"""

from __future__ import annotations

from typing import Any, Mapping

from easyauth.core.clock import utc_now
from easyauth.core.errors import ProviderError
from easyauth.core.models import TokenSet, UserInfo
from easyauth.providers.base import AuthorizationRequest, ProviderAdapter, encode_query


class AzureB2CProvider(ProviderAdapter):
    display_name_default = "Microsoft"
    default_scopes = ("openid", "offline_access")
    capabilities = ("oauth2", "openid_connect", "refresh_token", "user_info")

    userinfo_endpoint = None
    revoke_endpoint = None

    def _policy_base(self, policy: str | None = None) -> str:
        tenant = self.config.tenant_name
        return (
            f"https://{tenant}.b2clogin.com/{tenant}.onmicrosoft.com/"
            f"{policy or self.config.sign_in_policy}"
        )

    @property
    def authorization_endpoint(self) -> str:  # type: ignore[override]
        return f"{self._policy_base()}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:  # type: ignore[override]
        return f"{self._policy_base()}/oauth2/v2.0/token"

    @property
    def health_endpoint(self) -> str:  # type: ignore[override]
        return f"{self._policy_base()}/v2.0/.well-known/openid-configuration"

    def validate_configuration(self) -> bool:
        cfg = self.config
        return bool(cfg.client_id and cfg.tenant_name and cfg.sign_in_policy)

    def build_authorization_url(self, request: AuthorizationRequest) -> str:
        params = self._authorization_params(request)
        params.update(self.config.custom_params or {})
        params.update(request.custom_params or {})
        policy = params.pop("p", None)
        return f"{self._policy_base(policy)}/oauth2/v2.0/authorize?{encode_query(params)}"

    async def revoke_tokens(self, tokens: TokenSet) -> bool:
        # B2C exposes no revocation endpoint
        return False

    def _map_user(self, data: Mapping[str, Any]) -> UserInfo:
        subject = data.get("oid") or data.get("sub")
        if not subject:
            raise ProviderError(self.name, "Azure B2C id_token has no subject")
        emails = data.get("emails") or ()
        email = data.get("email") or (emails[0] if emails else None)
        claims = {k: data[k] for k in ("tfp", "acr", "idp") if k in data}
        return UserInfo(
            id=str(subject),
            provider=self.name,
            provider_user_id=str(subject),
            email=email,
            # B2C only issues addresses it verified during sign-up
            email_verified=bool(email),
            name=data.get("name"),
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
            custom_claims=claims,
            last_login_at=utc_now(self._clock),
        )
