"""Typed, immutable records used by the auth core.

Sessions are never mutated in place: a refresh builds a new :class:`Session`
through :meth:`Session.with_tokens`.  All datetimes are timezone-aware UTC.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Mapping

from easyauth.core.errors import AuthErrorCode, EasyAuthError

AuthEventType = Literal[
    "login_initiated",
    "login_completed",
    "login_failed",
    "logout_initiated",
    "logout_completed",
    "session_refreshed",
    "session_expired",
]

ProviderCapability = Literal[
    "oauth2",
    "openid_connect",
    "refresh_token",
    "revoke_token",
    "user_info",
]


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _required_dt(value: str) -> datetime:
    parsed = _dt_from_str(value)
    if parsed is None:
        raise ValueError("missing datetime")
    return parsed


# --------------------------------------------------------------------------- #
# Login flow                                                                  #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class PendingAuthState:
    """A single outstanding login attempt, keyed by its state token."""

    state_token: str
    provider: str
    return_url: str
    created_at: float
    requested_scopes: tuple[str, ...] = ()
    custom_params: Mapping[str, str] = field(default_factory=dict)
    code_verifier: str | None = None
    nonce: str | None = None
    redirect_uri: str | None = None

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass(frozen=True, slots=True)
class UserInfo:
    id: str
    provider: str
    provider_user_id: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None
    locale: str | None = None
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()
    custom_claims: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    last_login_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["roles"] = list(self.roles)
        data["permissions"] = list(self.permissions)
        data["custom_claims"] = dict(self.custom_claims)
        data["created_at"] = _dt_to_str(self.created_at)
        data["last_login_at"] = _dt_to_str(self.last_login_at)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UserInfo:
        return cls(
            id=str(data["id"]),
            provider=str(data["provider"]),
            provider_user_id=str(data.get("provider_user_id") or data["id"]),
            email=data.get("email"),
            email_verified=bool(data.get("email_verified", False)),
            name=data.get("name"),
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
            picture=data.get("picture"),
            locale=data.get("locale"),
            roles=tuple(data.get("roles") or ()),
            permissions=tuple(data.get("permissions") or ()),
            custom_claims=dict(data.get("custom_claims") or {}),
            created_at=_dt_from_str(data.get("created_at")),
            last_login_at=_dt_from_str(data.get("last_login_at")),
        )


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Snapshot of the tokens issued by a provider."""

    access_token: str
    expires_at: datetime
    expires_in: int
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    scopes: tuple[str, ...] = ()

    @classmethod
    def from_token_response(
        cls,
        data: Mapping[str, Any],
        *,
        obtained_at: datetime,
        default_expires_in: int = 3600,
        fallback_refresh_token: str | None = None,
    ) -> TokenSet:
        """Build from an RFC 6749 §5.1 token response body.

        Raises
        ------
        ValueError
            If ``access_token`` is absent.
        """
        access_token = data.get("access_token")
        if not access_token:
            raise ValueError("Token response missing access_token")
        expires_in = int(data.get("expires_in") or default_expires_in)
        scope = data.get("scope") or ""
        scopes = tuple(s for s in str(scope).replace(",", " ").split() if s)
        return cls(
            access_token=str(access_token),
            expires_in=expires_in,
            expires_at=obtained_at + timedelta(seconds=expires_in),
            token_type=str(data.get("token_type") or "Bearer"),
            refresh_token=data.get("refresh_token") or fallback_refresh_token,
            id_token=data.get("id_token"),
            scopes=scopes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "expires_at": _dt_to_str(self.expires_at),
            "expires_in": self.expires_in,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TokenSet:
        return cls(
            access_token=str(data["access_token"]),
            expires_at=_required_dt(data["expires_at"]),
            expires_in=int(data.get("expires_in") or 0),
            token_type=str(data.get("token_type") or "Bearer"),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            scopes=tuple(data.get("scopes") or ()),
        )


@dataclass(frozen=True, slots=True)
class Session:
    """The durable authenticated-user record."""

    session_id: str
    user: UserInfo
    tokens: TokenSet
    provider: str
    created_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    is_valid: bool = True

    @property
    def refresh_token(self) -> str | None:
        return self.tokens.refresh_token

    def is_active(self, now: datetime) -> bool:
        """Valid iff the flag is set AND ``expires_at`` lies in the future."""
        return self.is_valid and self.expires_at > now

    def with_tokens(self, tokens: TokenSet, now: datetime) -> Session:
        """Return a copy carrying *tokens*; the original is left untouched."""
        return dataclasses.replace(
            self,
            tokens=tokens,
            expires_at=tokens.expires_at,
            last_accessed_at=now,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user": self.user.to_dict(),
            "tokens": self.tokens.to_dict(),
            "provider": self.provider,
            "created_at": _dt_to_str(self.created_at),
            "last_accessed_at": _dt_to_str(self.last_accessed_at),
            "expires_at": _dt_to_str(self.expires_at),
            "is_valid": self.is_valid,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Session:
        return cls(
            session_id=str(data["session_id"]),
            user=UserInfo.from_dict(data["user"]),
            tokens=TokenSet.from_dict(data["tokens"]),
            provider=str(data["provider"]),
            created_at=_required_dt(data["created_at"]),
            last_accessed_at=_required_dt(data["last_accessed_at"]),
            expires_at=_required_dt(data["expires_at"]),
            is_valid=bool(data.get("is_valid", False)),
        )


# --------------------------------------------------------------------------- #
# Results                                                                     #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class AuthResult:
    """Outcome of ``initiate_login`` / ``handle_callback``."""

    success: bool
    auth_url: str | None = None
    state: str | None = None
    session: Session | None = None
    user: UserInfo | None = None
    tokens: TokenSet | None = None
    error: str | None = None
    error_code: AuthErrorCode | None = None
    exception: EasyAuthError | None = None

    @classmethod
    def failure(cls, exc: EasyAuthError) -> AuthResult:
        return cls(success=False, error=str(exc), error_code=exc.code, exception=exc)


@dataclass(frozen=True, slots=True)
class TokenRefreshResult:
    success: bool
    tokens: TokenSet | None = None
    session: Session | None = None
    error: str | None = None
    error_code: AuthErrorCode | None = None
    exception: EasyAuthError | None = None

    @classmethod
    def failure(cls, exc: EasyAuthError) -> TokenRefreshResult:
        return cls(success=False, error=str(exc), error_code=exc.code, exception=exc)


@dataclass(frozen=True, slots=True)
class SessionValidationResult:
    is_valid: bool
    session: Session | None = None
    error: str | None = None
    refresh_required: bool = False


# --------------------------------------------------------------------------- #
# Providers / diagnostics                                                     #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class ProviderInfo:
    name: str
    kind: str
    display_name: str
    is_enabled: bool
    capabilities: tuple[ProviderCapability, ...] = ()


@dataclass(frozen=True, slots=True)
class ProviderHealth:
    provider: str
    is_healthy: bool
    response_time_ms: float
    status: str
    error: str | None = None


@dataclass(frozen=True, slots=True)
class HealthCheckResult:
    status: Literal["healthy", "degraded", "unhealthy"]
    checks: Mapping[str, ProviderHealth]
    timestamp: datetime


# --------------------------------------------------------------------------- #
# Events                                                                      #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class AuthEvent:
    type: AuthEventType
    timestamp: datetime
    data: Mapping[str, Any] = field(default_factory=dict)
    provider: str | None = None
    session_id: str | None = None
    user_id: str | None = None
