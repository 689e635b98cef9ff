"""AuthEngine – the login / session state machine.

UI bindings and web handlers call the façade methods below; provider
specifics live in :mod:`easyauth.providers` and persistence in
:mod:`easyauth.core.session_store`.

Life-cycle::

    Unauthenticated -> LoginPending -> Authenticated
        -> [RefreshPending -> Authenticated | Unauthenticated]
        -> Unauthenticated (sign-out)

Expected failures (bad input, provider rejection, invalid state) come back as
``AuthResult`` / ``TokenRefreshResult`` failures carrying the typed error;
exceptions are reserved for programmer errors such as an invalid
configuration.  :meth:`AuthEngine.sign_out` never fails.

Construct exactly one engine per application and inject it where needed.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence, get_args

import anyio
import httpx

from easyauth.core.clock import Clock, default_clock, utc_now
from easyauth.core.config import AuthConfig
from easyauth.core.crypto import (
    constant_time_equals,
    decode_jwt_payload,
    generate_nonce,
    generate_pkce,
    generate_session_id,
    generate_state,
    is_token_expired,
)
from easyauth.core.errors import (
    AuthErrorCode,
    ConfigurationError,
    EasyAuthError,
    ProviderError,
    SecurityError,
    SessionError,
    ValidationError,
    from_unknown,
)
from easyauth.core.events import EventEmitter, Listener
from easyauth.core.log_utils import get_auth_logger
from easyauth.core.models import (
    AuthEvent,
    AuthEventType,
    AuthResult,
    HealthCheckResult,
    ProviderHealth,
    ProviderInfo,
    Session,
    SessionValidationResult,
    TokenRefreshResult,
    TokenSet,
    UserInfo,
)
from easyauth.core.session_store import SessionStore
from easyauth.core.state import StateManager
from easyauth.core.storage import StorageAdapter, create_storage
from easyauth.core.urls import is_allowed_redirect, is_valid_return_url
from easyauth.providers import ProviderAdapter, create_provider
from easyauth.providers.base import AuthorizationRequest

_LOG = logging.getLogger("easyauth.core.engine")

_EVENT_TYPES: frozenset[str] = frozenset(get_args(AuthEventType))


class AuthEngine:
    """Application service orchestrating OAuth 2.0 logins and the session."""

    def __init__(
        self,
        config: AuthConfig,
        *,
        storage: StorageAdapter | None = None,
        providers: Iterable[ProviderAdapter] | None = None,
        events: EventEmitter | None = None,
        state_manager: StateManager | None = None,
        clock: Clock = default_clock,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self._clock = clock
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.http_timeout)
        self.events = events or EventEmitter()
        self.state_manager = state_manager or StateManager(clock=clock)
        self.session_store = SessionStore(
            storage or create_storage(config.session, config.security),
            key=config.session.storage_key,
        )

        self._providers: dict[str, ProviderAdapter] = {}
        if providers is None:
            providers = [create_provider(cfg, self._http, clock=clock) for cfg in config.providers]
        for adapter in providers:
            self.register_provider(adapter)

        self._current: Session | None = None
        self._refresh_lock = anyio.Lock()
        self._callbacks_in_flight: set[str] = set()
        # bumped by sign_out; work started under an older generation is dropped
        self._generation = 0

    # ------------------------------------------------------------------ #
    # Resource management                                                #
    # ------------------------------------------------------------------ #
    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> AuthEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Providers                                                          #
    # ------------------------------------------------------------------ #
    def register_provider(self, adapter: ProviderAdapter) -> None:
        """Add or replace *adapter* under its name.

        Raises
        ------
        ConfigurationError
            If an enabled adapter fails its configuration check.
        """
        if adapter.is_enabled and not adapter.validate_configuration():
            raise ConfigurationError(
                f"Invalid configuration for provider {adapter.name!r}",
                {"provider": adapter.name, "kind": adapter.kind},
            )
        if adapter.name in self._providers:
            _LOG.info("Replacing registered provider %s", adapter.name)
        self._providers[adapter.name] = adapter

    def get_available_providers(self) -> list[ProviderInfo]:
        return [a.info() for a in self._providers.values() if a.is_enabled]

    def get_provider_info(self, name: str) -> ProviderInfo | None:
        adapter = self._providers.get(name)
        return adapter.info() if adapter else None

    def _resolve_provider(self, name: str | None) -> ProviderAdapter:
        if not name:
            name = self.config.default_provider
        if not name:
            enabled = [a for a in self._providers.values() if a.is_enabled]
            if not enabled:
                raise ValidationError(
                    "No provider specified and none is enabled",
                    AuthErrorCode.PROVIDER_NOT_FOUND,
                )
            return enabled[0]
        adapter = self._providers.get(name)
        if adapter is None:
            raise ValidationError(
                f"Provider {name!r} is not configured",
                AuthErrorCode.PROVIDER_NOT_FOUND,
                provider=name,
            )
        if not adapter.is_enabled:
            raise ValidationError(
                f"Provider {name!r} is disabled",
                AuthErrorCode.PROVIDER_DISABLED,
                provider=name,
            )
        return adapter

    # ------------------------------------------------------------------ #
    # Events                                                             #
    # ------------------------------------------------------------------ #
    def add_event_listener(self, event_type: AuthEventType, handler: Listener) -> None:
        if event_type not in _EVENT_TYPES:
            raise ValueError(f"unknown event type: {event_type!r}")
        self.events.on(event_type, handler)

    def remove_event_listener(self, event_type: AuthEventType, handler: Listener) -> None:
        self.events.off(event_type, handler)

    def _emit(
        self,
        event_type: AuthEventType,
        *,
        provider: str | None = None,
        session: Session | None = None,
        **data: Any,
    ) -> None:
        self.events.emit(
            event_type,
            AuthEvent(
                type=event_type,
                timestamp=utc_now(self._clock),
                data=data,
                provider=provider or (session.provider if session else None),
                session_id=session.session_id if session else None,
                user_id=session.user.id if session else None,
            ),
        )

    # ------------------------------------------------------------------ #
    # Login                                                              #
    # ------------------------------------------------------------------ #
    async def initiate_login(
        self,
        provider: str | None,
        return_url: str,
        *,
        scopes: Sequence[str] | None = None,
        custom_params: Mapping[str, str] | None = None,
    ) -> AuthResult:
        """Start a login and return the provider authorization URL."""
        security = self.config.security
        try:
            if not is_valid_return_url(return_url, https_only=security.https_only):
                raise ValidationError(
                    "Return URL must be an absolute http(s) URL",
                    AuthErrorCode.INVALID_REDIRECT_URI,
                    details={"return_url": return_url},
                )
            if not is_allowed_redirect(return_url, security.allowed_redirect_origins):
                raise SecurityError(
                    AuthErrorCode.INVALID_REDIRECT_URI,
                    "Return URL origin is not allowed",
                    "medium",
                    details={"return_url": return_url},
                )
            adapter = self._resolve_provider(provider)

            state = generate_state(security.state_length)
            verifier = challenge = None
            if security.pkce_enabled and adapter.supports_pkce:
                verifier, challenge = generate_pkce()
            effective_scopes = adapter.scopes_for(scopes)
            nonce = generate_nonce() if "openid" in effective_scopes else None
            redirect_uri = self.config.redirect_uri_for(adapter.config)

            auth_url = adapter.build_authorization_url(
                AuthorizationRequest(
                    state=state,
                    redirect_uri=redirect_uri,
                    scopes=effective_scopes,
                    code_challenge=challenge,
                    nonce=nonce,
                    custom_params=dict(custom_params or {}),
                )
            )
            # state is recorded only after the URL is built
            self.state_manager.store_state(
                state,
                provider=adapter.name,
                return_url=return_url,
                scopes=effective_scopes,
                custom_params=custom_params,
                code_verifier=verifier,
                nonce=nonce,
                redirect_uri=redirect_uri,
            )
        except Exception as exc:  # noqa: BLE001 – returned as a typed failure
            error_obj = from_unknown(exc, {"provider": provider})
            _LOG.warning("Login initiation failed code=%s: %s", error_obj.code.value, error_obj)
            return AuthResult.failure(error_obj)

        log = get_auth_logger(
            base_logger_name=_LOG.name, provider=adapter.name, state=state
        )
        log.info("Login initiated (pkce=%s)", challenge is not None)
        self._emit("login_initiated", provider=adapter.name, return_url=return_url)
        return AuthResult(success=True, auth_url=auth_url, state=state)

    async def handle_callback(
        self,
        *,
        state: str,
        provider: str,
        code: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> AuthResult:
        """Complete a login from the provider redirect."""
        log = get_auth_logger(base_logger_name=_LOG.name, provider=provider, state=state)

        if error:
            exc: EasyAuthError = ProviderError(
                provider,
                error_description or error,
                AuthErrorCode.ACCESS_DENIED if error == "access_denied" else AuthErrorCode.API_ERROR,
                provider_error_code=error,
                provider_error_description=error_description,
            )
            log.warning("Provider returned error=%s", error)
            return self._login_failed(exc)

        if state in self._callbacks_in_flight:
            log.warning("Duplicate callback while the first is in flight")
            return self._login_failed(
                SecurityError(
                    AuthErrorCode.CSRF_ERROR,
                    "This sign-in attempt is already being processed",
                    "high",
                    provider=provider,
                )
            )

        if not self.state_manager.validate_state(state):
            log.warning("Unknown, expired or already used state")
            return self._login_failed(
                SecurityError(
                    AuthErrorCode.CSRF_ERROR,
                    "Invalid or expired state parameter",
                    "high",
                    provider=provider,
                )
            )

        pending = self.state_manager.get_state_data(state)
        if pending is None:
            return self._login_failed(
                EasyAuthError(
                    AuthErrorCode.UNKNOWN_ERROR,
                    "Pending login context disappeared during validation",
                    provider=provider,
                )
            )
        if pending.provider != provider:
            log.warning("Callback provider does not match pending login")
            return self._login_failed(
                SecurityError(
                    AuthErrorCode.INVALID_STATE,
                    "Callback provider does not match the pending login",
                    "high",
                    provider=provider,
                    details={"expected_provider": pending.provider},
                )
            )
        if not code:
            return self._login_failed(
                ValidationError("Authorization code is missing", provider=provider)
            )

        self._callbacks_in_flight.add(state)
        try:
            adapter = self._resolve_provider(pending.provider)
            tokens = await adapter.exchange_code_for_tokens(
                code,
                redirect_uri=pending.redirect_uri or self.config.redirect_uri_for(adapter.config),
                code_verifier=pending.code_verifier,
            )
            self._check_nonce(tokens, pending.nonce, provider)
            user = await adapter.get_user_info(tokens.access_token, id_token=tokens.id_token)

            now = utc_now(self._clock)
            session = Session(
                session_id=generate_session_id(self._clock),
                user=user,
                tokens=tokens,
                provider=adapter.name,
                created_at=now,
                last_accessed_at=now,
                expires_at=tokens.expires_at,
            )
            await self.session_store.store_session(session)
        except Exception as exc:  # noqa: BLE001 – returned as a typed failure
            error_obj = from_unknown(exc, {"provider": provider})
            log.warning("Callback failed code=%s: %s", error_obj.code.value, error_obj)
            return self._login_failed(error_obj)
        finally:
            self._callbacks_in_flight.discard(state)

        self._current = session
        self.state_manager.clear_state(state)
        get_auth_logger(
            base_logger_name=_LOG.name, session_id=session.session_id, provider=provider
        ).info("Login completed for user=%s", user.id)
        self._emit("login_completed", session=session)
        return AuthResult(success=True, session=session, user=user, tokens=tokens)

    def _check_nonce(self, tokens: TokenSet, expected: str | None, provider: str) -> None:
        if not expected or not tokens.id_token:
            return
        try:
            claims = decode_jwt_payload(tokens.id_token)
        except ValueError:
            return
        received = claims.get("nonce")
        if received is not None and not constant_time_equals(str(received), expected):
            raise SecurityError(
                AuthErrorCode.INVALID_TOKEN,
                "ID token nonce does not match the login request",
                "high",
                provider=provider,
            )

    def _login_failed(self, exc: EasyAuthError) -> AuthResult:
        self._emit(
            "login_failed",
            provider=exc.provider,
            error=str(exc),
            error_code=exc.code.value,
        )
        return AuthResult.failure(exc)

    # ------------------------------------------------------------------ #
    # Session                                                            #
    # ------------------------------------------------------------------ #
    async def get_current_session(self) -> Session | None:
        """Return the active session, adopting a valid stored one.

        Expired sessions are dropped from memory and storage and reported
        through ``session_expired``.
        """
        now = utc_now(self._clock)
        expired: Session | None = None
        if self._current is not None:
            if self._current.is_active(now):
                return self._current
            expired = self._current
            self._current = None

        stored = await self.session_store.get_session()
        if stored is not None and stored.is_active(now):
            self._current = stored
            return stored
        if stored is not None:
            expired = expired or stored
            await self.session_store.clear_session()
        if expired is not None:
            _LOG.info("Session expired for provider=%s", expired.provider)
            self._emit("session_expired", session=expired)
        return None

    async def validate_session(self) -> SessionValidationResult:
        session = await self.get_current_session()
        if session is None:
            return SessionValidationResult(is_valid=False, error="No active session")
        refresh_required = is_token_expired(
            session.tokens.expires_at,
            self.config.session.refresh_threshold_seconds,
            clock=self._clock,
        )
        return SessionValidationResult(
            is_valid=True, session=session, refresh_required=refresh_required
        )

    async def is_logged_in(self) -> bool:
        return await self.get_current_session() is not None

    async def get_user(self) -> UserInfo | None:
        session = await self.get_current_session()
        return session.user if session else None

    async def get_access_token(self) -> str | None:
        """Access token of the active session, refreshed first when close to expiry.

        A failed refresh falls back to the current token while it is still
        valid.
        """
        session = await self.get_current_session()
        if session is None:
            return None
        needs_refresh = is_token_expired(
            session.tokens.expires_at,
            self.config.session.refresh_threshold_seconds,
            clock=self._clock,
        )
        if self.config.session.auto_refresh and needs_refresh and session.refresh_token:
            result = await self.refresh_session()
            if result.success and result.session is not None:
                return result.session.tokens.access_token
            session = await self.get_current_session()
            if session is None:
                return None
        return session.tokens.access_token

    async def refresh_session(self) -> TokenRefreshResult:
        """Exchange the refresh token for new tokens.

        Concurrent calls share one provider round-trip.  A failure leaves the
        current session untouched; the caller decides whether to sign out.
        A refresh overtaken by :meth:`sign_out` is discarded and reported as
        ``SESSION_NOT_FOUND``.
        """
        generation = self._generation
        try:
            session = await self.get_current_session()
            if session is None:
                raise SessionError(AuthErrorCode.SESSION_NOT_FOUND, "No active session")
            if not session.refresh_token:
                raise SessionError(
                    AuthErrorCode.INVALID_SESSION,
                    "Session has no refresh token",
                    session.session_id,
                    provider=session.provider,
                )
        except EasyAuthError as exc:
            return TokenRefreshResult.failure(exc)

        observed = session.tokens
        async with self._refresh_lock:
            if generation != self._generation:
                return self._refresh_overtaken(session)
            current = self._current
            if current is not None and current.tokens is not observed:
                # refreshed by a concurrent caller while we waited
                return TokenRefreshResult(success=True, tokens=current.tokens, session=current)

            log = get_auth_logger(
                base_logger_name=_LOG.name,
                session_id=session.session_id,
                provider=session.provider,
            )
            try:
                adapter = self._resolve_provider(session.provider)
                tokens = await adapter.refresh_tokens(session.refresh_token or "")
                if generation != self._generation:
                    return self._refresh_overtaken(session)
                refreshed = session.with_tokens(tokens, utc_now(self._clock))
                await self.session_store.store_session(refreshed)
                if generation != self._generation:
                    # sign-out ran while the blob was being written
                    await self.session_store.clear_session()
                    return self._refresh_overtaken(session)
            except Exception as exc:  # noqa: BLE001 – returned as a typed failure
                error_obj = from_unknown(exc, {"provider": session.provider})
                log.warning("Token refresh failed code=%s: %s", error_obj.code.value, error_obj)
                return TokenRefreshResult.failure(error_obj)

            self._current = refreshed
            log.info("Session refreshed (expires in %ss)", tokens.expires_in)
            self._emit("session_refreshed", session=refreshed)
            return TokenRefreshResult(success=True, tokens=tokens, session=refreshed)

    def _refresh_overtaken(self, session: Session) -> TokenRefreshResult:
        _LOG.info("Discarding refresh for provider=%s: signed out meanwhile", session.provider)
        return TokenRefreshResult.failure(
            SessionError(
                AuthErrorCode.SESSION_NOT_FOUND,
                "Signed out while the refresh was in flight",
                session.session_id,
                provider=session.provider,
            )
        )

    async def sign_out(self) -> bool:
        """Clear all local auth state. Always returns ``True``.

        Remote token revocation is attempted but its failure only logs.
        """
        self._generation += 1
        session = self._current
        self._emit("logout_initiated", session=session)
        try:
            if session is None:
                session = await self.session_store.get_session()
            if session is not None:
                await self._revoke_remote(session)
        except Exception:  # noqa: BLE001 – local sign-out must not fail
            _LOG.warning("Remote sign-out step failed", exc_info=True)

        self._current = None
        self.state_manager.clear_all_states()
        try:
            await self.session_store.clear_session()
        except Exception:  # noqa: BLE001 – local sign-out must not fail
            _LOG.error("Could not clear stored session", exc_info=True)

        _LOG.info("Signed out")
        self._emit("logout_completed", provider=session.provider if session else None)
        return True

    async def _revoke_remote(self, session: Session) -> None:
        adapter = self._providers.get(session.provider)
        if adapter is None:
            return
        try:
            revoked = await adapter.revoke_tokens(session.tokens)
        except Exception as exc:  # noqa: BLE001 – revocation is best-effort
            _LOG.warning("Token revocation with %s failed: %s", session.provider, exc)
            return
        if not revoked:
            _LOG.warning("Tokens were not revoked by %s", session.provider)

    # ------------------------------------------------------------------ #
    # Diagnostics                                                        #
    # ------------------------------------------------------------------ #
    async def get_health_status(self) -> HealthCheckResult:
        checks: dict[str, ProviderHealth] = {}

        async def _check(adapter: ProviderAdapter) -> None:
            checks[adapter.name] = await adapter.get_health_status()

        async with anyio.create_task_group() as tg:
            for adapter in self._providers.values():
                if adapter.is_enabled:
                    tg.start_soon(_check, adapter)

        healthy = sum(1 for c in checks.values() if c.is_healthy)
        if checks and healthy == len(checks):
            status = "healthy"
        elif healthy:
            status = "degraded"
        else:
            status = "unhealthy"
        return HealthCheckResult(status=status, checks=checks, timestamp=utc_now(self._clock))
