"""Unit tests for AuthEngine: login flow, session life-cycle and sign-out."""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlsplit

import anyio
import httpx
import pytest

from easyauth import AuthEngine
from easyauth.core.config import (
    AuthConfig,
    FacebookProviderConfig,
    SecurityConfig,
    SessionConfig,
)
from easyauth.core.errors import AuthErrorCode, ConfigurationError, ProviderError, SecurityError
from easyauth.core.models import AuthEvent
from easyauth.core.storage import MemoryStorage
from easyauth.providers import GoogleProvider

RETURN_URL = "https://app.example.com/after-login"
SESSION_KEY = "easyauth_session"


class FakeGoogle:
    """MockTransport handler standing in for Google's OAuth endpoints."""

    def __init__(self) -> None:
        self.calls: dict[str, int] = {}
        self.token_body: dict[str, Any] = {
            "access_token": "AT",
            "refresh_token": "RT",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        self.refresh_status = 200
        self.refresh_body: dict[str, Any] = {"access_token": "AT2", "expires_in": 3600}
        self.gate: anyio.Event | None = None
        self.health_status = 200

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] = self.calls.get(path, 0) + 1
        if path == "/token":
            if self.gate is not None:
                await self.gate.wait()
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            if form["grant_type"] == "refresh_token":
                await anyio.sleep(0.01)
                return httpx.Response(self.refresh_status, json=self.refresh_body)
            return httpx.Response(200, json=self.token_body)
        if path == "/oauth2/v2/userinfo":
            return httpx.Response(200, json={"id": "u1", "email": "a@b.com", "verified_email": True})
        if path == "/revoke":
            return httpx.Response(200)
        if path == "/.well-known/openid-configuration":
            return httpx.Response(self.health_status, json={})
        return httpx.Response(404)


@pytest.fixture()
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def make_engine(auth_config, clock, storage, google, mock_client):
    def factory(config: AuthConfig | None = None, **kwargs: Any) -> AuthEngine:
        kwargs.setdefault("storage", storage)
        kwargs.setdefault("http_client", mock_client(google))
        return AuthEngine(config or auth_config, clock=clock, **kwargs)

    return factory


@pytest.fixture()
def recorded():
    """Attach a listener for every event type; returns (engine -> list) helper."""

    def attach(engine: AuthEngine) -> list[AuthEvent]:
        events: list[AuthEvent] = []
        for name in (
            "login_initiated",
            "login_completed",
            "login_failed",
            "logout_initiated",
            "logout_completed",
            "session_expired",
            "session_refreshed",
        ):
            engine.add_event_listener(name, events.append)
        return events

    return attach


async def _login(engine: AuthEngine) -> Any:
    started = await engine.initiate_login("google", RETURN_URL)
    assert started.success, started.error
    return await engine.handle_callback(state=started.state, provider="google", code="abc")


# --------------------------------------------------------------------------- #
# Construction                                                                #
# --------------------------------------------------------------------------- #
def test_invalid_config_raises(clock) -> None:
    with pytest.raises(ConfigurationError):
        AuthEngine(AuthConfig(api_base_url="https://api.example.com"), clock=clock)


def test_available_providers(make_engine, auth_config) -> None:
    config = AuthConfig(
        api_base_url=auth_config.api_base_url,
        providers=(
            *auth_config.providers,
            FacebookProviderConfig(client_id="123", enabled=False),
        ),
        session=SessionConfig(storage="memory"),
    )
    engine = make_engine(config)
    assert [p.name for p in engine.get_available_providers()] == ["google"]
    assert engine.get_provider_info("facebook").is_enabled is False
    assert engine.get_provider_info("apple") is None


def test_unknown_event_type_rejected(make_engine) -> None:
    with pytest.raises(ValueError):
        make_engine().add_event_listener("login_exploded", print)


# --------------------------------------------------------------------------- #
# Login                                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_initiate_login_builds_authorization_url(make_engine, recorded) -> None:
    engine = make_engine()
    events = recorded(engine)
    result = await engine.initiate_login("google", RETURN_URL)

    assert result.success
    assert len(result.state) >= 32
    query = {k: v[0] for k, v in parse_qs(urlsplit(result.auth_url).query).items()}
    assert query["state"] == result.state
    assert query["redirect_uri"] == "https://api.example.com/api/auth/callback/google"
    assert query["code_challenge_method"] == "S256"
    assert query["code_challenge"]
    assert query["nonce"]

    pending = engine.state_manager.get_state_data(result.state)
    assert pending.provider == "google"
    assert pending.return_url == RETURN_URL
    assert pending.code_verifier
    assert [e.type for e in events] == ["login_initiated"]


@pytest.mark.anyio
async def test_initiate_login_uses_default_provider(make_engine) -> None:
    result = await make_engine().initiate_login(None, RETURN_URL)
    assert result.success
    assert result.auth_url.startswith("https://accounts.google.com/")


@pytest.mark.anyio
@pytest.mark.parametrize("url", ["javascript:alert(1)", "/relative", "not a url"])
async def test_initiate_login_rejects_bad_return_url(make_engine, url: str) -> None:
    engine = make_engine()
    result = await engine.initiate_login("google", url)
    assert not result.success
    assert result.error_code is AuthErrorCode.INVALID_REDIRECT_URI
    assert engine.state_manager.pending_count == 0


@pytest.mark.anyio
async def test_initiate_login_enforces_allowed_origins(make_engine, auth_config) -> None:
    config = AuthConfig(
        api_base_url=auth_config.api_base_url,
        providers=auth_config.providers,
        session=SessionConfig(storage="memory"),
        security=SecurityConfig(allowed_redirect_origins=("https://app.example.com",)),
    )
    engine = make_engine(config)
    assert (await engine.initiate_login("google", RETURN_URL)).success
    result = await engine.initiate_login("google", "https://evil.example.net/")
    assert isinstance(result.exception, SecurityError)
    assert result.error_code is AuthErrorCode.INVALID_REDIRECT_URI


@pytest.mark.anyio
@pytest.mark.parametrize(
    "url",
    [
        r"https://evil.com\.example.com/cb",
        "https://evil.com@app.example.com/cb",
        "https://a.b.example.com/cb",
        "https://example.com.evil.net/cb",
    ],
)
async def test_initiate_login_wildcard_origin_bypass(make_engine, auth_config, url: str) -> None:
    config = AuthConfig(
        api_base_url=auth_config.api_base_url,
        providers=auth_config.providers,
        session=SessionConfig(storage="memory"),
        security=SecurityConfig(allowed_redirect_origins=("https://*.example.com",)),
    )
    engine = make_engine(config)
    assert (await engine.initiate_login("google", RETURN_URL)).success
    result = await engine.initiate_login("google", url)
    assert not result.success
    assert result.error_code is AuthErrorCode.INVALID_REDIRECT_URI
    assert engine.state_manager.pending_count == 1


@pytest.mark.anyio
async def test_initiate_login_failure_leaves_no_pending_state(
    make_engine, google_config, mock_client, google, clock
) -> None:
    class BrokenGoogle(GoogleProvider):
        def build_authorization_url(self, request):
            raise RuntimeError("template missing")

    client = mock_client(google)
    engine = make_engine(
        http_client=client, providers=[BrokenGoogle(google_config, client, clock=clock)]
    )
    result = await engine.initiate_login("google", RETURN_URL)
    assert not result.success
    assert result.error_code is AuthErrorCode.UNKNOWN_ERROR
    assert "template missing" in str(result.exception)
    assert engine.state_manager.pending_count == 0


@pytest.mark.anyio
async def test_initiate_login_unknown_provider(make_engine) -> None:
    result = await make_engine().initiate_login("myspace", RETURN_URL)
    assert not result.success
    assert result.error_code is AuthErrorCode.PROVIDER_NOT_FOUND


@pytest.mark.anyio
async def test_successful_login(make_engine, recorded, google, storage) -> None:
    engine = make_engine()
    events = recorded(engine)
    result = await _login(engine)

    assert result.success
    assert result.user.id == "u1"
    assert result.user.email == "a@b.com"
    assert result.tokens.access_token == "AT"
    assert result.session.provider == "google"
    assert await engine.get_current_session() == result.session
    assert await engine.is_logged_in()
    assert (await engine.get_user()).id == "u1"
    assert await storage.get(SESSION_KEY)
    assert engine.state_manager.pending_count == 0
    assert [e.type for e in events] == ["login_initiated", "login_completed"]
    assert events[-1].user_id == "u1"


@pytest.mark.anyio
async def test_tampered_state_is_rejected(make_engine, recorded, google) -> None:
    engine = make_engine()
    events = recorded(engine)
    started = await engine.initiate_login("google", RETURN_URL)
    result = await engine.handle_callback(state=started.state + "x", provider="google", code="abc")

    assert not result.success
    assert result.error_code is AuthErrorCode.CSRF_ERROR
    assert result.exception.security_level == "high"
    assert await engine.get_current_session() is None
    assert "/token" not in google.calls
    assert events[-1].type == "login_failed"


@pytest.mark.anyio
async def test_state_is_single_use(make_engine, google) -> None:
    engine = make_engine()
    started = await engine.initiate_login("google", RETURN_URL)
    first = await engine.handle_callback(state=started.state, provider="google", code="abc")
    second = await engine.handle_callback(state=started.state, provider="google", code="abc")

    assert first.success
    assert not second.success
    assert second.error_code is AuthErrorCode.CSRF_ERROR
    assert google.calls["/token"] == 1


@pytest.mark.anyio
async def test_concurrent_duplicate_callback(make_engine, google) -> None:
    engine = make_engine()
    started = await engine.initiate_login("google", RETURN_URL)
    google.gate = anyio.Event()
    results: list[Any] = []

    async def callback() -> None:
        results.append(
            await engine.handle_callback(state=started.state, provider="google", code="abc")
        )

    async with anyio.create_task_group() as tg:
        tg.start_soon(callback)
        await anyio.sleep(0.01)
        tg.start_soon(callback)
        await anyio.sleep(0.01)
        google.gate.set()

    duplicate, original = results
    assert not duplicate.success
    assert duplicate.error_code is AuthErrorCode.CSRF_ERROR
    assert original.success
    assert google.calls["/token"] == 1


@pytest.mark.anyio
async def test_provider_mismatch(make_engine, auth_config) -> None:
    config = AuthConfig(
        api_base_url=auth_config.api_base_url,
        providers=(*auth_config.providers, FacebookProviderConfig(client_id="123")),
        session=SessionConfig(storage="memory"),
    )
    engine = make_engine(config)
    started = await engine.initiate_login("google", RETURN_URL)
    result = await engine.handle_callback(state=started.state, provider="facebook", code="abc")
    assert result.error_code is AuthErrorCode.INVALID_STATE


@pytest.mark.anyio
async def test_provider_error_short_circuits(make_engine, google) -> None:
    engine = make_engine()
    started = await engine.initiate_login("google", RETURN_URL)
    result = await engine.handle_callback(
        state=started.state,
        provider="google",
        error="access_denied",
        error_description="User cancelled",
    )
    assert isinstance(result.exception, ProviderError)
    assert result.error_code is AuthErrorCode.ACCESS_DENIED
    assert result.exception.provider_error_description == "User cancelled"
    assert google.calls == {}
    # the pending login is untouched
    assert engine.state_manager.get_state_data(started.state) is not None


@pytest.mark.anyio
async def test_missing_code(make_engine) -> None:
    engine = make_engine()
    started = await engine.initiate_login("google", RETURN_URL)
    result = await engine.handle_callback(state=started.state, provider="google")
    assert result.error_code is AuthErrorCode.VALIDATION_ERROR


@pytest.mark.anyio
async def test_nonce_mismatch(make_engine, google, make_jwt) -> None:
    google.token_body["id_token"] = make_jwt({"sub": "u1", "nonce": "forged"})
    engine = make_engine()
    result = await _login(engine)
    assert result.error_code is AuthErrorCode.INVALID_TOKEN
    assert isinstance(result.exception, SecurityError)
    assert await engine.get_current_session() is None


@pytest.mark.anyio
async def test_token_exchange_failure_keeps_pending_state(make_engine, google) -> None:
    google.token_body = {"token_type": "Bearer"}
    engine = make_engine()
    started = await engine.initiate_login("google", RETURN_URL)
    result = await engine.handle_callback(state=started.state, provider="google", code="abc")
    assert not result.success
    assert result.error_code is AuthErrorCode.INVALID_TOKEN
    assert engine.state_manager.pending_count == 1


# --------------------------------------------------------------------------- #
# Session                                                                     #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_expired_session_is_dropped(make_engine, recorded, clock, storage) -> None:
    engine = make_engine()
    events = recorded(engine)
    await _login(engine)
    clock.advance(3601)

    assert await engine.get_current_session() is None
    assert events[-1].type == "session_expired"
    assert await storage.get(SESSION_KEY) is None
    assert not (await engine.validate_session()).is_valid


@pytest.mark.anyio
async def test_stored_session_is_adopted_by_new_engine(make_engine) -> None:
    first = make_engine()
    await _login(first)
    second = make_engine()
    session = await second.get_current_session()
    assert session is not None
    assert session.user.id == "u1"


@pytest.mark.anyio
@pytest.mark.parametrize("blob", ["{not json", "[" * 200_000], ids=["truncated", "deep-nesting"])
async def test_corrupted_storage_means_no_session(make_engine, storage, blob: str) -> None:
    await storage.set(SESSION_KEY, blob)
    engine = make_engine()
    assert await engine.get_current_session() is None
    assert await storage.get(SESSION_KEY) is None


@pytest.mark.anyio
async def test_validate_session_flags_refresh(make_engine, clock) -> None:
    engine = make_engine()
    await _login(engine)
    assert not (await engine.validate_session()).refresh_required
    clock.advance(3600 - 200)
    result = await engine.validate_session()
    assert result.is_valid
    assert result.refresh_required


@pytest.mark.anyio
async def test_refresh_session(make_engine, recorded, google, storage) -> None:
    engine = make_engine()
    events = recorded(engine)
    login = await _login(engine)
    result = await engine.refresh_session()

    assert result.success
    assert result.tokens.access_token == "AT2"
    assert result.tokens.refresh_token == "RT"
    assert result.session.session_id == login.session.session_id
    assert (await engine.get_current_session()).tokens.access_token == "AT2"
    assert "AT2" in await storage.get(SESSION_KEY)
    assert events[-1].type == "session_refreshed"


@pytest.mark.anyio
async def test_concurrent_refreshes_share_one_round_trip(make_engine, google) -> None:
    engine = make_engine()
    await _login(engine)
    token_calls = google.calls["/token"]
    results: list[Any] = []

    async def refresh() -> None:
        results.append(await engine.refresh_session())

    async with anyio.create_task_group() as tg:
        tg.start_soon(refresh)
        tg.start_soon(refresh)

    assert [r.success for r in results] == [True, True]
    assert {r.tokens.access_token for r in results} == {"AT2"}
    assert google.calls["/token"] == token_calls + 1


@pytest.mark.anyio
async def test_refresh_failure_keeps_session(make_engine, google) -> None:
    google.refresh_status = 400
    google.refresh_body = {"error": "invalid_grant"}
    engine = make_engine()
    login = await _login(engine)
    result = await engine.refresh_session()

    assert not result.success
    assert result.error_code is AuthErrorCode.INVALID_TOKEN
    assert await engine.get_current_session() == login.session


@pytest.mark.anyio
async def test_sign_out_during_refresh_wins(make_engine, recorded, google, storage) -> None:
    engine = make_engine()
    await _login(engine)
    events = recorded(engine)
    google.gate = anyio.Event()
    token_calls = google.calls["/token"]
    results: list[Any] = []

    async def refresh() -> None:
        results.append(await engine.refresh_session())

    async with anyio.create_task_group() as tg:
        tg.start_soon(refresh)
        while google.calls["/token"] == token_calls:
            await anyio.sleep(0)
        assert await engine.sign_out() is True
        google.gate.set()

    [result] = results
    assert not result.success
    assert result.error_code is AuthErrorCode.SESSION_NOT_FOUND
    assert await engine.get_current_session() is None
    assert await storage.get(SESSION_KEY) is None
    assert "session_refreshed" not in [e.type for e in events]


@pytest.mark.anyio
async def test_refresh_without_session(make_engine) -> None:
    result = await make_engine().refresh_session()
    assert result.error_code is AuthErrorCode.SESSION_NOT_FOUND


@pytest.mark.anyio
async def test_get_access_token_refreshes_near_expiry(make_engine, clock) -> None:
    engine = make_engine()
    await _login(engine)
    assert await engine.get_access_token() == "AT"
    clock.advance(3600 - 200)
    assert await engine.get_access_token() == "AT2"


@pytest.mark.anyio
async def test_get_access_token_falls_back_when_refresh_fails(make_engine, google, clock) -> None:
    google.refresh_status = 503
    google.refresh_body = {"error": "temporarily_unavailable"}
    engine = make_engine()
    await _login(engine)
    clock.advance(3600 - 200)
    assert await engine.get_access_token() == "AT"
    assert await make_engine().get_access_token() == "AT"


# --------------------------------------------------------------------------- #
# Sign-out                                                                    #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_sign_out_revokes_and_clears(make_engine, recorded, google, storage) -> None:
    engine = make_engine()
    await _login(engine)
    events = recorded(engine)

    assert await engine.sign_out() is True
    assert google.calls["/revoke"] == 2
    assert await engine.get_current_session() is None
    assert await storage.get(SESSION_KEY) is None
    assert [e.type for e in events] == ["logout_initiated", "logout_completed"]


@pytest.mark.anyio
async def test_sign_out_survives_revocation_crash(
    make_engine, google_config, mock_client, google, storage, clock
) -> None:
    class ExplodingGoogle(GoogleProvider):
        async def revoke_tokens(self, tokens):
            raise RuntimeError("network stack on fire")

    client = mock_client(google)
    engine = make_engine(
        http_client=client, providers=[ExplodingGoogle(google_config, client, clock=clock)]
    )
    await _login(engine)
    engine.state_manager.store_state("s" * 32, provider="google", return_url=RETURN_URL)

    assert await engine.sign_out() is True
    assert await engine.get_current_session() is None
    assert await storage.get(SESSION_KEY) is None
    assert engine.state_manager.pending_count == 0


@pytest.mark.anyio
async def test_sign_out_without_session(make_engine) -> None:
    assert await make_engine().sign_out() is True


# --------------------------------------------------------------------------- #
# Health                                                                      #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_health_status(make_engine, google) -> None:
    engine = make_engine()
    healthy = await engine.get_health_status()
    assert healthy.status == "healthy"
    assert healthy.checks["google"].is_healthy

    google.health_status = 503
    assert (await engine.get_health_status()).status == "unhealthy"
