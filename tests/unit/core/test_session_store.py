"""Unit tests for Session persistence and the session value objects."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from easyauth.core.models import Session, TokenSet, UserInfo
from easyauth.core.session_store import DEFAULT_SESSION_KEY, SessionStore
from easyauth.core.storage import MemoryStorage

NOW = datetime(2023, 1, 1, tzinfo=timezone.utc)


def _session(expires_in: int = 3600) -> Session:
    tokens = TokenSet.from_token_response(
        {"access_token": "AT", "expires_in": expires_in, "refresh_token": "RT", "scope": "openid email"},
        obtained_at=NOW,
    )
    return Session(
        session_id="lq2x9c_AbCdEf0123456789",
        user=UserInfo(id="u1", provider="google", provider_user_id="u1", email="a@b.com"),
        tokens=tokens,
        provider="google",
        created_at=NOW,
        last_accessed_at=NOW,
        expires_at=tokens.expires_at,
    )


# --------------------------------------------------------------------------- #
# Value objects                                                               #
# --------------------------------------------------------------------------- #
def test_token_set_from_response() -> None:
    tokens = _session().tokens
    assert tokens.expires_at == NOW + timedelta(seconds=3600)
    assert tokens.scopes == ("openid", "email")
    assert tokens.token_type == "Bearer"


def test_token_set_requires_access_token() -> None:
    with pytest.raises(ValueError):
        TokenSet.from_token_response({"expires_in": 10}, obtained_at=NOW)


def test_token_set_keeps_fallback_refresh_token() -> None:
    tokens = TokenSet.from_token_response(
        {"access_token": "AT2", "scope": "a,b"},
        obtained_at=NOW,
        fallback_refresh_token="RT",
    )
    assert tokens.refresh_token == "RT"
    assert tokens.expires_in == 3600
    assert tokens.scopes == ("a", "b")


def test_with_tokens_returns_new_session() -> None:
    original = _session()
    later = NOW + timedelta(minutes=50)
    new_tokens = TokenSet.from_token_response({"access_token": "AT2"}, obtained_at=later)
    refreshed = original.with_tokens(new_tokens, later)
    assert refreshed is not original
    assert original.tokens.access_token == "AT"
    assert refreshed.tokens.access_token == "AT2"
    assert refreshed.expires_at == new_tokens.expires_at
    assert refreshed.last_accessed_at == later
    assert refreshed.session_id == original.session_id


def test_session_activity() -> None:
    session = _session()
    assert session.is_active(NOW)
    assert not session.is_active(session.expires_at)
    assert not Session.from_dict({**session.to_dict(), "is_valid": False}).is_active(NOW)


def test_naive_datetimes_are_read_as_utc() -> None:
    data = _session().to_dict()
    data["created_at"] = "2023-01-01T00:00:00"
    assert Session.from_dict(data).created_at.tzinfo is not None


# --------------------------------------------------------------------------- #
# Store                                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_store_round_trip() -> None:
    storage = MemoryStorage()
    store = SessionStore(storage)
    session = _session()
    await store.store_session(session)

    blob = await storage.get(DEFAULT_SESSION_KEY)
    assert blob is not None
    assert json.loads(blob)["tokens"]["expires_at"] == "2023-01-01T01:00:00+00:00"
    assert await store.get_session() == session


@pytest.mark.anyio
async def test_missing_session_is_none() -> None:
    assert await SessionStore(MemoryStorage()).get_session() is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    "garbage",
    [
        "not json at all",
        '{"foo": 1}',
        "[1, 2]",
        '{"session_id": 1}',
        "[" * 200_000,  # nesting deep enough to exhaust the JSON decoder's recursion
    ],
    ids=["text", "missing-fields", "list", "wrong-types", "deep-nesting"],
)
async def test_corrupted_session_is_discarded(garbage: str, caplog) -> None:
    storage = MemoryStorage()
    await storage.set(DEFAULT_SESSION_KEY, garbage)
    store = SessionStore(storage)
    assert await store.get_session() is None
    assert await storage.get(DEFAULT_SESSION_KEY) is None
    assert "corrupted session" in caplog.text


@pytest.mark.anyio
async def test_clear_session_uses_configured_key() -> None:
    storage = MemoryStorage()
    store = SessionStore(storage, key="custom_key")
    await store.store_session(_session())
    assert await storage.get("custom_key") is not None
    await store.clear_session()
    assert await store.get_session() is None
