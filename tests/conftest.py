"""Shared fixtures: fake clock, provider configs and stubbed HTTP transports."""

from __future__ import annotations

import base64
import json
from typing import Any, Callable

import httpx
import pytest

from easyauth.core.config import AuthConfig, GoogleProviderConfig, SessionConfig

GOOGLE_CLIENT_ID = "1234567890-abcdef.apps.googleusercontent.com"
START = 1_672_531_200.0  # 2023-01-01T00:00:00Z


class FakeClock:
    """Manually advanced clock satisfying the ``Clock`` protocol."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _make_jwt(claims: dict[str, Any]) -> str:
    def _seg(data: dict[str, Any]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{_seg({'alg': 'none', 'typ': 'JWT'})}.{_seg(claims)}.sig"


def _mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def pytest_addoption(parser):
    """``--integration`` enables the tests under ``tests/integration``."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests against real providers",
    )


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_jwt() -> Callable[[dict[str, Any]], str]:
    """Unsigned JWT builder for id_token payloads."""
    return _make_jwt


@pytest.fixture()
def mock_client() -> Callable[..., httpx.AsyncClient]:
    """Factory for an AsyncClient answering through a MockTransport handler."""
    return _mock_client


@pytest.fixture()
def google_config() -> GoogleProviderConfig:
    return GoogleProviderConfig(client_id=GOOGLE_CLIENT_ID, client_secret="shh")


@pytest.fixture()
def auth_config(google_config: GoogleProviderConfig) -> AuthConfig:
    return AuthConfig(
        api_base_url="https://api.example.com",
        providers=(google_config,),
        default_provider="google",
        session=SessionConfig(storage="memory"),
    )
