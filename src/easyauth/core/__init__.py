"""easyauth core package.

Reusable, **framework-agnostic** building blocks for OAuth 2.0 logins.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
crypto
    State tokens, PKCE pairs, session ids, constant-time comparison.
state
    In-memory pending-login bookkeeping (CSRF ``state``).
storage / session_store
    Pluggable key/value backends and the single-session persistence on top.
models
    Immutable dataclasses for sessions, tokens, users and results.
errors / retry
    Typed error hierarchy and the opt-in retry policy.
events
    Synchronous pub/sub for authentication events.
config / urls
    Engine configuration and return-URL validation.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).
engine
    :class:`~easyauth.core.engine.AuthEngine`; imported from the top-level
    package because it depends on :mod:`easyauth.providers`.

Primitives are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock, utc_now  # noqa: F401
from .config import (  # noqa: F401
    AppleProviderConfig,
    AuthConfig,
    AzureB2CProviderConfig,
    CustomProviderConfig,
    FacebookProviderConfig,
    GoogleProviderConfig,
    ProviderConfig,
    SecurityConfig,
    SessionConfig,
)
from .crypto import (  # noqa: F401
    constant_time_equals,
    generate_pkce,
    generate_random_string,
    generate_state,
    is_token_expired,
    sha256_base64url_encode,
)
from .errors import (  # noqa: F401
    AuthErrorCode,
    ConfigurationError,
    EasyAuthError,
    NetworkError,
    ProviderError,
    SecurityError,
    SessionError,
    ValidationError,
    user_friendly_message,
)
from .events import EventEmitter  # noqa: F401
from .log_utils import get_auth_logger  # noqa: F401
from .models import (  # noqa: F401
    AuthEvent,
    AuthResult,
    PendingAuthState,
    Session,
    TokenRefreshResult,
    TokenSet,
    UserInfo,
)
from .retry import DefaultErrorHandler  # noqa: F401
from .session_store import SessionStore  # noqa: F401
from .state import StateManager  # noqa: F401
from .storage import (  # noqa: F401
    CookieStorage,
    FileStorage,
    MemoryStorage,
    SessionStorage,
    StorageAdapter,
    create_storage,
)

__all__ = [
    # clock
    "Clock",
    "default_clock",
    "utc_now",
    # config
    "AuthConfig",
    "SessionConfig",
    "SecurityConfig",
    "ProviderConfig",
    "GoogleProviderConfig",
    "FacebookProviderConfig",
    "AppleProviderConfig",
    "AzureB2CProviderConfig",
    "CustomProviderConfig",
    # crypto
    "generate_random_string",
    "sha256_base64url_encode",
    "generate_pkce",
    "generate_state",
    "constant_time_equals",
    "is_token_expired",
    # errors
    "AuthErrorCode",
    "EasyAuthError",
    "ConfigurationError",
    "ValidationError",
    "NetworkError",
    "SessionError",
    "SecurityError",
    "ProviderError",
    "user_friendly_message",
    "DefaultErrorHandler",
    # events & models
    "EventEmitter",
    "AuthEvent",
    "AuthResult",
    "PendingAuthState",
    "Session",
    "TokenRefreshResult",
    "TokenSet",
    "UserInfo",
    # state & storage
    "StateManager",
    "SessionStore",
    "StorageAdapter",
    "MemoryStorage",
    "SessionStorage",
    "FileStorage",
    "CookieStorage",
    "create_storage",
    # logging helpers
    "get_auth_logger",
]
