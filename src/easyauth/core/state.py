"""Pending-login bookkeeping for the OAuth 2.0 web-flow.

The *state* parameter protects the user against CSRF: every login attempt gets
its own random token, bound to the attempt's context (provider, return URL,
scopes, PKCE verifier) and valid for :data:`EXPIRATION_WINDOW` seconds.

Lifecycle of one entry::

    store_state()  ->  validate_state() / get_state_data()  ->  clear_state()

Reading and clearing are separate steps so the engine only drops the context
once it has used it successfully.  Expired entries are swept on every
``store_state`` call instead of on a timer.

Pending states live in memory only; an interrupted login has to be restarted
after a process restart.

Logging
-------
Only a short prefix of the state token is ever logged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Final

from easyauth.core.clock import Clock, default_clock
from easyauth.core.log_utils import mask_sensitive
from easyauth.core.models import PendingAuthState

_LOG = logging.getLogger("easyauth.core.state")

EXPIRATION_WINDOW: Final[int] = 10 * 60  # seconds


class StateManager:
    """In-memory map of state token -> :class:`PendingAuthState`."""

    def __init__(
        self,
        *,
        clock: Clock = default_clock,
        expiration_window: int = EXPIRATION_WINDOW,
    ) -> None:
        self._clock = clock
        self._expiration_window = expiration_window
        self._states: dict[str, PendingAuthState] = {}

    @property
    def pending_count(self) -> int:
        return len(self._states)

    def _is_expired(self, entry: PendingAuthState, now: float) -> bool:
        return entry.age(now) >= self._expiration_window

    def store_state(
        self,
        token: str,
        *,
        provider: str,
        return_url: str,
        scopes: Sequence[str] | None = None,
        custom_params: Mapping[str, str] | None = None,
        code_verifier: str | None = None,
        nonce: str | None = None,
        redirect_uri: str | None = None,
    ) -> PendingAuthState:
        """Record a new pending login and sweep expired ones."""
        entry = PendingAuthState(
            state_token=token,
            provider=provider,
            return_url=return_url,
            created_at=self._clock(),
            requested_scopes=tuple(scopes or ()),
            custom_params=dict(custom_params or {}),
            code_verifier=code_verifier,
            nonce=nonce,
            redirect_uri=redirect_uri,
        )
        self._states[token] = entry
        removed = self.cleanup_expired_states()
        _LOG.debug(
            "Stored state=%s provider=%s (swept %d expired)",
            mask_sensitive(token, 6),
            provider,
            removed,
        )
        return entry

    def validate_state(self, token: str) -> bool:
        """True iff *token* is known and still inside the window.

        An expired entry found here is deleted (fail closed).
        """
        entry = self._states.get(token)
        if entry is None:
            return False
        if self._is_expired(entry, self._clock()):
            del self._states[token]
            _LOG.debug("Expired state=%s dropped on validation", mask_sensitive(token, 6))
            return False
        return True

    def get_state_data(self, token: str) -> PendingAuthState | None:
        """Return the context for *token* without consuming it."""
        if not self.validate_state(token):
            return None
        return self._states.get(token)

    def clear_state(self, token: str) -> None:
        self._states.pop(token, None)

    def clear_all_states(self) -> None:
        self._states.clear()

    def cleanup_expired_states(self) -> int:
        now = self._clock()
        expired = [t for t, e in self._states.items() if self._is_expired(e, now)]
        for token in expired:
            del self._states[token]
        return len(expired)
