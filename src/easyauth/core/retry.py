"""Caller-side retry policy.

The engine never retries on its own.  Callers that want to retry a provider
call (typically ``refresh_session``) opt in through
:class:`DefaultErrorHandler`.  Authorization codes are single use, so the
code exchange itself must not be wrapped.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import anyio

from easyauth.core.errors import EasyAuthError, SecurityError, from_unknown

_LOG = logging.getLogger("easyauth.core.retry")

T = TypeVar("T")


class DefaultErrorHandler:
    """Exponential backoff with ±25% jitter, honouring ``is_retryable``."""

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        rng: random.Random | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._rng = rng or random.Random()

    def handle_error(self, error: EasyAuthError) -> None:
        _LOG.error(
            "Auth error code=%s provider=%s retryable=%s: %s",
            error.code.value,
            error.provider,
            error.is_retryable,
            error,
        )
        if isinstance(error, SecurityError) and error.security_level == "critical":
            _LOG.critical("SECURITY INCIDENT: %s", error.to_payload())

    def should_retry(self, error: EasyAuthError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return error.is_retryable

    def get_retry_delay(self, error: EasyAuthError, attempt: int) -> float:  # noqa: ARG002
        """Seconds to wait before retry number ``attempt + 1``."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * 0.25 * (self._rng.random() * 2 - 1)
        return max(0.0, delay + jitter)

    async def run_with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Await *operation* until it succeeds or the policy gives up.

        Non-easyauth exceptions are wrapped with :func:`from_unknown` (never
        retryable) and re-raised.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001 – classified below
                error = from_unknown(exc)
                self.handle_error(error)
                if not self.should_retry(error, attempt):
                    if error is exc:
                        raise
                    raise error from exc
                delay = self.get_retry_delay(error, attempt)
                _LOG.info("Retrying in %.2fs (attempt %d)", delay, attempt + 1)
                await anyio.sleep(delay)
                attempt += 1
