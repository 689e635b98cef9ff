"""Structured logging helpers for auth components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``session_id``     – The session identifier (first 6 chars kept)
- ``provider``       – Provider being used (``google``, ``facebook``…)
- ``state_prefix``   – First 6 chars of the OAuth state token
- ``correlation_id`` – Supplied by outer layers (request tracing)

Usage
-----
>>> from easyauth.core.log_utils import get_auth_logger
>>> log = get_auth_logger(
...     base_logger_name="easyauth.core.engine",
...     session_id="lq2x9c_AbCdEf0123456789",
...     provider="google",
... )
>>> log.info("Session refreshed")
INFO easyauth.core.engine session_id=lq2x9c provider=google ...

The adapter is a thin wrapper around :class:`logging.LoggerAdapter`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


def mask_sensitive(value: str | None, keep: int = 4) -> str:
    """Return *value* reduced to its first *keep* characters plus ``****``."""
    if not value:
        return "<empty>"
    if len(value) <= keep:
        return "****"
    return f"{value[:keep]}****"


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("session_id", "provider", "state_prefix", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k in ("session_id", "state_prefix"):
                # keep only first 6 characters of identifiers
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "easyauth.core",
    session_id: str | None = None,
    provider: str | None = None,
    state: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {
            "session_id": session_id,
            "provider": provider,
            "state_prefix": state,
            "correlation_id": correlation_id,
        },
    )
