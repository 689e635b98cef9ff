"""Durable persistence of the single current :class:`Session`.

The session is written as one JSON blob under a fixed key, never field by
field.  Datetimes are stored as ISO-8601 strings.  A blob that cannot be
decoded is treated as "no session" and removed, so corrupted local data never
reaches the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Final

from easyauth.core.models import Session
from easyauth.core.storage import StorageAdapter

_LOG = logging.getLogger("easyauth.core.session_store")

DEFAULT_SESSION_KEY: Final[str] = "easyauth_session"


class SessionStore:
    def __init__(self, storage: StorageAdapter, *, key: str = DEFAULT_SESSION_KEY) -> None:
        self.storage = storage
        self.key = key

    async def store_session(self, session: Session) -> None:
        blob = json.dumps(session.to_dict(), separators=(",", ":"), sort_keys=True)
        await self.storage.set(self.key, blob)

    async def get_session(self) -> Session | None:
        blob = await self.storage.get(self.key)
        if not blob:
            return None
        try:
            return Session.from_dict(json.loads(blob))
        except (ValueError, KeyError, TypeError, AttributeError, RecursionError) as exc:
            _LOG.warning(
                "Discarding corrupted session data under key=%s (%s)",
                self.key,
                type(exc).__name__,
            )
            await self.clear_session()
            return None

    async def clear_session(self) -> None:
        await self.storage.remove(self.key)
