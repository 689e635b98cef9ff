"""Pluggable key/value storage backends.

This module introduces a *narrow* persistence interface
(:class:`StorageAdapter`) and four interchangeable implementations:

* :class:`MemoryStorage`  – transient, lives as long as the adapter.
* :class:`SessionStorage` – a named scope inside a shared mapping; clearing
  one scope leaves the others untouched (tab-scoped storage).
* :class:`FileStorage`    – local persistent storage, one JSON file per key.
* :class:`CookieStorage`  – cookie jar seeded from a ``Cookie`` header that
  renders ``Set-Cookie`` headers for the outgoing response.

The interface is asynchronous for every backend so a genuinely async backend
can be swapped in without caller changes.  Backends hold no business logic.

Environment variables
---------------------
EASYAUTH_STORAGE_DIR
    Base directory for :class:`FileStorage`.
    Defaults to ``~/.easyauth`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import MutableMapping
from http.cookies import CookieError, SimpleCookie
from pathlib import Path
from typing import TYPE_CHECKING, Final, Literal, Protocol, runtime_checkable
from urllib.parse import quote, unquote

import anyio.to_thread

if TYPE_CHECKING:  # pragma: no cover
    from easyauth.core.config import SecurityConfig, SessionConfig

_LOG = logging.getLogger("easyauth.core.storage")

StorageType = Literal["local", "session", "memory", "cookie"]

_COOKIE_MAX_AGE: Final[int] = 24 * 60 * 60
_COOKIE_SIZE_LIMIT: Final[int] = 4096

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _slug(text: str, max_len: int = 80) -> str:
    """Filesystem-safe slug."""
    text = (text or "").strip().lower()
    text = re.sub(r"[^a-z0-9._-]+", "-", text)
    text = re.sub(r"-{2,}", "-", text).strip("-")
    return text[:max_len] or "unknown"


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class StorageAdapter(Protocol):
    """Minimal string key/value persistence contract."""

    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str) -> None: ...
    async def remove(self, key: str) -> None: ...
    async def clear(self) -> None: ...


class MemoryStorage:
    """Transient in-memory storage."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()


class SessionStorage:
    """Storage confined to one *scope* of a mapping shared between scopes."""

    def __init__(
        self,
        scope: str = "default",
        backing: MutableMapping[str, str] | None = None,
    ) -> None:
        self.scope = scope
        self._backing: MutableMapping[str, str] = backing if backing is not None else {}
        self._prefix = f"{scope}:"

    async def get(self, key: str) -> str | None:
        return self._backing.get(self._prefix + key)

    async def set(self, key: str, value: str) -> None:
        self._backing[self._prefix + key] = value

    async def remove(self, key: str) -> None:
        self._backing.pop(self._prefix + key, None)

    async def clear(self) -> None:
        for k in [k for k in self._backing if k.startswith(self._prefix)]:
            del self._backing[k]


class FileStorage:
    """JSON-file implementation; writes use *temp-file + os.replace*."""

    def __init__(self, base_dir: str | os.PathLike | None = None) -> None:
        self.base_dir = Path(
            base_dir or os.getenv("EASYAUTH_STORAGE_DIR") or Path.home() / ".easyauth"
        ).expanduser()

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{_slug(key)}.json"

    def _read(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as fh:
                record = json.load(fh)
        except ValueError:
            _LOG.warning("Unreadable storage file %s; treating as absent", path.name)
            return None
        if not isinstance(record, dict) or record.get("key") != key:
            return None
        value = record.get("value")
        return value if isinstance(value, str) else None

    def _clear(self) -> None:
        if not self.base_dir.exists():
            return
        for p in self.base_dir.glob("*.json"):
            p.unlink(missing_ok=True)

    async def get(self, key: str) -> str | None:
        return await anyio.to_thread.run_sync(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await anyio.to_thread.run_sync(
            _atomic_write, self._path(key), {"key": key, "value": value}
        )

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def remove(self, key: str) -> None:
        await anyio.to_thread.run_sync(self._remove, key)

    async def clear(self) -> None:
        await anyio.to_thread.run_sync(self._clear)


class CookieStorage:
    """Cookie-backed storage for server-rendered apps.

    Values are percent-encoded.  Every write or removal is recorded so the web
    layer can emit it with :meth:`set_cookie_headers`.
    """

    def __init__(
        self,
        cookie_header: str | None = None,
        *,
        secure: bool = False,
        same_site: Literal["strict", "lax", "none"] = "lax",
        path: str = "/",
        max_age: int = _COOKIE_MAX_AGE,
    ) -> None:
        self.secure = secure
        self.same_site = same_site
        self.path = path
        self.max_age = max_age
        self._jar: SimpleCookie = SimpleCookie()
        self._outgoing: SimpleCookie = SimpleCookie()
        if cookie_header:
            try:
                self._jar.load(cookie_header)
            except CookieError:
                _LOG.warning("Ignoring malformed Cookie header")

    def _record(self, key: str, value: str, max_age: int) -> None:
        self._outgoing[key] = value
        morsel = self._outgoing[key]
        morsel["path"] = self.path
        morsel["max-age"] = max_age
        morsel["samesite"] = self.same_site.capitalize()
        # SameSite=None is rejected by browsers without Secure
        if self.secure or self.same_site == "none":
            morsel["secure"] = True

    async def get(self, key: str) -> str | None:
        morsel = self._jar.get(key)
        if morsel is None:
            return None
        return unquote(morsel.value)

    async def set(self, key: str, value: str) -> None:
        encoded = quote(value, safe="")
        if len(encoded) > _COOKIE_SIZE_LIMIT:
            _LOG.warning(
                "Cookie %s is %d bytes; browsers may drop values over %d bytes",
                key,
                len(encoded),
                _COOKIE_SIZE_LIMIT,
            )
        self._jar[key] = encoded
        self._record(key, encoded, self.max_age)

    async def remove(self, key: str) -> None:
        if key in self._jar:
            del self._jar[key]
        self._record(key, "", 0)

    async def clear(self) -> None:
        for key in list(self._jar.keys()):
            await self.remove(key)

    def set_cookie_headers(self) -> list[str]:
        """``Set-Cookie`` header values for every change since construction."""
        return [morsel.OutputString() for morsel in self._outgoing.values()]


def create_storage(
    session_config: SessionConfig,
    security_config: SecurityConfig | None = None,
) -> StorageAdapter:
    """Build the backend named by ``session_config.storage``."""
    kind = session_config.storage
    if kind == "local":
        return FileStorage(session_config.storage_dir)
    if kind == "session":
        return SessionStorage()
    if kind == "memory":
        return MemoryStorage()
    if kind == "cookie":
        secure = bool(security_config and security_config.https_only)
        same_site = security_config.same_site_cookie if security_config else "lax"
        return CookieStorage(secure=secure, same_site=same_site)
    raise ValueError(f"unsupported storage type: {kind!r}")
