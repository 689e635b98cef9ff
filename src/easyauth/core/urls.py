"""URL checks guarding the login flow against open redirects."""

from __future__ import annotations

import re
from typing import Final, Iterable
from urllib.parse import urlsplit, urlunsplit

_ALLOWED_SCHEMES: Final[tuple[str, ...]] = ("http", "https")
_LOCALHOST_NAMES: Final[tuple[str, ...]] = ("localhost", "127.0.0.1", "::1")

# DNS-style names (IDN letters allowed) or a bracketed IPv6 literal's contents
_HOST_RE: Final[re.Pattern[str]] = re.compile(r"[\w.-]+|[0-9a-f:.]+")
_WILDCARD_LABEL: Final[str] = r"[\w-]+"

_SUSPICIOUS_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"[Ѐ-ӿ]"),  # Cyrillic homographs
    re.compile(r"[Ͱ-Ͽ]"),  # Greek homographs
    re.compile(r"\.(tk|ml|ga|cf)$"),
    re.compile(
        r"\b(google|apple|facebook|microsoft|amazon)\b.*"
        r"\b(google|apple|facebook|microsoft|amazon)\b"
    ),
    re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$"),
)


def is_localhost(hostname: str) -> bool:
    return hostname.lower() in _LOCALHOST_NAMES


def is_valid_return_url(url: str, *, https_only: bool = False) -> bool:
    """Well-formed absolute http(s) URL with a plain host.

    Userinfo (``user@host``) and characters that cannot appear in a host
    name, such as a backslash, are rejected.  With *https_only* plain http
    is accepted for localhost only.
    """
    if not isinstance(url, str) or not url or any(c.isspace() for c in url):
        return False
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError:
        return False
    if parts.scheme.lower() not in _ALLOWED_SCHEMES or not hostname:
        return False
    if "@" in parts.netloc or not _HOST_RE.fullmatch(hostname):
        return False
    if https_only and parts.scheme.lower() == "http":
        return is_localhost(hostname)
    return True


def is_secure(url: str) -> bool:
    try:
        return urlsplit(url).scheme.lower() == "https"
    except ValueError:
        return False


def _origin(url: str) -> tuple[str, str, int | None]:
    parts = urlsplit(url)
    return parts.scheme.lower(), (parts.hostname or "").lower(), parts.port


def _origin_matches(origin: tuple[str, str, int | None], candidate: str) -> bool:
    scheme, host, port = origin
    try:
        allowed_scheme, allowed_host, allowed_port = _origin(candidate)
    except ValueError:
        return False
    if (allowed_scheme, allowed_port) != (scheme, port) or not allowed_host:
        return False
    if "*" not in allowed_host:
        return allowed_host == host
    # each "*" covers exactly one host label
    pattern = _WILDCARD_LABEL.join(re.escape(part) for part in allowed_host.split("*"))
    return re.fullmatch(pattern, host) is not None


def is_allowed_redirect(url: str, allowed_origins: Iterable[str] | None = None) -> bool:
    """Valid URL whose origin matches one of *allowed_origins*.

    Scheme and port match exactly.  Hosts match exactly or through ``*``
    wildcards such as ``https://*.example.com``, where each ``*`` stands for
    a single label.  No allow-list means every valid URL passes.
    """
    if not is_valid_return_url(url):
        return False
    allowed = [o.strip() for o in (allowed_origins or ()) if o.strip()]
    if not allowed:
        return True
    origin = _origin(url)
    return any(_origin_matches(origin, candidate) for candidate in allowed)


def get_domain(url: str) -> str | None:
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def normalize(url: str) -> str:
    """Drop the fragment and a trailing slash (except the root path)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    path = parts.path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def is_suspicious(url: str) -> bool:
    """Heuristics for phishing-looking hosts. Unparseable URLs are suspicious."""
    try:
        hostname = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return True
    if not hostname:
        return True
    return any(p.search(hostname) for p in _SUSPICIOUS_PATTERNS)
