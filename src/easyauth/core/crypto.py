"""Cryptographic helpers for the login flow.

Covers the random material the flow needs (state tokens, nonces, session ids),
PKCE (RFC 7636) verifier / challenge pairs, constant-time comparison and the
token expiry margin check.

Only the S256 PKCE transformation is implemented because every supported
provider accepts it.

Secure primitives (:pymod:`secrets`, :pyfunc:`hashlib.sha256`) can be missing
on exotic platforms (no OS entropy source, FIPS-restricted OpenSSL builds).
In that case the helpers degrade to clearly weaker fallbacks instead of
raising, and say so in the log.  The fallbacks are NOT cryptographically
secure.

This module intentionally performs **no logging** of verifiers, challenges or
generated tokens.
"""

from __future__ import annotations

import base64
import hmac
import json
import logging
import random
import secrets
from datetime import datetime, timedelta
from hashlib import sha256
from typing import Any, Final

from easyauth.core.clock import Clock, default_clock, utc_now

_LOG = logging.getLogger("easyauth.core.crypto")

# RFC-7636 §4.1 unreserved characters.
_ALLOWED_CHARS: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)
PKCE_VERIFIER_LENGTH: Final[int] = 128
STATE_LENGTH: Final[int] = 32
NONCE_LENGTH: Final[int] = 16
DEFAULT_SAFETY_MARGIN_SECONDS: Final[int] = 300


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def _fallback_random_string(length: int) -> str:
    # random.Random is seeded from time when no entropy source exists
    rng = random.Random()
    return "".join(rng.choice(_ALLOWED_CHARS) for _ in range(length))


def _fallback_digest(text: str) -> str:
    """32-bit shift/add string hash rendered in base 36. NOT secure."""
    value = 0
    for ch in text:
        value = ((value << 5) - value + ord(ch)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return _base36(abs(value))


def generate_random_string(length: int) -> str:
    """Return a URL-safe random string of exactly *length* characters.

    Uses :pymod:`secrets` when the platform provides an entropy source and a
    non-secure :pyclass:`random.Random` otherwise.  Never raises for a
    non-negative *length*.
    """
    if length < 0:
        raise ValueError("length must be non-negative")
    try:
        return "".join(secrets.choice(_ALLOWED_CHARS) for _ in range(length))
    except NotImplementedError:
        _LOG.warning(
            "No secure random source available; using NON-SECURE fallback generator"
        )
        return _fallback_random_string(length)


def sha256_base64url_encode(value: str) -> str:
    """SHA-256 of *value*, base64url-encoded without padding.

    Pure function.  Falls back to a non-cryptographic digest when SHA-256 is
    unavailable.
    """
    try:
        digest = sha256(value.encode("utf-8")).digest()
    except ValueError:
        _LOG.warning("SHA-256 unavailable; using NON-SECURE fallback digest")
        return _fallback_digest(value)
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """Return a ``(verifier, challenge)`` pair.

    The verifier is 128 characters long; the challenge is the S256 transform
    of the verifier.
    """
    verifier = generate_random_string(PKCE_VERIFIER_LENGTH)
    return verifier, sha256_base64url_encode(verifier)


def generate_state(length: int = STATE_LENGTH) -> str:
    return generate_random_string(length)


def generate_nonce() -> str:
    return generate_random_string(NONCE_LENGTH)


def generate_session_id(clock: Clock = default_clock) -> str:
    """Return ``<base36 millis>_<random>`` so ids sort roughly by creation."""
    return f"{_base36(int(clock() * 1000))}_{generate_random_string(16)}"


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without short-circuiting on the first mismatch.

    Returns ``False`` straight away when the lengths differ; the length of a
    state token or signature is not secret.
    """
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def is_token_expired(
    expires_at: datetime,
    safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
    *,
    clock: Clock = default_clock,
) -> bool:
    """Return *True* when ``now >= expires_at - safety_margin``.

    The margin makes callers refresh before the hard expiry so a token does
    not lapse while a request is in flight.
    """
    return utc_now(clock) >= expires_at - timedelta(seconds=safety_margin_seconds)


def decode_jwt_payload(token: str) -> dict[str, Any]:
    """Decode the claims of a JWT **without verifying its signature**.

    For display purposes only (user profile from an ``id_token``).

    Raises
    ------
    ValueError
        If *token* is not a three-part JWT or the payload is not JSON.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Invalid JWT format")
    payload = parts[1]
    pad_len = (-len(payload)) % 4
    try:
        raw = base64.urlsafe_b64decode(payload + "=" * pad_len)
        claims = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Failed to decode JWT payload") from exc
    if not isinstance(claims, dict):
        raise ValueError("JWT payload is not an object")
    return claims
