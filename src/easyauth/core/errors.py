"""Exception types raised by the easyauth core.

Only lightweight, **data-carrying** exceptions live here so that UI bindings
and web layers can transform them into responses or user-friendly messages.
Every error carries an :class:`AuthErrorCode` and an ``is_retryable`` flag;
:meth:`EasyAuthError.to_payload` never includes secrets.

Kinds
-----
ConfigurationError
    Missing / malformed setup. Fatal at construction, never retried.
ValidationError
    Malformed caller input. Caller must fix the input.
SecurityError
    CSRF / state failures. Higher severity: log and alert distinctly.
ProviderError / NetworkError
    Failures talking to the OAuth provider. Network errors are retryable.
SessionError
    Expired / invalid / missing session. ``SESSION_EXPIRED`` is retryable in
    the sense that a refresh is the natural recovery.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Literal

SecurityLevel = Literal["low", "medium", "high", "critical"]


class AuthErrorCode(str, enum.Enum):
    # configuration
    INVALID_CONFIG = "INVALID_CONFIG"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_DISABLED = "PROVIDER_DISABLED"
    # authentication
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCESS_DENIED = "ACCESS_DENIED"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_STATE = "INVALID_STATE"
    # session
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_SESSION = "INVALID_SESSION"
    # network
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    # security
    CSRF_ERROR = "CSRF_ERROR"
    INVALID_REDIRECT_URI = "INVALID_REDIRECT_URI"
    INSECURE_CONNECTION = "INSECURE_CONNECTION"
    # generic
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class EasyAuthError(Exception):
    """Base class for every error produced by easyauth."""

    def __init__(
        self,
        code: AuthErrorCode,
        message: str,
        *,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code: AuthErrorCode = code
        self.provider: str | None = provider
        self.details: dict[str, Any] = dict(details or {})
        self.request_id: str | None = request_id
        self.is_retryable: bool = is_retryable
        self.timestamp: datetime = datetime.now(timezone.utc)

    @property
    def message(self) -> str:
        return str(self)

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": str(self),
            "provider": self.provider,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "is_retryable": self.is_retryable,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> EasyAuthError:
        """Rebuild a generic :class:`EasyAuthError` from :meth:`to_payload` output."""
        err = EasyAuthError(
            AuthErrorCode(data["code"]),
            data.get("message", ""),
            provider=data.get("provider"),
            details=data.get("details"),
            request_id=data.get("request_id"),
            is_retryable=bool(data.get("is_retryable", False)),
        )
        if data.get("timestamp"):
            err.timestamp = datetime.fromisoformat(data["timestamp"])
        return err


class ConfigurationError(EasyAuthError):
    """Raised when required setup is missing or malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            AuthErrorCode.INVALID_CONFIG, message, details=details, is_retryable=False
        )


class ValidationError(EasyAuthError):
    """Malformed caller input (bad return URL, missing provider...)."""

    def __init__(
        self,
        message: str,
        code: AuthErrorCode = AuthErrorCode.VALIDATION_ERROR,
        *,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code, message, provider=provider, details=details, is_retryable=False
        )


class NetworkError(EasyAuthError):
    """Transport-level failure talking to a provider. Retryable."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        provider: str | None = None,
        response_body: str | None = None,
        request_id: str | None = None,
        code: AuthErrorCode = AuthErrorCode.NETWORK_ERROR,
    ) -> None:
        super().__init__(
            code,
            message,
            provider=provider,
            request_id=request_id,
            is_retryable=True,
            details={"status_code": status_code, "response_body": response_body},
        )
        self.status_code = status_code
        self.response_body = response_body


class SessionError(EasyAuthError):
    """Session is missing, invalid or expired."""

    def __init__(
        self,
        code: AuthErrorCode,
        message: str,
        session_id: str | None = None,
        *,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code,
            message,
            provider=provider,
            details={"session_id": session_id, **(details or {})},
            is_retryable=code is AuthErrorCode.SESSION_EXPIRED,
        )
        self.session_id = session_id


class SecurityError(EasyAuthError):
    """CSRF-suspect condition; may indicate an attack rather than a bug."""

    def __init__(
        self,
        code: AuthErrorCode,
        message: str,
        security_level: SecurityLevel = "medium",
        *,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code,
            message,
            provider=provider,
            details={"security_level": security_level, **(details or {})},
            is_retryable=False,
        )
        self.security_level: SecurityLevel = security_level


class ProviderError(EasyAuthError):
    """The provider rejected a request (bad code, revoked refresh token...)."""

    def __init__(
        self,
        provider: str,
        message: str,
        code: AuthErrorCode = AuthErrorCode.API_ERROR,
        *,
        provider_error_code: str | None = None,
        provider_error_description: str | None = None,
        details: dict[str, Any] | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(
            code,
            message,
            provider=provider,
            details={
                "provider_error_code": provider_error_code,
                "provider_error_description": provider_error_description,
                **(details or {}),
            },
            is_retryable=is_retryable,
        )
        self.provider_error_code = provider_error_code
        self.provider_error_description = provider_error_description


# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #
_FRIENDLY_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.NETWORK_ERROR: (
        "Unable to connect to authentication service. "
        "Please check your internet connection and try again."
    ),
    AuthErrorCode.TIMEOUT_ERROR: (
        "The authentication service took too long to respond. Please try again."
    ),
    AuthErrorCode.ACCESS_DENIED: "Access denied. Please check your credentials and try again.",
    AuthErrorCode.SESSION_EXPIRED: "Your session has expired. Please log in again.",
    AuthErrorCode.INVALID_CONFIG: (
        "Authentication service is not properly configured. Please contact support."
    ),
    AuthErrorCode.CSRF_ERROR: "Your sign-in attempt could not be verified. Please start again.",
}


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, EasyAuthError) and error.is_retryable


def is_network_error(error: BaseException) -> bool:
    return isinstance(error, NetworkError)


def is_security_error(error: BaseException) -> bool:
    return isinstance(error, SecurityError)


def user_friendly_message(error: BaseException) -> str:
    """Map an error to a message suitable for end users."""
    if isinstance(error, EasyAuthError):
        return _FRIENDLY_MESSAGES.get(
            error.code, "An authentication error occurred. Please try again."
        )
    return "An unexpected error occurred. Please try again."


def from_unknown(error: object, context: dict[str, Any] | None = None) -> EasyAuthError:
    """Wrap anything raised by a collaborator into an :class:`EasyAuthError`."""
    if isinstance(error, EasyAuthError):
        return error
    if isinstance(error, BaseException):
        wrapped = EasyAuthError(
            AuthErrorCode.UNKNOWN_ERROR,
            str(error) or type(error).__name__,
            details={"original_name": type(error).__name__, **(context or {})},
        )
        wrapped.__cause__ = error
        return wrapped
    return EasyAuthError(
        AuthErrorCode.UNKNOWN_ERROR,
        "An unknown error occurred",
        details={"original_error": repr(error), **(context or {})},
    )
