"""easyauth – OAuth 2.0 / OpenID Connect login and session engine."""

from __future__ import annotations

from easyauth.core import *  # noqa: F401,F403
from easyauth.core import __all__ as _core_all
from easyauth.core.engine import AuthEngine
from easyauth.providers import ProviderAdapter, create_provider

__version__ = "0.1.0"

__all__ = [*_core_all, "AuthEngine", "ProviderAdapter", "create_provider", "__version__"]
