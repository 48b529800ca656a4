from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from smart_library.core.settings import get_library_settings

_settings = get_library_settings()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.rate_limit_default],
    enabled=_settings.rate_limit_enabled,
)


def auth_rate_limit() -> str:
    return get_library_settings().rate_limit_auth
