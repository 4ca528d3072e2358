"""Pydantic Settings v2 configuration.

Settings are split by domain (status/redis/logging), read from the
environment (and an optional .env file), frozen after validation and
cached per process:

    from jobstatus.core.settings import get_status_settings

    settings = get_status_settings()
    print(settings.effective_expiration)

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .loader import (
    clear_all_caches,
    get_logging_settings,
    get_redis_settings,
    get_status_settings,
)
from .logs import LoggingSettings
from .redis import RedisSettings
from .status import DEFAULT_EXPIRY, StatusSettings

__all__ = [
    "DEFAULT_EXPIRY",
    "LoggingSettings",
    "RedisSettings",
    "StatusSettings",
    "clear_all_caches",
    "get_logging_settings",
    "get_redis_settings",
    "get_status_settings",
]
