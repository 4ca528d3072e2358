"""Cached settings loaders.

Each loader builds its settings model once per process. Call
``clear_all_caches()`` in tests to force a reload from the environment.
"""

from __future__ import annotations

from functools import lru_cache

from .logs import LoggingSettings
from .redis import RedisSettings
from .status import StatusSettings


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_redis_settings() -> RedisSettings:
    """Get cached Redis settings.

    Returns:
        Validated and frozen RedisSettings instance.
    """
    return RedisSettings()


@lru_cache(maxsize=1)
def get_status_settings() -> StatusSettings:
    """Get cached status tracking settings.

    Returns:
        Validated and frozen StatusSettings instance.
    """
    return StatusSettings()


def clear_all_caches() -> None:
    """Clear all settings caches.

    Useful for testing or when you need to force reload settings.
    In production, prefer process restarts over cache clearing.
    """
    get_logging_settings.cache_clear()
    get_redis_settings.cache_clear()
    get_status_settings.cache_clear()
