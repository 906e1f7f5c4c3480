"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from shared.config import settings

    print(settings.environment)
    print(settings.staleness.max_consecutive_failures)
"""

from shared.config.settings import (
    ComposerSettings,
    Environment,
    HttpSettings,
    LifecycleSettings,
    LogLevel,
    Settings,
    StalenessSettings,
    StoreBackend,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "StoreBackend",
    "StalenessSettings",
    "ComposerSettings",
    "LifecycleSettings",
    "HttpSettings",
]
