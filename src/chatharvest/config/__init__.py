"""Configuration package.

Usage:
    from chatharvest.config import get_settings

    settings = get_settings()
    settings.discovery_stable_rounds
"""

from .settings import (
    DevelopmentSettings,
    HarvestSettings,
    TestSettings,
    get_settings,
    reset_settings,
)

__all__ = [
    "HarvestSettings",
    "DevelopmentSettings",
    "TestSettings",
    "get_settings",
    "reset_settings",
]
