"""Configuration package."""

from nami.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    RateSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "RateSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
