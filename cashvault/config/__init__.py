"""Configuration package."""

from cashvault.config.settings import (
    AppSettings,
    DatabaseSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    JobSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "JobSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
