"""Configuration package."""

from controlmoney.config.settings import (
    GoogleSheetsSettings,
    RemoteDatabaseSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "RemoteDatabaseSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
