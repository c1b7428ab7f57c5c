"""Configuration package."""

from ledger.config.settings import (
    AppSettings,
    Settings,
    SplitSettings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "Settings",
    "SplitSettings",
    "StoreSettings",
    "get_settings",
    "validate_all_settings",
]
