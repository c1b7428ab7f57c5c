"""
Configuration Management for Split Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here so the storage locations and the
settlement tolerances are visible in one place.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Local storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    db_path: Path = Field(
        default=Path("ledger_data/ledger.sqlite3"),
        description="Path of the primary SQLite store"
    )
    fallback_path: Path = Field(
        default=Path("ledger_data/fallback.json"),
        description="Path of the flat best-effort mirror"
    )
    legacy_path: Path = Field(
        default=Path("ledger_data/legacy.json"),
        description="Path of the prior-format flat data blob to import once"
    )
    open_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Connection attempts per store initialisation"
    )


class SplitSettings(BaseSettings):
    """Settlement configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_SPLIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    amount_epsilon: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Tolerance when manual shares are checked against the total"
    )
    default_currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Currency code used when a user has not chosen one"
    )
    default_expense_category: str = Field(
        default="other",
        description="Category of the expense optionally created with a split"
    )

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )
    migration_settings_key: str = Field(
        default="migration",
        min_length=1,
        description="Reserved settings key holding the one-time import flag"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def splits(self) -> SplitSettings:
        return SplitSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the groups that failed.
    """
    results = {}
    settings = get_settings()

    for name in ("store", "splits", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
