"""
Configuration Management for LedgerSync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Backend credentials, cache lifetimes and retry policies are all
tunable from the environment without touching business logic.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Hosted Postgres (Supabase) backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Supabase project URL"
    )
    key: str = Field(
        ...,
        description="Supabase anon or service key"
    )
    schema_name: str = Field(
        default="public",
        description="Postgres schema exposed through PostgREST"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject placeholder project URLs."""
        if not v.startswith("http") or "YOUR_PROJECT" in v:
            raise ValueError(f"Invalid Supabase URL: {v}")
        return v.rstrip("/")


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGERSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug logging"
    )

    # Collection cache
    cache_ttl_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="How long a fetched collection stays fresh (30 minutes)"
    )
    temp_id_prefix: str = Field(
        default="temp-",
        min_length=1,
        description="Prefix for locally assigned identities"
    )

    # Reference resolution
    search_limit: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Maximum options returned by a typeahead search"
    )
    recent_options_limit: int = Field(
        default=10,
        ge=1,
        le=50,
        description="How many recent references are stored per entity type"
    )
    recent_options_visible: int = Field(
        default=5,
        ge=1,
        le=50,
        description="How many recent references are shown per entity type"
    )
    recent_options_path: Path = Field(
        default=Path(".ledgersync/recent.json"),
        description="File the recent-reference lists are persisted to"
    )
    default_item_size: str = Field(
        default="Standard",
        description="Size used for order items submitted without one"
    )

    # Background refresh after a composite creation
    refresh_retry_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Total refresh attempts (first try plus retries)"
    )
    refresh_retry_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=30.0,
        description="Delay between refresh attempts"
    )

    @field_validator('recent_options_visible')
    @classmethod
    def validate_visible(cls, v: int, info) -> int:
        """Cannot show more recent options than are stored."""
        limit = info.data.get("recent_options_limit")
        if limit is not None and v > limit:
            raise ValueError(
                f"recent_options_visible ({v}) exceeds recent_options_limit ({limit})"
            )
        return v


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.supabase
        results["supabase"] = True
    except Exception as e:
        results["supabase"] = False
        results["supabase_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
