"""
Harbormaster Settings - Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarbormasterSettings(BaseSettings):
    """
    Harbormaster configuration settings.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file in current directory
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="HM_",  # All Harbormaster env vars must start with HM_
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR) (env: HM_LOG_LEVEL)",
    )

    # Concurrency Configuration
    parallel: bool = Field(
        default=True,
        description="Process contexts and independent resources concurrently (env: HM_PARALLEL)",
    )

    max_workers: int = Field(
        default=8,
        ge=1,
        description="Upper bound on concurrent resource operations (env: HM_MAX_WORKERS)",
    )

    # Cleanup Configuration
    strict_cleanup: bool = Field(
        default=False,
        description="Fail prune/destroy on any deletion failure (env: HM_STRICT_CLEANUP)",
    )

    verbose_errors: bool = Field(
        default=False,
        description="Surface every cleanup error instead of a summary (env: HM_VERBOSE_ERRORS)",
    )


# Global settings instance
_settings: HarbormasterSettings | None = None


def get_settings() -> HarbormasterSettings:
    """
    Get the global settings instance.

    Creates the settings instance on first call, then returns cached instance.

    Returns:
        HarbormasterSettings instance
    """
    global _settings
    if _settings is None:
        _settings = HarbormasterSettings()
    return _settings


def reload_settings() -> HarbormasterSettings:
    """
    Reload settings from environment and .env file.

    Returns:
        New HarbormasterSettings instance
    """
    global _settings
    _settings = HarbormasterSettings()
    return _settings
