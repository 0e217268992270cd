"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The ledger has no external services, so configuration is limited to
where the state document lives and how the periodic passes behave.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    return Path.home() / ".budget_ledger"


class StorageSettings(BaseSettings):
    """Ledger state document location and write behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_LEDGER_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default_factory=_default_data_dir,
        description="Private data directory holding the ledger state document"
    )
    state_filename: str = Field(
        default="budget_state.json",
        min_length=1,
        description="File name of the ledger state document"
    )
    write_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts made for a state write before giving up"
    )

    @field_validator('state_filename')
    @classmethod
    def validate_state_filename(cls, v: str) -> str:
        """The document must live directly inside data_dir."""
        if Path(v).name != v:
            raise ValueError(f"state_filename must be a bare file name, got {v!r}")
        return v

    @property
    def state_path(self) -> Path:
        """Full path of the ledger state document."""
        return self.data_dir / self.state_filename


class LedgerSettings(BaseSettings):
    """
    Main ledger settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured log output"
    )

    # Periodic passes
    reduction_log_retention: int = Field(
        default=500,
        ge=1,
        description="Number of most recent balance reduction logs to keep"
    )
    require_transfer_before_processing: bool = Field(
        default=True,
        description="Block scheduled processing until transfers ran this month"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def effective_log_level(self) -> str:
        """Debug mode forces DEBUG output regardless of log_level."""
        return "DEBUG" if self.debug_mode else self.log_level


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
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings(settings: Optional[Settings] = None) -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    "<setting_name>_error" message for each invalid section.
    Useful for startup checks.
    """
    results = {}

    settings = settings or get_settings()

    try:
        _ = settings.storage
        results["storage"] = True
    except Exception as e:
        results["storage"] = False
        results["storage_error"] = str(e)

    try:
        _ = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    return results
