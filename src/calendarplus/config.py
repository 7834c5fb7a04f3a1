"""Configuration management for CalendarPlus.

Supports layered configuration with priority: CLI args > ENV vars > .env file > defaults
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import platformdirs
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from calendarplus.models import ProviderKind

APP_NAME = "CalendarPlus"


def _get_default_data_dir() -> Path:
    """Platform-appropriate user data directory.

    - macOS: ~/Library/Application Support/CalendarPlus
    - Windows: %APPDATA%/CalendarPlus
    - Linux: ~/.local/share/calendarplus
    """
    return Path(platformdirs.user_data_dir(APP_NAME, APP_NAME))


def _get_default_config_dir() -> Path:
    """Platform-appropriate user config directory (device-local settings)."""
    return Path(platformdirs.user_config_dir(APP_NAME, APP_NAME))


def _get_default_sync_dir() -> Path:
    """Synced folder holding the calendar document and global settings.

    Uses the OneDrive folder when the OS exposes one, else ~/OneDrive.
    """
    onedrive = os.environ.get("OneDrive") or str(Path.home() / "OneDrive")
    return Path(onedrive) / APP_NAME


def get_user_log_dir() -> Path:
    """Platform-appropriate user logs directory."""
    return Path(platformdirs.user_log_dir(APP_NAME, APP_NAME))


class Settings(BaseSettings):
    """Application settings with layered configuration support.

    Configuration is loaded in the following priority (highest to lowest):
    1. Keyword arguments (CLI overrides)
    2. Environment variables (prefixed with CALENDARPLUS_)
    3. .env file (if present in current directory)
    4. Default values

    Environment variables:
        CALENDARPLUS_DATA_DIR: Application data directory
        CALENDARPLUS_CONFIG_DIR: Device-local settings directory
        CALENDARPLUS_SYNC_DIR: Synced folder for the calendar document
        CALENDARPLUS_LOG_LEVEL: Logging level (default: INFO)
        CALENDARPLUS_GEMINI_API_KEY: Fallback key for single-backend mode
    """

    model_config = SettingsConfigDict(
        env_prefix="CALENDARPLUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    debug: bool = Field(default=False, description="Enable debug logging")

    # Paths
    data_dir: Path = Field(
        default_factory=_get_default_data_dir,
        description="Base directory for application data",
    )
    config_dir: Path = Field(
        default_factory=_get_default_config_dir,
        description="Directory for device-local settings (never synced)",
    )
    sync_dir: Path = Field(
        default_factory=_get_default_sync_dir,
        description="Synced folder holding the calendar document and global settings",
    )
    data_file_name: str = Field(
        default="calendar-data.json",
        min_length=1,
        description="File name of the shared calendar document",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_to_file: bool = Field(
        default=True,
        description="Enable logging to file (in addition to console)",
    )
    log_file_max_bytes: int = Field(
        default=5 * 1024 * 1024,  # 5 MB
        ge=1024 * 1024,
        le=100 * 1024 * 1024,
        description="Maximum size of each log file before rotation",
    )
    log_file_backup_count: int = Field(default=3, ge=1, le=20)

    # Text generation
    ai_request_timeout: float = Field(
        default=60.0,
        ge=5.0,
        le=600.0,
        description="HTTP timeout for one backend call (seconds)",
    )
    default_provider: ProviderKind = Field(
        default=ProviderKind.GEMINI,
        description="Backend used in single-backend mode",
    )
    gemini_api_key: str = Field(
        default="",
        description="Fallback API key for single-backend mode when none is saved",
    )
    gemini_models: list[str] = Field(
        default_factory=lambda: ["gemini-2.5-flash", "gemini-2.0-flash", "gemini-1.5-flash"],
        description="Gemini model variants, tried in order",
    )
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-5-haiku-latest"
    groq_model: str = "llama-3.3-70b-versatile"

    # Fallback history
    fallback_log_limit: int = Field(default=50, ge=1, le=1000)
    fallback_query_limit: int = Field(default=20, ge=1, le=1000)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("gemini_models", mode="before")
    @classmethod
    def parse_gemini_models(cls, v: object) -> object:
        """Accept a comma-separated string (CLI overrides)."""
        if isinstance(v, str):
            v = [m.strip() for m in v.split(",") if m.strip()]
        if isinstance(v, list) and not v:
            raise ValueError("gemini_models must name at least one model")
        return v

    @property
    def device_settings_path(self) -> Path:
        return self.config_dir / "device-settings.json"

    @property
    def global_settings_path(self) -> Path:
        return self.sync_dir / "settings.json"

    @property
    def default_data_path(self) -> Path:
        return self.sync_dir / self.data_file_name

    @property
    def preload_config_path(self) -> Path:
        return self.data_dir / "preload-config.json"

    @property
    def log_dir(self) -> Path:
        return get_user_log_dir()

    @property
    def log_file_path(self) -> Path:
        return self.log_dir / "calendarplus.log"

    def check(self) -> list[str]:
        """Validate configuration and return any warnings."""
        warnings = []

        for label, directory in (
            ("Config", self.config_dir),
            ("Sync", self.sync_dir),
        ):
            if directory.exists() and not directory.is_dir():
                warnings.append(f"{label} path exists but is not a directory: {directory}")

        if not self.sync_dir.parent.exists():
            warnings.append(
                f"Sync folder parent does not exist: {self.sync_dir.parent}\n"
                f"  → It will be created on first save; set CALENDARPLUS_SYNC_DIR to change it"
            )

        if self.fallback_query_limit > self.fallback_log_limit:
            warnings.append(
                f"fallback_query_limit ({self.fallback_query_limit}) exceeds "
                f"fallback_log_limit ({self.fallback_log_limit})"
            )

        return warnings

    def print_config(self) -> None:
        """Print current configuration to stdout."""
        print("CalendarPlus Configuration:")
        print(f"  Debug: {self.debug}")
        print(f"  Log Level: {self.log_level}")
        print(f"  Log to File: {self.log_to_file}")
        if self.log_to_file:
            print(f"  Log File: {self.log_file_path}")
        print(f"  Data Directory: {self.data_dir}")
        print(f"  Device Settings: {self.device_settings_path}")
        print(f"  Global Settings: {self.global_settings_path}")
        print(f"  Default Data File: {self.default_data_path}")
        print(f"  Default Provider: {self.default_provider.value}")
        print(f"  Gemini Models: {', '.join(self.gemini_models)}")
        print(f"  Request Timeout: {self.ai_request_timeout}s")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are loaded once and cached. To reload settings,
    call reset_settings() first.
    """
    return Settings()


def reset_settings() -> None:
    """Clear settings cache to force reload on next get_settings() call."""
    get_settings.cache_clear()
