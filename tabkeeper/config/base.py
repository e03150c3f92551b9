"""
Configuration for tabkeeper services.

Grouping preferences, retention limits, storage budget and restore timing.
Values load from environment variables (and an optional .env file).
"""

from __future__ import annotations

import os
import pathlib
from typing import TypeVar

import lazy_object_proxy
import pydantic
import pydantic_settings

T = TypeVar('T', bound='TabKeeperSettings')


class TabKeeperSettings(pydantic_settings.BaseSettings):
    """Shared configuration for the CLI and background tasks."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,  # Fail fast on misconfiguration
        extra='forbid',  # Reject unknown environment variables
    )

    # Application metadata
    APP_NAME: str = 'tab-keeper'
    VERSION: str = '0.1.0'

    # Where the local backing medium lives
    DATA_DIR: pathlib.Path = pathlib.Path.home() / '.tabkeeper'
    STORAGE_NAMESPACE: str = 'local'

    # Storage budget (bytes, UTF-16 estimate)
    STORAGE_QUOTA_BYTES: int = 10 * 1024 * 1024
    STORAGE_WARNING_THRESHOLD: float = 0.9

    # Undo log
    UNDO_HISTORY_LIMIT: int = 20

    # Background saves and retention
    AUTO_SAVE_ENABLED: bool = True
    AUTO_SAVE_INTERVAL_MINUTES: int = 5
    MAX_AUTO_SAVE_SESSIONS: int = 5
    CRASH_RECOVERY_ENABLED: bool = True
    MAX_RECOVERY_SESSIONS: int = 3

    # Grouping preferences consumed when creating groups
    AUTO_COLLAPSE_GROUPS: bool = False
    SKIP_SINGLE_TAB_GROUPS: bool = True

    # Import limits
    MAX_IMPORT_FILE_BYTES: int = 5 * 1024 * 1024

    # Export compression (not overrideable at call-time)
    COMPRESSION_LEVEL: int = 3  # zstd level (3 = balanced)

    # Restore convergence wait
    RESTORE_POLL_INTERVAL_SECONDS: float = 0.2
    RESTORE_MAX_WAIT_SECONDS: float = 10.0
    RESTORE_STABILITY_POLLS: int = 3

    @pydantic.field_validator('AUTO_SAVE_INTERVAL_MINUTES')
    @classmethod
    def validate_auto_save_interval(cls, v: int) -> int:
        """Auto-save interval must be between 1 and 120 minutes."""
        if not 1 <= v <= 120:
            raise ValueError('AUTO_SAVE_INTERVAL_MINUTES must be between 1-120')
        return v

    @pydantic.field_validator('MAX_RECOVERY_SESSIONS')
    @classmethod
    def validate_max_recovery_sessions(cls, v: int) -> int:
        """Keep between 1 and 20 recovery sessions."""
        if not 1 <= v <= 20:
            raise ValueError('MAX_RECOVERY_SESSIONS must be between 1-20')
        return v

    @pydantic.field_validator('STORAGE_WARNING_THRESHOLD')
    @classmethod
    def validate_warning_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError('STORAGE_WARNING_THRESHOLD must be in (0, 1]')
        return v

    @pydantic.field_validator('COMPRESSION_LEVEL')
    @classmethod
    def validate_compression_level(cls, v: int) -> int:
        """Validate compression level is within zstd bounds."""
        if not 1 <= v <= 22:
            raise ValueError('COMPRESSION_LEVEL must be between 1-22')
        return v

    @pydantic.field_validator(
        'STORAGE_QUOTA_BYTES', 'UNDO_HISTORY_LIMIT', 'MAX_AUTO_SAVE_SESSIONS', 'MAX_IMPORT_FILE_BYTES'
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError('must be positive')
        return v


def get_settings(settings_class: type[T], env_file: str | None = None) -> T:
    """
    Factory for creating settings with dynamic .env file loading.

    LOAD_ENV_FILE environment variable specifies custom .env file path.
    When unset, loads from environment variables only.

    Args:
        settings_class: Settings class to instantiate
        env_file: Optional path to .env file (overrides LOAD_ENV_FILE)

    Returns:
        Settings instance

    Raises:
        FileNotFoundError: If specified .env file doesn't exist
    """
    env_file_path = env_file or os.getenv('LOAD_ENV_FILE')

    if not env_file_path:
        return settings_class()  # No .env file, load from environment only

    resolved_path = pathlib.Path(env_file_path).resolve()
    if not resolved_path.exists():
        raise FileNotFoundError(f'Environment file not found: {resolved_path}')

    return settings_class(_env_file=resolved_path)


def lazy_settings(settings_class: type[T]) -> T:
    """
    Lazy settings - defers instantiation until first access.

    Args:
        settings_class: Settings class to instantiate

    Returns:
        Proxy that instantiates settings on first access
    """
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))


# Module-level singleton (lazy-loaded)
settings = lazy_settings(TabKeeperSettings)
