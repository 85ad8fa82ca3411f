"""Path helpers derived from AppConfig."""

from __future__ import annotations

from pathlib import Path

from auth_coordinator.config import AppConfig
from auth_coordinator.constants import (
    AUTH_STATE_CACHE_FILE_NAME,
    CONFIG_DIR,
    CONFIG_FILE_NAME,
    CREDENTIAL_FILE_NAME,
)


def get_config_dir() -> Path:
    return Path(CONFIG_DIR)


def get_config_path() -> Path:
    """Default location of auth_coordinator_config.json."""
    return get_config_dir() / CONFIG_FILE_NAME


def get_log_dir(config: AppConfig) -> Path | None:
    if config.logging.log_dir is None:
        return None
    return Path(config.logging.log_dir).expanduser()


def get_system_log_path(config: AppConfig) -> Path | None:
    log_dir = get_log_dir(config)
    return log_dir / "system" / "system.jsonl" if log_dir else None


def get_auth_log_path(config: AppConfig) -> Path | None:
    log_dir = get_log_dir(config)
    return log_dir / "audit" / "auth.jsonl" if log_dir else None


def get_cache_path(config: AppConfig) -> Path:
    """Auth state cache file (configured or under the config dir)."""
    if config.persistence.cache_path:
        return Path(config.persistence.cache_path).expanduser()
    return get_config_dir() / AUTH_STATE_CACHE_FILE_NAME


def get_credential_path(config: AppConfig) -> Path:
    """Credential file (configured or under the config dir)."""
    if config.persistence.credential_path:
        return Path(config.persistence.credential_path).expanduser()
    return get_config_dir() / CREDENTIAL_FILE_NAME
