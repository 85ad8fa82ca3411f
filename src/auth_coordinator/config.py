"""Application configuration for auth-coordinator.

Defines configuration models for the coordinator, the proactive refresh
monitor, persistence, the reference OAuth provider and logging. Config is
stored at the OS-appropriate location (via platformdirs); every section has
defaults from constants.py, so an empty JSON object is a valid config file.

Example usage:
    # Load from config file
    config = AppConfig.load_from_files(config_path)

    # Save new configuration
    config.save_to_file(config_path)
"""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from auth_coordinator.constants import (
    AUTH_CACHE_DURATION_SECONDS,
    AUTH_STATE_CACHE_EXPIRY_SECONDS,
    BACKGROUND_CHECK_INTERVAL_SECONDS,
    BACKGROUND_RETRY_DELAY_SECONDS,
    CRITICAL_OPERATION_THRESHOLD_SECONDS,
    DEFAULT_OAUTH_SCOPES,
    MAX_BACKGROUND_FAILURES,
    MAX_SUSPEND_DURATION_SECONDS,
    OAUTH_CLIENT_TIMEOUT_SECONDS,
    PROACTIVE_REFRESH_THRESHOLD_SECONDS,
    REFRESH_SAFETY_MARGIN_SECONDS,
    REFRESH_TIMEOUT_SECONDS,
    SUSPEND_GRACE_PERIOD_SECONDS,
)
from auth_coordinator.utils.file_helpers import load_validated_json, require_file_exists


# =============================================================================
# Coordination
# =============================================================================


class CoordinatorConfig(BaseModel):
    """Authentication state coordinator settings.

    Attributes:
        cache_duration_seconds: How long a resolved identity is trusted.
        refresh_timeout_seconds: Upper bound on one credential exchange.
        refresh_safety_margin_seconds: Remaining validity a refreshed
            credential must exceed for a coordinated refresh to succeed.
        suspend_grace_period_seconds: Longest suspension after which resume()
            restores the cached state.
        max_suspend_duration_seconds: Longest suspension after which resume()
            refreshes instead of forcing reauthentication.
    """

    cache_duration_seconds: float = Field(default=AUTH_CACHE_DURATION_SECONDS, ge=0)
    refresh_timeout_seconds: float = Field(default=REFRESH_TIMEOUT_SECONDS, gt=0)
    refresh_safety_margin_seconds: float = Field(default=REFRESH_SAFETY_MARGIN_SECONDS, ge=0)
    suspend_grace_period_seconds: float = Field(default=SUSPEND_GRACE_PERIOD_SECONDS, ge=0)
    max_suspend_duration_seconds: float = Field(default=MAX_SUSPEND_DURATION_SECONDS, ge=0)

    @model_validator(mode="after")
    def _grace_within_max_suspend(self) -> "CoordinatorConfig":
        if self.suspend_grace_period_seconds > self.max_suspend_duration_seconds:
            raise ValueError("suspend_grace_period_seconds must not exceed max_suspend_duration_seconds")
        return self


class MonitorConfig(BaseModel):
    """Proactive refresh monitor settings.

    Attributes:
        proactive_refresh_threshold_seconds: Refresh once expiry is this close.
        critical_operation_threshold_seconds: Minimum validity before a
            critical operation may start.
        background_check_interval_seconds: Background loop cadence.
        max_background_failures: Consecutive failures before the loop disables itself.
        background_retry_delay_seconds: Wait after a failed background refresh.
        enable_background_refresh: Start the background loop on start().
    """

    proactive_refresh_threshold_seconds: float = Field(default=PROACTIVE_REFRESH_THRESHOLD_SECONDS, gt=0)
    critical_operation_threshold_seconds: float = Field(default=CRITICAL_OPERATION_THRESHOLD_SECONDS, gt=0)
    background_check_interval_seconds: float = Field(default=BACKGROUND_CHECK_INTERVAL_SECONDS, gt=0)
    max_background_failures: int = Field(default=MAX_BACKGROUND_FAILURES, ge=1)
    background_retry_delay_seconds: float = Field(default=BACKGROUND_RETRY_DELAY_SECONDS, ge=0)
    enable_background_refresh: bool = True

    @model_validator(mode="after")
    def _critical_within_proactive(self) -> "MonitorConfig":
        if self.critical_operation_threshold_seconds > self.proactive_refresh_threshold_seconds:
            raise ValueError(
                "critical_operation_threshold_seconds must not exceed proactive_refresh_threshold_seconds"
            )
        return self


class PersistenceConfig(BaseModel):
    """Persistence of auth state and credentials.

    Attributes:
        cache_expiry_seconds: Age after which a cached auth state is stale.
        cache_path: JSON file for the auth state cache (None: in-memory only).
        credential_path: JSON file for credentials (None: platform config dir).
    """

    cache_expiry_seconds: float = Field(default=AUTH_STATE_CACHE_EXPIRY_SECONDS, gt=0)
    cache_path: str | None = None
    credential_path: str | None = None


# =============================================================================
# Reference OAuth Provider
# =============================================================================


class OIDCConfig(BaseModel):
    """OAuth/OIDC endpoints for the reference identity provider.

    Attributes:
        token_endpoint: Token endpoint accepting refresh_token grants.
        userinfo_endpoint: Endpoint returning the current user's claims.
        client_id: OAuth client ID.
        scopes: OAuth scopes requested on refresh.
        timeout_seconds: HTTP timeout for provider requests.
    """

    token_endpoint: str
    userinfo_endpoint: str
    client_id: str
    scopes: list[str] = Field(
        default=list(DEFAULT_OAUTH_SCOPES),
        description="OAuth scopes to request",
    )
    timeout_seconds: int = Field(default=OAUTH_CLIENT_TIMEOUT_SECONDS, ge=1, le=300)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration settings.

    Within log_dir, logs are stored with this structure:
        <log_dir>/
        ├── system/
        │   └── system.jsonl
        └── audit/
            └── auth.jsonl

    Attributes:
        log_dir: Base directory for logs (None: log to stderr only).
        log_level: Logging level.
    """

    log_dir: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING"] = "INFO"


class AppConfig(BaseModel):
    """Main application configuration for auth-coordinator.

    Attributes:
        coordinator: Authentication state coordinator settings.
        monitor: Proactive refresh monitor settings.
        persistence: Auth state cache and credential file settings.
        oidc: Reference OAuth provider settings (optional).
        logging: Log directory and level.
    """

    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    oidc: OIDCConfig | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file.

        Creates parent directories if they don't exist.
        Sets secure permissions (0o700) on the config directory.

        Args:
            config_path: Path where auth_coordinator_config.json should be saved.
        """
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.parent.chmod(0o700)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(), f, indent=2)

        config_path.chmod(0o600)

    @classmethod
    def load_from_files(cls, config_path: Path) -> "AppConfig":
        """Load configuration from JSON file.

        Args:
            config_path: Path to the config file (auth_coordinator_config.json).

        Returns:
            AppConfig instance with loaded configuration.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config file is invalid or fails validation.
        """
        require_file_exists(config_path, file_type="configuration")
        return load_validated_json(
            config_path,
            cls,
            file_type="config",
            recovery_hint="Run 'auth-coordinator config init' to reconfigure.",
            encoding="utf-8",
        )
