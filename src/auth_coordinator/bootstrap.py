"""Wiring of coordinator components from AppConfig.

Usage:
    config = AppConfig.load_from_files(get_config_path())
    configure_logging(config)
    coordinator = create_coordinator(config)
    async with create_monitor(coordinator, config) as monitor:
        ...
"""

from __future__ import annotations

import logging
from pathlib import Path

from auth_coordinator.config import AppConfig
from auth_coordinator.coordination.persistence import FileAuthStateCache, MemoryAuthStateCache
from auth_coordinator.coordination.state_coordinator import AuthStateCoordinator
from auth_coordinator.exceptions import ConfigurationError
from auth_coordinator.monitor.proactive import ProactiveRefreshMonitor
from auth_coordinator.security.credential_store import create_credential_store
from auth_coordinator.security.identity import AuthStateCache, IdentityProvider, WritableCredentialStore
from auth_coordinator.telemetry.audit.auth_logger import AuthLogger, create_auth_logger
from auth_coordinator.telemetry.system.system_logger import configure_system_logger_file
from auth_coordinator.utils.config import (
    get_auth_log_path,
    get_credential_path,
    get_system_log_path,
)


def configure_logging(config: AppConfig) -> AuthLogger | None:
    """Attach file logging if a log directory is configured.

    Returns:
        The audit logger, or None when logging to files is not configured.
    """
    system_log_path = get_system_log_path(config)
    auth_log_path = get_auth_log_path(config)
    if system_log_path is None or auth_log_path is None:
        return None

    level = logging.getLevelName(config.logging.log_level)
    configure_system_logger_file(system_log_path, level)
    return create_auth_logger(auth_log_path, level)


def create_state_cache(config: AppConfig) -> AuthStateCache:
    """File cache when cache_path is configured, in-memory otherwise."""
    expiry = config.persistence.cache_expiry_seconds
    if config.persistence.cache_path:
        return FileAuthStateCache(Path(config.persistence.cache_path).expanduser(), expiry)
    return MemoryAuthStateCache(expiry)


def create_coordinator(
    config: AppConfig,
    identity_provider: IdentityProvider | None = None,
    credential_store: WritableCredentialStore | None = None,
    auth_logger: AuthLogger | None = None,
) -> AuthStateCoordinator:
    """Build an AuthStateCoordinator from configuration.

    Args:
        config: Application configuration.
        identity_provider: Provider to use (default: OIDCIdentityProvider
            from config.oidc).
        credential_store: Credential store (default: file store at the
            configured credential path).
        auth_logger: Audit logger (see configure_logging()).

    Raises:
        ConfigurationError: If no provider is given and config.oidc is not set.
    """
    store = credential_store or create_credential_store(get_credential_path(config))

    if identity_provider is None:
        if config.oidc is None:
            raise ConfigurationError(
                "No identity provider configured. Add an 'oidc' section or pass identity_provider."
            )
        from auth_coordinator.providers.oidc import OIDCIdentityProvider

        identity_provider = OIDCIdentityProvider(config.oidc, store)

    return AuthStateCoordinator(
        identity_provider,
        store,
        cache=create_state_cache(config),
        config=config.coordinator,
        auth_logger=auth_logger,
    )


def create_monitor(coordinator: AuthStateCoordinator, config: AppConfig) -> ProactiveRefreshMonitor:
    return ProactiveRefreshMonitor(coordinator, config.monitor)
