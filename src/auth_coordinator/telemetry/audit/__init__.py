"""Audit logging for authentication state changes."""

from auth_coordinator.telemetry.audit.auth_logger import (
    AuthLogger,
    create_auth_logger,
)

__all__ = [
    "AuthLogger",
    "create_auth_logger",
]
