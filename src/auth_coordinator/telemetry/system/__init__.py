"""Operational system logger."""

from auth_coordinator.telemetry.system.system_logger import (
    configure_system_logger_file,
    get_system_logger,
)

__all__ = [
    "configure_system_logger_file",
    "get_system_logger",
]
