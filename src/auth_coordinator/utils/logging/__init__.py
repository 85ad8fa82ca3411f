"""Logging setup helpers."""

from auth_coordinator.utils.logging.logger_setup import (
    JsonlFormatter,
    setup_jsonl_logger,
)

__all__ = [
    "JsonlFormatter",
    "setup_jsonl_logger",
]
