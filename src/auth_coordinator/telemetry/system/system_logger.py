"""System logger for operational events.

Every component logs through the same named logger. Without configuration
records go to stderr at WARNING and above; configure_system_logger_file()
adds a JSONL file handler (<log_dir>/system/system.jsonl).
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from auth_coordinator.utils.logging.logger_setup import JsonlFormatter, setup_jsonl_logger

SYSTEM_LOGGER_NAME = "auth_coordinator.system"

_logger = logging.getLogger(SYSTEM_LOGGER_NAME)
if not _logger.handlers:
    _console = logging.StreamHandler(sys.stderr)
    _console.setLevel(logging.WARNING)
    _console.setFormatter(JsonlFormatter())
    _logger.addHandler(_console)
    _logger.setLevel(logging.INFO)
    _logger.propagate = False


def get_system_logger() -> logging.Logger:
    """Return the shared system logger."""
    return _logger


def configure_system_logger_file(log_path: Path, log_level: int = logging.INFO) -> logging.Logger:
    """Attach a JSONL file handler to the system logger.

    The stderr handler is kept for warnings and errors.

    Args:
        log_path: Path to system.jsonl.
        log_level: Minimum level written to the file.

    Returns:
        The system logger.
    """
    return setup_jsonl_logger(SYSTEM_LOGGER_NAME, log_path, log_level)
