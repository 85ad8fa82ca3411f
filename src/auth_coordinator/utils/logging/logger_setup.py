"""JSONL logger setup.

Loggers in auth-coordinator are passed dicts rather than format strings:

    logger.info({"event": "token_refreshed", "operation_id": "sync"})

JsonlFormatter renders each record as one JSON object per line with an
ISO 8601 `time` field and the record level added.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class JsonlFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
        }
        if isinstance(record.msg, dict):
            payload.update(record.msg)
        else:
            payload["message"] = record.getMessage()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_jsonl_logger(
    name: str,
    log_path: Path,
    log_level: int = logging.INFO,
) -> logging.Logger:
    """Create (or reconfigure) a logger writing JSON lines to log_path.

    Parent directories are created with 0o700 permissions. Existing file
    handlers on the logger are replaced so repeated setup does not duplicate
    output.

    Args:
        name: Logger name.
        log_path: Destination .jsonl file.
        log_level: Minimum level to record.

    Returns:
        The configured logger.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path.parent.chmod(0o700)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(JsonlFormatter())
    logger.addHandler(handler)
    return logger
