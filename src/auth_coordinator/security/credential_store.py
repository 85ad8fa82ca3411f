"""Credential storage backends.

- MemoryCredentialStore: process-local, for tests and short-lived clients
- FileCredentialStore: JSON file with 0o600 permissions, written atomically

Both implement the CredentialStore protocol plus save/delete/exists used by
identity providers that write refreshed credentials.
"""

from __future__ import annotations

__all__ = [
    "FileCredentialStore",
    "MemoryCredentialStore",
    "create_credential_store",
]

import threading
from pathlib import Path

from pydantic import ValidationError

from auth_coordinator.constants import CONFIG_DIR, CREDENTIAL_FILE_NAME
from auth_coordinator.models import CredentialRecord
from auth_coordinator.telemetry.system.system_logger import get_system_logger
from auth_coordinator.utils.file_helpers import atomic_write_text

_logger = get_system_logger()


class MemoryCredentialStore:
    """In-memory credential storage."""

    def __init__(self, record: CredentialRecord | None = None) -> None:
        self._record = record
        self._lock = threading.Lock()

    def get_credential(self) -> CredentialRecord | None:
        with self._lock:
            return self._record

    def save(self, record: CredentialRecord) -> None:
        with self._lock:
            self._record = record

    def delete(self) -> None:
        with self._lock:
            self._record = None

    def exists(self) -> bool:
        with self._lock:
            return self._record is not None


class FileCredentialStore:
    """JSON file credential storage.

    The file holds one CredentialRecord. A missing file means no credential;
    an unreadable or corrupt file is logged and also treated as no credential,
    so the user is asked to authenticate again instead of failing hard.

    Reads are blocking file I/O; the coordinator calls get_credential() via
    asyncio.to_thread.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get_credential(self) -> CredentialRecord | None:
        with self._lock:
            if not self._path.exists():
                return None
            try:
                return CredentialRecord.from_json(self._path.read_text(encoding="utf-8"))
            except (OSError, ValidationError, ValueError) as e:
                _logger.warning(
                    {
                        "event": "credential_file_unreadable",
                        "path": str(self._path),
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    }
                )
                return None

    def save(self, record: CredentialRecord) -> None:
        with self._lock:
            atomic_write_text(self._path, record.to_json(), mode=0o600)
        _logger.debug({"event": "credential_saved", "path": str(self._path)})

    def delete(self) -> None:
        with self._lock:
            self._path.unlink(missing_ok=True)

    def exists(self) -> bool:
        return self._path.exists()


def create_credential_store(path: Path | None = None) -> FileCredentialStore:
    """Create file-backed credential storage.

    Args:
        path: Credential file (default: credentials.json under the platform
            config directory).

    Returns:
        FileCredentialStore at the resolved path.
    """
    return FileCredentialStore(path or Path(CONFIG_DIR) / CREDENTIAL_FILE_NAME)
