"""Authentication state persistence caches.

Implementations of the AuthStateCache protocol:
- MemoryAuthStateCache: process-local cache with expiry and sync listeners
- FileAuthStateCache: additionally persists the entry as a JSON file so a
  new process can restore the last known state

An entry is fresh while its age is within the expiry. Stale reads
(allow_stale=True) accept entries up to twice the expiry.
cleanup_stale_state() removes an entry once it is past even the stale window.

Sync listeners receive (event_type, payload) for the events state_cached,
state_cleared and state_synchronized. A failing listener is logged and
never affects the cache or other listeners.
"""

from __future__ import annotations

__all__ = [
    "FileAuthStateCache",
    "MemoryAuthStateCache",
    "SyncEventType",
]

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from auth_coordinator.constants import AUTH_STATE_CACHE_EXPIRY_SECONDS
from auth_coordinator.models import CachedAuthState
from auth_coordinator.security.identity import SyncListener
from auth_coordinator.telemetry.system.system_logger import get_system_logger
from auth_coordinator.utils.file_helpers import atomic_write_text


class SyncEventType(str, Enum):
    STATE_CACHED = "state_cached"
    STATE_CLEARED = "state_cleared"
    STATE_SYNCHRONIZED = "state_synchronized"


class MemoryAuthStateCache:
    """In-memory auth state cache."""

    def __init__(
        self,
        expiry: float = AUTH_STATE_CACHE_EXPIRY_SECONDS,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._expiry = expiry
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._state: CachedAuthState | None = None
        self._listeners: list[SyncListener] = []
        self._logger = get_system_logger()

    @property
    def expiry(self) -> float:
        return self._expiry

    def get_cached_auth_state(self, allow_stale: bool = False) -> CachedAuthState | None:
        state = self._state or self._load()
        if state is None:
            return None

        max_age = self._expiry * 2 if allow_stale else self._expiry
        if state.age_seconds(self._clock()) > max_age:
            return None
        return state

    def cache_auth_state(self, state: CachedAuthState, meta: dict[str, Any] | None = None) -> None:
        source = (meta or {}).get("source", state.source)
        entry = state.model_copy(update={"cached_at": self._clock(), "source": source})
        self._state = entry
        self._store(entry)
        self._notify(
            SyncEventType.STATE_CACHED,
            {"is_authenticated": entry.is_authenticated, "user_id": entry.user_id, "source": source},
        )

    def clear_cached_state(self, reason: str = "manual") -> None:
        self._state = None
        self._remove()
        self._notify(SyncEventType.STATE_CLEARED, {"reason": reason})

    def synchronize_state(self, state: CachedAuthState, source: str = "unknown") -> None:
        self.cache_auth_state(state, {"source": source})
        self._notify(
            SyncEventType.STATE_SYNCHRONIZED,
            {"is_authenticated": state.is_authenticated, "user_id": state.user_id, "source": source},
        )

    def add_sync_listener(self, listener: SyncListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def cleanup_stale_state(self) -> int:
        """Remove the entry if it is older than the stale window.

        Returns:
            Number of entries removed.
        """
        state = self._state or self._load()
        if state is None:
            return 0
        age = state.age_seconds(self._clock())
        if age <= self._expiry * 2:
            return 0

        self._state = None
        self._remove()
        self._logger.info({"event": "stale_auth_state_removed", "age_seconds": age})
        return 1

    def get_status(self) -> dict[str, Any]:
        state = self._state
        return {
            "has_cached_state": state is not None,
            "cache_age_seconds": state.age_seconds(self._clock()) if state else None,
            "expiry_seconds": self._expiry,
            "listener_count": len(self._listeners),
        }

    def _notify(self, event_type: SyncEventType, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_type.value, payload)
            except Exception as e:
                self._logger.warning(
                    {
                        "event": "sync_listener_failed",
                        "sync_event": event_type.value,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    }
                )

    # Storage hooks for subclasses; the in-memory cache keeps nothing else.
    def _load(self) -> CachedAuthState | None:
        return None

    def _store(self, state: CachedAuthState) -> None:
        pass

    def _remove(self) -> None:
        pass


class FileAuthStateCache(MemoryAuthStateCache):
    """Auth state cache persisted to a JSON file (0o600, written atomically)."""

    def __init__(
        self,
        path: Path,
        expiry: float = AUTH_STATE_CACHE_EXPIRY_SECONDS,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(expiry, clock=clock)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> CachedAuthState | None:
        if not self._path.exists():
            return None
        try:
            state = CachedAuthState.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            self._logger.warning(
                {
                    "event": "auth_state_cache_unreadable",
                    "path": str(self._path),
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
            return None
        self._state = state
        return state

    def _store(self, state: CachedAuthState) -> None:
        atomic_write_text(self._path, state.model_dump_json(), mode=0o600)

    def _remove(self) -> None:
        self._path.unlink(missing_ok=True)
