"""Monitor event emission.

Listeners are called one at a time with an event dict:

    {"type": "token_refreshed", "timestamp": "...", "operation_id": "...", ...}

A listener that raises is logged and skipped; it never stops other
listeners or reaches the code that emitted the event. Coroutine listeners
are scheduled as tasks on the running loop.
"""

from __future__ import annotations

__all__ = [
    "EventListener",
    "MonitorEventEmitter",
    "MonitorEventType",
]

import asyncio
import inspect
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from auth_coordinator.telemetry.system.system_logger import get_system_logger

EventListener = Callable[[dict[str, Any]], Any]


class MonitorEventType(str, Enum):
    """Events emitted by the proactive refresh monitor."""

    TOKEN_REFRESHED = "token_refreshed"
    REFRESH_FAILED = "refresh_failed"
    CRITICAL_OPERATION_BLOCKED = "critical_operation_blocked"


class MonitorEventEmitter:
    """Registry of event listeners with per-listener fault isolation."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: dict[MonitorEventType, list[EventListener]] = {
            event_type: [] for event_type in MonitorEventType
        }
        self._pending: set[asyncio.Task[Any]] = set()
        self._logger = get_system_logger()

    def add_listener(self, event_type: MonitorEventType | str, listener: EventListener) -> bool:
        """Register a listener.

        Returns:
            False if event_type is not a known event type.
        """
        resolved = self._resolve(event_type)
        if resolved is None:
            return False
        self._listeners[resolved].append(listener)
        return True

    def remove_listener(self, event_type: MonitorEventType | str, listener: EventListener) -> bool:
        """Unregister a listener; False if it was not registered."""
        resolved = self._resolve(event_type)
        if resolved is None or listener not in self._listeners[resolved]:
            return False
        self._listeners[resolved].remove(listener)
        return True

    def clear(self) -> None:
        for listeners in self._listeners.values():
            listeners.clear()

    def listener_counts(self) -> dict[str, int]:
        return {event_type.value: len(listeners) for event_type, listeners in self._listeners.items()}

    def emit(self, event_type: MonitorEventType, **extra: Any) -> None:
        """Notify every listener registered for event_type."""
        event: dict[str, Any] = {
            "type": event_type.value,
            "timestamp": self._clock().isoformat(),
        }
        event.update(extra)

        for listener in list(self._listeners[event_type]):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._listener_task_done)
            except Exception as e:
                self._log_listener_failure(event_type.value, e)

    async def drain(self) -> None:
        """Wait for scheduled coroutine listeners to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _listener_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._log_listener_failure("async_listener", error)

    def _resolve(self, event_type: MonitorEventType | str) -> MonitorEventType | None:
        try:
            return MonitorEventType(event_type)
        except ValueError:
            self._logger.warning({"event": "unknown_monitor_event_type", "event_type": str(event_type)})
            return None

    def _log_listener_failure(self, event_type: str, error: BaseException) -> None:
        self._logger.warning(
            {
                "event": "monitor_listener_failed",
                "event_type": event_type,
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        )
