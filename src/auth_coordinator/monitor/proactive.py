"""Proactive refresh monitor.

Keeps the credential ahead of its expiry so operations do not fail midway:

- Critical operations: ensure_tokens_for_critical_operation() refuses to
  let an operation start unless the credential outlives its estimated
  duration plus the critical threshold, refreshing first when needed.
- Scheduled refreshes: one-shot timers keyed by operation id; re-scheduling
  an id replaces its timer.
- Background loop: periodically refreshes once the credential is within
  the proactive threshold; after max_background_failures consecutive
  failures it disables itself and leaves a failure record.

The monitor never touches authentication state directly. Every refresh is a
coordinated refresh on the AuthStateCoordinator.

Usage:
    async with ProactiveRefreshMonitor(coordinator) as monitor:
        report = await monitor.execute_with_token_validation(
            upload_report, operation_id="upload", estimated_duration=90
        )
"""

from __future__ import annotations

__all__ = ["ProactiveRefreshMonitor", "ScheduledRefresh"]

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from auth_coordinator.config import MonitorConfig
from auth_coordinator.coordination.state_coordinator import AuthStateCoordinator
from auth_coordinator.models import MonitoringStatus
from auth_coordinator.monitor.events import EventListener, MonitorEventEmitter, MonitorEventType
from auth_coordinator.security.classifier import ClassifiedAuthError, ErrorKind, is_authentication_error
from auth_coordinator.telemetry.system.system_logger import get_system_logger

T = TypeVar("T")


@dataclass
class ScheduledRefresh:
    """A pending one-shot refresh."""

    operation_id: str
    due_at: datetime
    scheduled_at: datetime
    task: asyncio.Task[None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "due_at": self.due_at.isoformat(),
            "scheduled_at": self.scheduled_at.isoformat(),
        }


class ProactiveRefreshMonitor:
    """Proactive credential refresh on top of an AuthStateCoordinator.

    Args:
        coordinator: Coordinator that performs every refresh.
        config: Thresholds, background cadence and failure limit.
        clock: Returns the current UTC time.
        sleep: Awaited by the background loop and scheduled refreshes.
    """

    def __init__(
        self,
        coordinator: AuthStateCoordinator,
        config: MonitorConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._coordinator = coordinator
        self._config = config or MonitorConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._logger = get_system_logger()
        self._events = MonitorEventEmitter(self._clock)

        self._background_enabled = False
        self._background_task: asyncio.Task[None] | None = None
        self._last_background_check: datetime | None = None
        self._background_failure_count = 0
        self._last_background_failure: dict[str, Any] | None = None

        self._scheduled: dict[str, ScheduledRefresh] = {}
        # Cancelled tasks awaited by aclose()
        self._retired: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def is_background_refresh_enabled(self) -> bool:
        return self._background_enabled

    @property
    def background_failure_count(self) -> int:
        return self._background_failure_count

    @property
    def last_background_failure(self) -> dict[str, Any] | None:
        return self._last_background_failure

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start background refresh if configured. Requires a running loop."""
        if self._config.enable_background_refresh:
            self.enable_background_refresh()

    async def __aenter__(self) -> "ProactiveRefreshMonitor":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def enable_background_refresh(self) -> None:
        """Start the background loop (no-op if already running).

        The first check runs immediately. Re-enabling resets the consecutive
        failure counter.
        """
        if self._background_enabled:
            return

        self._background_enabled = True
        self._background_failure_count = 0
        self._background_task = asyncio.get_running_loop().create_task(
            self._background_loop(), name="proactive-refresh-background"
        )
        self._logger.info(
            {
                "event": "background_refresh_enabled",
                "interval_seconds": self._config.background_check_interval_seconds,
            }
        )

    def disable_background_refresh(self) -> None:
        """Stop the background loop (no-op if not running)."""
        if not self._background_enabled:
            return

        self._background_enabled = False
        task = self._background_task
        self._background_task = None
        # The loop disabling itself just exits; anything else cancels it.
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            self._retired.add(task)
        self._logger.info({"event": "background_refresh_disabled"})

    def shutdown(self) -> None:
        """Disable the loop, cancel scheduled refreshes, drop listeners. Idempotent."""
        self.disable_background_refresh()
        for operation_id in list(self._scheduled):
            self.cancel_scheduled_refresh(operation_id)
        self._events.clear()

    async def aclose(self) -> None:
        """shutdown() and wait for cancelled tasks and async listeners."""
        self.shutdown()
        retired = list(self._retired)
        self._retired.clear()
        if retired:
            await asyncio.gather(*retired, return_exceptions=True)
        await self._events.drain()

    # -------------------------------------------------------------------------
    # Critical operations
    # -------------------------------------------------------------------------

    async def ensure_tokens_for_critical_operation(
        self,
        operation_id: str,
        estimated_duration: float = 0.0,
    ) -> bool:
        """Make sure the credential outlives a critical operation.

        The credential must stay valid for max(estimated_duration +
        critical threshold, critical threshold). If it does, nothing is
        refreshed; otherwise one coordinated refresh is performed.

        Returns:
            True if the operation may start.
        """
        critical = self._config.critical_operation_threshold_seconds
        required = max(estimated_duration + critical, critical)

        try:
            time_until_expiry = await self._coordinator.get_time_until_token_expiry()
        except Exception as e:
            self._events.emit(
                MonitorEventType.CRITICAL_OPERATION_BLOCKED,
                operation_id=operation_id,
                reason="expiry_check_failed",
                error=str(e),
            )
            return False

        if time_until_expiry is None:
            self._logger.warning(
                {"event": "critical_operation_blocked", "operation_id": operation_id, "reason": "no_credential"}
            )
            self._events.emit(
                MonitorEventType.CRITICAL_OPERATION_BLOCKED,
                operation_id=operation_id,
                reason="no_credential",
            )
            return False

        if time_until_expiry > required:
            return True

        self._logger.info(
            {
                "event": "critical_operation_refresh",
                "operation_id": operation_id,
                "time_until_expiry": time_until_expiry,
                "required_validity": required,
            }
        )
        refreshed_expiry = await self._perform_proactive_refresh(operation_id, "critical_operation")
        if refreshed_expiry is None:
            self._logger.error(
                {"event": "critical_operation_blocked", "operation_id": operation_id, "reason": "token_refresh_failed"}
            )
            self._events.emit(
                MonitorEventType.CRITICAL_OPERATION_BLOCKED,
                operation_id=operation_id,
                reason="token_refresh_failed",
            )
            return False

        if refreshed_expiry > required:
            return True

        # The fresh credential is valid but expires before the operation would end.
        self._logger.error(
            {
                "event": "critical_operation_blocked",
                "operation_id": operation_id,
                "reason": "insufficient_validity",
                "time_until_expiry": refreshed_expiry,
                "required_validity": required,
            }
        )
        self._events.emit(
            MonitorEventType.CRITICAL_OPERATION_BLOCKED,
            operation_id=operation_id,
            reason="insufficient_validity",
            time_until_expiry=refreshed_expiry,
            required_validity=required,
        )
        return False

    async def execute_with_token_validation(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_id: str | None = None,
        estimated_duration: float = 0.0,
        retry_on_failure: bool = True,
    ) -> T:
        """Run operation once the credential is guaranteed to outlive it.

        If the operation fails with an authentication error and
        retry_on_failure is set, authentication is forced and the operation
        runs exactly once more.

        Raises:
            ClassifiedAuthError: REFRESH_FAILED if validity cannot be
                guaranteed, or the forced reauthentication's error.
            Exception: The operation's own failure (the retry's, if retried).
        """
        operation_id = operation_id or f"operation_{uuid.uuid4().hex[:8]}"

        if not await self.ensure_tokens_for_critical_operation(operation_id, estimated_duration):
            raise ClassifiedAuthError(
                "Unable to ensure valid tokens for critical operation",
                ErrorKind.REFRESH_FAILED,
                False,
                {
                    "operation": "execute_with_token_validation",
                    "operation_id": operation_id,
                    "estimated_duration": estimated_duration,
                },
            )

        try:
            return await operation()
        except Exception as e:
            if not (retry_on_failure and is_authentication_error(e)):
                raise
            self._logger.warning(
                {
                    "event": "operation_auth_failure_retrying",
                    "operation_id": operation_id,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )

        await self._coordinator.force_refresh()
        return await operation()

    # -------------------------------------------------------------------------
    # Scheduled refreshes
    # -------------------------------------------------------------------------

    async def schedule_proactive_refresh(self, operation_id: str, refresh_at: datetime) -> bool:
        """Refresh at refresh_at, replacing any refresh scheduled under operation_id.

        Returns:
            The refresh outcome if refresh_at is already due, otherwise True
            once the timer is armed.
        """
        now = self._clock()
        delay = (refresh_at - now).total_seconds()
        if delay <= 0:
            return await self._perform_proactive_refresh(operation_id, "scheduled_immediate") is not None

        self.cancel_scheduled_refresh(operation_id)
        task = asyncio.get_running_loop().create_task(
            self._run_scheduled_refresh(operation_id, delay), name=f"scheduled-refresh:{operation_id}"
        )
        self._scheduled[operation_id] = ScheduledRefresh(
            operation_id=operation_id,
            due_at=refresh_at,
            scheduled_at=now,
            task=task,
        )
        self._logger.debug(
            {"event": "refresh_scheduled", "operation_id": operation_id, "delay_seconds": delay}
        )
        return True

    def cancel_scheduled_refresh(self, operation_id: str) -> bool:
        """Cancel a pending scheduled refresh; False if none exists."""
        entry = self._scheduled.pop(operation_id, None)
        if entry is None:
            return False
        entry.task.cancel()
        self._retired.add(entry.task)
        return True

    def get_scheduled_refreshes(self) -> list[ScheduledRefresh]:
        return list(self._scheduled.values())

    async def _run_scheduled_refresh(self, operation_id: str, delay: float) -> None:
        try:
            await self._sleep(delay)
            await self._perform_proactive_refresh(operation_id, "scheduled")
        finally:
            entry = self._scheduled.get(operation_id)
            if entry is not None and entry.task is asyncio.current_task():
                del self._scheduled[operation_id]

    # -------------------------------------------------------------------------
    # Expiry checks and background loop
    # -------------------------------------------------------------------------

    async def needs_proactive_refresh(self) -> bool:
        """True iff the credential is still valid but within the proactive threshold."""
        try:
            time_until_expiry = await self._coordinator.get_time_until_token_expiry()
        except Exception as e:
            self._logger.warning(
                {"event": "expiry_check_failed", "error_type": type(e).__name__, "error_message": str(e)}
            )
            return False
        if time_until_expiry is None:
            return False
        return 0 < time_until_expiry <= self._config.proactive_refresh_threshold_seconds

    async def _background_loop(self) -> None:
        while self._background_enabled:
            succeeded = await self._perform_background_check()
            if not self._background_enabled:
                break
            if succeeded:
                await self._sleep(self._config.background_check_interval_seconds)
            else:
                await self._sleep(self._config.background_retry_delay_seconds)

    async def _perform_background_check(self) -> bool:
        self._last_background_check = self._clock()

        if not await self.needs_proactive_refresh():
            if self._background_failure_count:
                self._logger.info({"event": "background_check_recovered"})
            self._background_failure_count = 0
            return True

        if await self._perform_proactive_refresh("background_check", "background") is not None:
            self._background_failure_count = 0
            return True

        self._handle_background_failure("refresh_failed")
        return False

    def _handle_background_failure(self, reason: str) -> None:
        self._background_failure_count += 1
        self._last_background_failure = {
            "timestamp": self._clock().isoformat(),
            "reason": reason,
            "failure_count": self._background_failure_count,
        }
        self._logger.error(
            {
                "event": "background_refresh_failed",
                "failure_count": self._background_failure_count,
                "max_failures": self._config.max_background_failures,
            }
        )
        if self._background_failure_count >= self._config.max_background_failures:
            self._logger.error(
                {
                    "event": "background_refresh_self_disabled",
                    "failure_count": self._background_failure_count,
                }
            )
            self.disable_background_refresh()

    async def _perform_proactive_refresh(self, operation_id: str, refresh_type: str) -> float | None:
        """Coordinated refresh; returns the new time until expiry, or None if it failed."""
        if not await self._coordinator.perform_coordinated_refresh(operation_id):
            self._events.emit(
                MonitorEventType.REFRESH_FAILED,
                operation_id=operation_id,
                refresh_type=refresh_type,
                reason="coordinated_refresh_failed",
            )
            return None

        try:
            time_until_expiry = await self._coordinator.get_time_until_token_expiry()
        except Exception as e:
            self._events.emit(
                MonitorEventType.REFRESH_FAILED,
                operation_id=operation_id,
                refresh_type=refresh_type,
                reason="expiry_check_failed",
                error=str(e),
            )
            return None

        if time_until_expiry is not None and time_until_expiry > self._config.critical_operation_threshold_seconds:
            self._logger.info(
                {
                    "event": "proactive_refresh_succeeded",
                    "operation_id": operation_id,
                    "refresh_type": refresh_type,
                    "time_until_expiry": time_until_expiry,
                }
            )
            self._events.emit(
                MonitorEventType.TOKEN_REFRESHED,
                operation_id=operation_id,
                refresh_type=refresh_type,
                time_until_expiry=time_until_expiry,
            )
            return time_until_expiry

        self._logger.error(
            {
                "event": "proactive_refresh_tokens_still_invalid",
                "operation_id": operation_id,
                "refresh_type": refresh_type,
                "time_until_expiry": time_until_expiry,
            }
        )
        self._events.emit(
            MonitorEventType.REFRESH_FAILED,
            operation_id=operation_id,
            refresh_type=refresh_type,
            reason="tokens_still_invalid",
            time_until_expiry=time_until_expiry,
        )
        return None

    # -------------------------------------------------------------------------
    # Events and diagnostics
    # -------------------------------------------------------------------------

    def add_event_listener(self, event_type: MonitorEventType | str, listener: EventListener) -> bool:
        return self._events.add_listener(event_type, listener)

    def remove_event_listener(self, event_type: MonitorEventType | str, listener: EventListener) -> bool:
        return self._events.remove_listener(event_type, listener)

    async def get_token_monitoring_status(self) -> MonitoringStatus:
        try:
            time_until_expiry = await self._coordinator.get_time_until_token_expiry()
        except Exception as e:
            self._logger.warning(
                {"event": "expiry_check_failed", "error_type": type(e).__name__, "error_message": str(e)}
            )
            time_until_expiry = None

        proactive = self._config.proactive_refresh_threshold_seconds
        return MonitoringStatus(
            time_until_expiry=time_until_expiry,
            needs_proactive_refresh=time_until_expiry is not None and 0 < time_until_expiry <= proactive,
            tokens_expired=time_until_expiry is None or time_until_expiry <= 0,
            proactive_threshold=proactive,
            critical_threshold=self._config.critical_operation_threshold_seconds,
            background_refresh_enabled=self._background_enabled,
            last_background_check=self._last_background_check,
            background_failure_count=self._background_failure_count,
            last_background_failure=self._last_background_failure,
            scheduled_refresh_count=len(self._scheduled),
        )

    def get_service_stats(self) -> dict[str, Any]:
        return {
            "service_state": {
                "background_refresh_enabled": self._background_enabled,
                "last_background_check": (
                    self._last_background_check.isoformat() if self._last_background_check else None
                ),
                "background_failure_count": self._background_failure_count,
                "last_background_failure": self._last_background_failure,
                "scheduled_refreshes": [entry.to_dict() for entry in self._scheduled.values()],
            },
            "configuration": self._config.model_dump(),
            "event_listeners": self._events.listener_counts(),
        }
