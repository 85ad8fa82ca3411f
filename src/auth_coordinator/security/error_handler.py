"""Authentication error journal and recovery planning.

AuthErrorHandler classifies failures of arbitrary operations, keeps a
bounded journal of recent errors for diagnostics, and plans recovery actions
from each error's recovery strategy. Actions that need a caller (refreshing
tokens, sending the user to log in) are planned here but carried out by the
coordinator or the application.
"""

from __future__ import annotations

__all__ = [
    "AuthErrorHandler",
    "ErrorHandlingResult",
    "RecoveryAction",
    "RecoveryActionType",
]

import asyncio
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from auth_coordinator.constants import ERROR_LOG_MAX_SIZE
from auth_coordinator.security.classifier import (
    ClassifiedAuthError,
    RecoveryStrategy,
    classify,
    is_authentication_error,
)
from auth_coordinator.telemetry.system.system_logger import get_system_logger

T = TypeVar("T")


class RecoveryActionType(str, Enum):
    REFRESH_TOKEN = "refresh_token"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    WAIT_AND_RETRY = "wait_and_retry"
    CLEAR_TOKENS = "clear_tokens"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    USE_CACHED_DATA = "use_cached_data"
    SHOW_OFFLINE_MESSAGE = "show_offline_message"
    SHOW_ERROR_MESSAGE = "show_error_message"


@dataclass(frozen=True)
class RecoveryAction:
    """One planned recovery step, lowest priority value first."""

    type: RecoveryActionType
    priority: int
    description: str
    delay: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "priority": self.priority,
            "description": self.description,
            "delay": self.delay,
        }


@dataclass(frozen=True)
class ErrorHandlingResult:
    """Outcome of handling one error.

    Attributes:
        error: The classified error.
        recovery_actions: Planned actions in priority order.
        should_retry: The failed operation may be retried after retry_delay.
        requires_user_action: The user must authenticate again.
        retry_delay: Suggested wait before retrying (seconds).
    """

    error: ClassifiedAuthError
    recovery_actions: tuple[RecoveryAction, ...] = field(default_factory=tuple)
    should_retry: bool = False
    requires_user_action: bool = False
    retry_delay: float = 0.0


@dataclass(frozen=True)
class _ErrorLogEntry:
    timestamp: datetime
    error: dict[str, Any]


class AuthErrorHandler:
    """Classifies failures, journals them and plans recovery.

    Usage:
        handler = AuthErrorHandler()
        profile = await handler.execute_with_error_handling(
            fetch_profile, "fetch_profile", {"service": "profiles"}
        )
    """

    def __init__(
        self,
        max_log_size: int = ERROR_LOG_MAX_SIZE,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the handler.

        Args:
            max_log_size: Journal capacity; oldest entries are dropped first.
            clock: Returns the current UTC time.
            sleep: Awaited with the retry delay before a retry.
        """
        self._error_log: deque[_ErrorLogEntry] = deque(maxlen=max_log_size)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._logger = get_system_logger()

    async def execute_with_error_handling(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        context: dict[str, Any] | None = None,
    ) -> T:
        """Run operation, retrying once if the failure's plan allows it.

        Raises:
            ClassifiedAuthError: The classified original failure when the
                operation fails and either no retry is planned or the retry
                fails too.
        """
        try:
            return await operation()
        except Exception as e:
            result = self.handle_authentication_error(e, {**(context or {}), "operation": operation_name})
            if not result.should_retry:
                raise result.error

            self._logger.info(
                {
                    "event": "operation_retry_scheduled",
                    "operation": operation_name,
                    "kind": result.error.kind.value,
                    "delay_seconds": result.retry_delay,
                }
            )
            await self._sleep(result.retry_delay)
            try:
                return await operation()
            except Exception as retry_error:
                self._logger.warning(
                    {
                        "event": "operation_retry_failed",
                        "operation": operation_name,
                        "error_type": type(retry_error).__name__,
                        "error_message": str(retry_error),
                    }
                )
                raise result.error from retry_error

    def handle_authentication_error(
        self,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> ErrorHandlingResult:
        """Classify, journal and plan recovery for one failure.

        A retry is planned only for retryable strategies whose recovery has
        not been attempted yet; planning a retry marks the recovery attempted.
        """
        classified = classify(error, context)
        self._log_error(classified)

        actions = self._determine_recovery_actions(classified)
        should_retry = classified.should_retry()
        if should_retry:
            classified.mark_recovery_attempted()

        return ErrorHandlingResult(
            error=classified,
            recovery_actions=actions,
            should_retry=should_retry,
            requires_user_action=classified.requires_reauthentication(),
            retry_delay=classified.retry_delay() if should_retry else 0.0,
        )

    def classify_error(self, error: BaseException) -> dict[str, Any]:
        """Describe an error for diagnostics without journaling it."""
        if not is_authentication_error(error):
            return {
                "is_authentication_error": False,
                "classification": "non_auth_error",
                "recoverable": False,
            }

        classified = classify(error)
        return {
            "is_authentication_error": True,
            "classification": classified.kind.value,
            "recoverable": classified.recoverable,
            "recovery_strategy": classified.recovery_strategy.value,
            "user_message": classified.user_message,
        }

    def get_error_statistics(self) -> dict[str, Any]:
        """Error counts over the journal, the last hour and the last day."""
        now = self._clock()
        hour_ago = now - timedelta(hours=1)
        day_ago = now - timedelta(days=1)

        recent = [entry for entry in self._error_log if entry.timestamp > hour_ago]
        daily = [entry for entry in self._error_log if entry.timestamp > day_ago]
        by_kind = Counter(entry.error["kind"] for entry in daily)

        return {
            "total_errors": len(self._error_log),
            "recent_errors": len(recent),
            "daily_errors": len(daily),
            "errors_by_kind": dict(by_kind),
            "most_common_error": by_kind.most_common(1)[0][0] if by_kind else None,
        }

    def get_recent_errors(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent journal entries, newest first."""
        entries = list(self._error_log)[-limit:] if limit > 0 else []
        return [
            {"timestamp": entry.timestamp.isoformat(), "error": entry.error}
            for entry in reversed(entries)
        ]

    def clear_error_log(self) -> None:
        self._error_log.clear()

    def _log_error(self, error: ClassifiedAuthError) -> None:
        entry = _ErrorLogEntry(timestamp=self._clock(), error=error.to_dict())
        self._error_log.append(entry)
        self._logger.warning(
            {
                "event": "authentication_error",
                "kind": error.kind.value,
                "recoverable": error.recoverable,
                "strategy": error.recovery_strategy.value,
                "operation": error.context.get("operation"),
                "error_message": error.message,
            }
        )

    def _determine_recovery_actions(self, error: ClassifiedAuthError) -> tuple[RecoveryAction, ...]:
        strategy = error.recovery_strategy

        if strategy is RecoveryStrategy.REFRESH_TOKEN:
            return (
                RecoveryAction(
                    RecoveryActionType.REFRESH_TOKEN, 1, "Attempt to refresh authentication tokens"
                ),
            )
        elif strategy is RecoveryStrategy.RETRY_WITH_BACKOFF:
            return (
                RecoveryAction(
                    RecoveryActionType.RETRY_WITH_BACKOFF,
                    1,
                    "Retry operation with exponential backoff",
                    delay=error.retry_delay(),
                ),
            )
        elif strategy is RecoveryStrategy.WAIT_AND_RETRY:
            return (
                RecoveryAction(
                    RecoveryActionType.WAIT_AND_RETRY,
                    1,
                    "Wait and retry operation",
                    delay=error.retry_delay(),
                ),
            )
        elif strategy is RecoveryStrategy.REAUTHENTICATE:
            return (
                RecoveryAction(RecoveryActionType.CLEAR_TOKENS, 1, "Clear invalid authentication tokens"),
                RecoveryAction(RecoveryActionType.REDIRECT_TO_LOGIN, 2, "Send user to login"),
            )
        elif strategy is RecoveryStrategy.FALLBACK_TO_CACHE:
            return (
                RecoveryAction(RecoveryActionType.USE_CACHED_DATA, 1, "Use cached data if available"),
                RecoveryAction(RecoveryActionType.SHOW_OFFLINE_MESSAGE, 2, "Show offline mode message to user"),
            )
        else:
            return (RecoveryAction(RecoveryActionType.SHOW_ERROR_MESSAGE, 1, "Show error message to user"),)
