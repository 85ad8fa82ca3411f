"""Refresh coordinator: the single funnel for credential exchanges.

Every refresh path (background, critical operation, scheduled, forced and
error recovery) runs through RefreshCoordinator.run(), so at most one
exchange with the identity provider is in flight at any time. Each exchange
is bounded by a timeout. The coordinator reports failures; it never sleeps
or retries on the caller's behalf.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from auth_coordinator.constants import REFRESH_TIMEOUT_SECONDS
from auth_coordinator.coordination.single_flight import SingleFlight
from auth_coordinator.security.classifier import ClassifiedAuthError, ErrorKind
from auth_coordinator.telemetry.system.system_logger import get_system_logger

T = TypeVar("T")


class RefreshCoordinator:
    """Single-flight, time-bounded credential refresh.

    Attributes:
        failure_count: Consecutive failed exchanges (reset on success).
        last_attempt_at: Start time of the most recent exchange.
        started_at: Start time of the outstanding exchange, if any.
    """

    def __init__(
        self,
        timeout: float = REFRESH_TIMEOUT_SECONDS,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._timeout = timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._flight: SingleFlight[Any] = SingleFlight("refresh")
        self._logger = get_system_logger()
        self.failure_count = 0
        self.last_attempt_at: datetime | None = None
        self.started_at: datetime | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_refresh_in_progress(self) -> bool:
        return self._flight.in_flight

    async def run(self, refresh_fn: Callable[[], Awaitable[T]]) -> T:
        """Run refresh_fn, or join the exchange already in flight.

        Raises:
            ClassifiedAuthError: TIMEOUT if the exchange exceeds the timeout.
            Exception: Whatever refresh_fn raised.
        """
        if self._flight.in_flight:
            self._logger.debug({"event": "refresh_joined_in_flight"})
        return await self._flight.run(lambda: self._execute(refresh_fn))

    async def _execute(self, refresh_fn: Callable[[], Awaitable[T]]) -> T:
        self.started_at = self._clock()
        self.last_attempt_at = self.started_at
        try:
            result = await asyncio.wait_for(refresh_fn(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            self.failure_count += 1
            self._logger.warning(
                {
                    "event": "refresh_timed_out",
                    "timeout_seconds": self._timeout,
                    "failure_count": self.failure_count,
                }
            )
            raise ClassifiedAuthError(
                f"Token refresh timed out after {self._timeout}s",
                ErrorKind.TIMEOUT,
                True,
                {"operation": "refresh", "timeout_seconds": self._timeout},
            ) from e
        except Exception:
            self.failure_count += 1
            raise
        else:
            self.failure_count = 0
            return result
        finally:
            self.started_at = None

    def get_refresh_state(self) -> dict[str, Any]:
        """Diagnostic view of the coordinator."""
        duration = None
        if self.started_at is not None:
            duration = (self._clock() - self.started_at).total_seconds()
        return {
            "is_refreshing": self.is_refresh_in_progress,
            "failure_count": self.failure_count,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "refresh_duration_seconds": duration,
            "timeout_seconds": self._timeout,
        }

    def reset_state(self) -> None:
        """Forget failures and any registered exchange."""
        self._flight.reset()
        self.failure_count = 0
        self.last_attempt_at = None
        self.started_at = None
