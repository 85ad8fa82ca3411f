"""Single-flight execution of an async attempt.

At most one attempt is outstanding per SingleFlight instance. Callers that
arrive while an attempt is outstanding await that same attempt and receive
its outcome (result or exception) instead of starting their own.

Registration happens under an asyncio.Lock. The shared attempt runs as an
asyncio.Task and callers await it through asyncio.shield, so a cancelled
caller never cancels the attempt other callers depend on. The attempt
unregisters itself when it finishes, but only if it is still the registered
attempt.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


def _consume_exception(task: asyncio.Task) -> None:
    # Mark the exception retrieved when every waiter was cancelled.
    if not task.cancelled():
        task.exception()


class SingleFlight(Generic[T]):
    """Deduplicates concurrent executions of one logical attempt.

    Usage:
        flight: SingleFlight[str] = SingleFlight("authentication")
        user_id = await flight.run(resolve_user_id)
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[T] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def in_flight(self) -> bool:
        """True while an attempt is registered and not finished."""
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task[T] | None:
        return self._task

    async def run(self, attempt: Callable[[], Awaitable[T]]) -> T:
        """Join the outstanding attempt, or start one with `attempt`.

        Args:
            attempt: Zero-argument coroutine function. Ignored when another
                attempt is already outstanding.

        Returns:
            The outstanding attempt's result.

        Raises:
            Exception: Whatever the outstanding attempt raised.
        """
        async with self._lock:
            task = self._task
            if task is None or task.done():
                task = asyncio.get_running_loop().create_task(
                    self._execute(attempt), name=f"single-flight:{self._name}"
                )
                task.add_done_callback(_consume_exception)
                self._task = task
        return await asyncio.shield(task)

    def reset(self) -> None:
        """Forget the registered attempt without cancelling it.

        The next run() starts a new attempt; callers already awaiting the
        forgotten attempt still receive its outcome.
        """
        self._task = None

    async def _execute(self, attempt: Callable[[], Awaitable[T]]) -> T:
        try:
            return await attempt()
        finally:
            if self._task is asyncio.current_task():
                self._task = None
