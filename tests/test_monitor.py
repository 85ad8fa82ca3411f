"""Tests for the proactive refresh monitor.

Tests cover:
- Critical operation guarantee (refresh iff remaining validity is too short)
- execute_with_token_validation() (guarantee, auth-failure retry)
- Scheduled refreshes (immediate, replaced, cancelled, fired)
- Background loop (refresh, self-disable after repeated failures)
- Event emission and listener fault isolation
- Monitoring status and service stats
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from auth_coordinator.config import MonitorConfig
from auth_coordinator.coordination.state_coordinator import AuthStateCoordinator
from auth_coordinator.exceptions import AuthenticationError
from auth_coordinator.monitor.events import MonitorEventEmitter, MonitorEventType
from auth_coordinator.monitor.proactive import ProactiveRefreshMonitor
from auth_coordinator.security.classifier import ClassifiedAuthError, ErrorKind
from auth_coordinator.security.credential_store import MemoryCredentialStore


class RecordingSleep:
    """Sleep replacement that records delays.

    The first `passes` calls return immediately; later calls block until
    cancelled, which parks the background loop.
    """

    def __init__(self, passes: int = 0) -> None:
        self.delays: list[float] = []
        self._passes = passes

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) <= self._passes:
            await asyncio.sleep(0)
            return
        await asyncio.Event().wait()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def events() -> list[dict[str, Any]]:
    return []


@pytest.fixture
async def monitor(coordinator: AuthStateCoordinator, monitor_config: MonitorConfig, clock, events):
    """Monitor with listeners recording every event; closed after the test."""
    service = ProactiveRefreshMonitor(coordinator, monitor_config, clock)
    for event_type in MonitorEventType:
        service.add_event_listener(event_type, events.append)
    yield service
    await service.aclose()


def set_expiry(store: MemoryCredentialStore, make_credential, expires_in: float) -> None:
    store.save(make_credential(expires_in=expires_in))


def event_types(events: list[dict[str, Any]]) -> list[str]:
    return [event["type"] for event in events]


# ============================================================================
# Tests: Critical operations
# ============================================================================


class TestEnsureTokensForCriticalOperation:
    """Tests for ensure_tokens_for_critical_operation()."""

    @pytest.mark.parametrize(
        ("expires_in", "estimated_duration", "expect_refresh"),
        [
            (3600, 0, False),
            (3600, 60, False),
            (181, 60, False),
            (180, 60, True),
            (121, 0, False),
            (120, 0, True),
            (5, 0, True),
            (500, 600, True),
            (-30, 0, True),
        ],
    )
    async def test_refreshes_iff_validity_too_short(
        self,
        monitor: ProactiveRefreshMonitor,
        provider,
        credential_store,
        make_credential,
        expires_in: float,
        estimated_duration: float,
        expect_refresh: bool,
    ):
        """Given remaining validity E and duration D, refreshes exactly when E <= D + critical threshold."""
        # Arrange
        set_expiry(credential_store, make_credential, expires_in)

        # Act
        allowed = await monitor.ensure_tokens_for_critical_operation("op1", estimated_duration)

        # Assert
        assert allowed is True
        assert provider.refresh_calls == (1 if expect_refresh else 0)

    async def test_near_expiry_refreshes_before_operation(
        self, monitor: ProactiveRefreshMonitor, provider, credential_store, make_credential, events, clock
    ):
        """Given 5s of validity and a 120s critical threshold, refreshes and reports success."""
        # Arrange
        set_expiry(credential_store, make_credential, 5)

        # Act
        allowed = await monitor.ensure_tokens_for_critical_operation("op1", 0)

        # Assert
        assert allowed is True
        assert provider.refresh_calls == 1
        assert event_types(events) == ["token_refreshed"]
        assert events[0]["operation_id"] == "op1"
        assert events[0]["refresh_type"] == "critical_operation"
        assert events[0]["timestamp"] == clock().isoformat()

    async def test_failed_refresh_blocks_operation(
        self, monitor: ProactiveRefreshMonitor, provider, credential_store, make_credential, events
    ):
        """Given a refresh that fails, returns False and emits refresh_failed then critical_operation_blocked."""
        # Arrange
        set_expiry(credential_store, make_credential, 5)
        provider.refresh_result = False

        # Act
        allowed = await monitor.ensure_tokens_for_critical_operation("op1", 0)

        # Assert
        assert allowed is False
        assert event_types(events) == ["refresh_failed", "critical_operation_blocked"]
        assert events[1]["reason"] == "token_refresh_failed"

    async def test_refresh_leaving_too_little_validity_blocks_operation(
        self, monitor: ProactiveRefreshMonitor, provider, credential_store, make_credential, events
    ):
        """Given a refreshed credential inside the critical threshold, the refresh counts as failed."""
        set_expiry(credential_store, make_credential, 5)
        provider.refreshed_lifetime = 60

        allowed = await monitor.ensure_tokens_for_critical_operation("op1", 0)

        assert allowed is False
        assert events[0]["reason"] == "tokens_still_invalid"

    async def test_operation_longer_than_refreshed_lifetime_is_blocked(
        self, monitor: ProactiveRefreshMonitor, provider, credential_store, make_credential, events
    ):
        """Given an operation that outlasts even a freshly refreshed credential, refuses to start it."""
        # Arrange
        set_expiry(credential_store, make_credential, 60)
        provider.refreshed_lifetime = 3600

        # Act
        allowed = await monitor.ensure_tokens_for_critical_operation("long_export", 7200)

        # Assert
        assert allowed is False
        assert provider.refresh_calls == 1
        assert event_types(events) == ["token_refreshed", "critical_operation_blocked"]
        assert events[1]["reason"] == "insufficient_validity"
        assert events[1]["time_until_expiry"] == pytest.approx(3600.0)
        assert events[1]["required_validity"] == 7320

    async def test_long_operation_raises_in_execute_with_token_validation(
        self, monitor: ProactiveRefreshMonitor, provider, credential_store, make_credential
    ):
        set_expiry(credential_store, make_credential, 60)
        operation = AsyncMock(return_value="done")

        with pytest.raises(ClassifiedAuthError) as exc_info:
            await monitor.execute_with_token_validation(
                operation, operation_id="long_export", estimated_duration=7200
            )

        assert exc_info.value.kind is ErrorKind.REFRESH_FAILED
        operation.assert_not_awaited()

    async def test_no_credential_blocks_operation(
        self, monitor: ProactiveRefreshMonitor, provider, credential_store, events
    ):
        credential_store.delete()

        allowed = await monitor.ensure_tokens_for_critical_operation("op1", 0)

        assert allowed is False
        assert provider.refresh_calls == 0
        assert event_types(events) == ["critical_operation_blocked"]
        assert events[0]["reason"] == "no_credential"


class TestExecuteWithTokenValidation:
    """Tests for execute_with_token_validation()."""

    async def test_runs_operation_when_tokens_valid(self, monitor: ProactiveRefreshMonitor, provider):
        operation = AsyncMock(return_value="report")

        result = await monitor.execute_with_token_validation(operation, operation_id="upload", estimated_duration=60)

        assert result == "report"
        operation.assert_awaited_once()
        assert provider.refresh_calls == 0

    async def test_raises_when_validity_cannot_be_guaranteed(
        self, monitor: ProactiveRefreshMonitor, provider, credential_store, make_credential
    ):
        """Given a failed guarantee, raises REFRESH_FAILED and never runs the operation."""
        # Arrange
        set_expiry(credential_store, make_credential, 5)
        provider.refresh_result = False
        operation = AsyncMock()

        # Act
        with pytest.raises(ClassifiedAuthError) as exc_info:
            await monitor.execute_with_token_validation(operation, operation_id="upload")

        # Assert
        assert exc_info.value.kind is ErrorKind.REFRESH_FAILED
        assert exc_info.value.recoverable is False
        assert exc_info.value.context["operation_id"] == "upload"
        operation.assert_not_awaited()

    async def test_auth_failure_forces_reauthentication_and_retries_once(
        self, monitor: ProactiveRefreshMonitor, provider
    ):
        """Given the operation fails with an auth error, forces authentication and reruns it once."""
        # Arrange
        operation = AsyncMock(side_effect=[AuthenticationError("Token expired or invalid"), "report"])

        # Act
        result = await monitor.execute_with_token_validation(operation)

        # Assert
        assert result == "report"
        assert operation.await_count == 2
        assert provider.identity_calls == 1

    async def test_retry_failure_propagates(self, monitor: ProactiveRefreshMonitor):
        second_failure = AuthenticationError("Unauthorized again")
        operation = AsyncMock(side_effect=[AuthenticationError("Unauthorized"), second_failure])

        with pytest.raises(AuthenticationError) as exc_info:
            await monitor.execute_with_token_validation(operation)

        assert exc_info.value is second_failure
        assert operation.await_count == 2

    async def test_non_auth_failure_is_not_retried(self, monitor: ProactiveRefreshMonitor, provider):
        operation = AsyncMock(side_effect=ValueError("disk full"))

        with pytest.raises(ValueError, match="disk full"):
            await monitor.execute_with_token_validation(operation)

        operation.assert_awaited_once()
        assert provider.identity_calls == 0

    async def test_retry_disabled(self, monitor: ProactiveRefreshMonitor):
        operation = AsyncMock(side_effect=AuthenticationError("Unauthorized"))

        with pytest.raises(AuthenticationError):
            await monitor.execute_with_token_validation(operation, retry_on_failure=False)

        operation.assert_awaited_once()


# ============================================================================
# Tests: Scheduled refreshes
# ============================================================================


class TestScheduledRefresh:
    """Tests for schedule_proactive_refresh() and cancel_scheduled_refresh()."""

    async def test_due_time_refreshes_immediately(
        self, monitor: ProactiveRefreshMonitor, provider, clock, events
    ):
        result = await monitor.schedule_proactive_refresh("sync", clock() - timedelta(seconds=1))

        assert result is True
        assert provider.refresh_calls == 1
        assert monitor.get_scheduled_refreshes() == []
        assert events[0]["refresh_type"] == "scheduled_immediate"

    async def test_rescheduling_replaces_timer(self, monitor: ProactiveRefreshMonitor, provider, clock):
        """Given the same id scheduled twice, exactly one timer remains armed."""
        # Arrange
        await monitor.schedule_proactive_refresh("sync", clock() + timedelta(hours=1))
        first_task = monitor.get_scheduled_refreshes()[0].task

        # Act
        await monitor.schedule_proactive_refresh("sync", clock() + timedelta(hours=2))
        await asyncio.sleep(0)

        # Assert
        scheduled = monitor.get_scheduled_refreshes()
        assert len(scheduled) == 1
        assert scheduled[0].due_at == clock() + timedelta(hours=2)
        assert first_task.cancelled()
        assert provider.refresh_calls == 0

    async def test_cancel(self, monitor: ProactiveRefreshMonitor, clock):
        await monitor.schedule_proactive_refresh("sync", clock() + timedelta(hours=1))

        assert monitor.cancel_scheduled_refresh("sync") is True
        assert monitor.cancel_scheduled_refresh("sync") is False
        assert monitor.get_scheduled_refreshes() == []

    async def test_timer_fires_and_unregisters(
        self, coordinator, monitor_config, clock, provider, credential_store, make_credential, wait_until
    ):
        """Given an armed timer, refreshes after the delay and removes the entry."""
        # Arrange
        set_expiry(credential_store, make_credential, 300)
        sleep = RecordingSleep(passes=1)
        service = ProactiveRefreshMonitor(coordinator, monitor_config, clock, sleep=sleep)

        # Act
        await service.schedule_proactive_refresh("sync", clock() + timedelta(seconds=90))
        await wait_until(lambda: provider.refresh_calls == 1 and not service.get_scheduled_refreshes())

        # Assert
        assert sleep.delays == [90.0]
        await service.aclose()


# ============================================================================
# Tests: Background loop
# ============================================================================


class TestBackgroundRefresh:
    """Tests for the background refresh loop."""

    @pytest.mark.parametrize(
        ("expires_in", "expected"),
        [(-10, False), (0, False), (1, True), (300, True), (600, True), (601, False)],
    )
    async def test_needs_proactive_refresh(
        self, monitor: ProactiveRefreshMonitor, credential_store, make_credential, expires_in, expected
    ):
        set_expiry(credential_store, make_credential, expires_in)

        assert await monitor.needs_proactive_refresh() is expected

    async def test_needs_proactive_refresh_without_credential(self, monitor: ProactiveRefreshMonitor, credential_store):
        credential_store.delete()

        assert await monitor.needs_proactive_refresh() is False

    async def test_refreshes_within_threshold(
        self, coordinator, monitor_config, clock, provider, credential_store, make_credential, wait_until
    ):
        """Given a credential inside the proactive window, the loop refreshes then sleeps the interval."""
        # Arrange
        set_expiry(credential_store, make_credential, 300)
        sleep = RecordingSleep()
        service = ProactiveRefreshMonitor(coordinator, monitor_config, clock, sleep=sleep)

        # Act
        service.enable_background_refresh()
        await wait_until(lambda: sleep.delays)

        # Assert
        assert provider.refresh_calls == 1
        assert sleep.delays == [monitor_config.background_check_interval_seconds]
        assert service.background_failure_count == 0
        status = await service.get_token_monitoring_status()
        assert status.last_background_check == clock()
        await service.aclose()

    async def test_no_refresh_outside_threshold(
        self, coordinator, monitor_config, clock, provider, wait_until
    ):
        sleep = RecordingSleep()
        service = ProactiveRefreshMonitor(coordinator, monitor_config, clock, sleep=sleep)

        service.enable_background_refresh()
        await wait_until(lambda: sleep.delays)

        assert provider.refresh_calls == 0
        await service.aclose()

    async def test_self_disables_after_max_failures(
        self, coordinator, monitor_config, clock, provider, credential_store, make_credential, wait_until
    ):
        """Given refreshes that keep failing, the loop disables itself after max_background_failures."""
        # Arrange
        set_expiry(credential_store, make_credential, 300)
        provider.refresh_result = False
        sleep = RecordingSleep(passes=10)
        service = ProactiveRefreshMonitor(coordinator, monitor_config, clock, sleep=sleep)

        # Act
        service.enable_background_refresh()
        await wait_until(lambda: not service.is_background_refresh_enabled)
        await asyncio.sleep(0.05)

        # Assert
        assert provider.refresh_calls == 3
        assert service.background_failure_count == 3
        assert sleep.delays == [monitor_config.background_retry_delay_seconds] * 2
        assert service.last_background_failure["failure_count"] == 3
        assert service.last_background_failure["reason"] == "refresh_failed"
        await service.aclose()

    async def test_reenable_resets_failure_count(
        self, coordinator, monitor_config, clock, provider, credential_store, make_credential, wait_until
    ):
        # Arrange
        set_expiry(credential_store, make_credential, 300)
        provider.refresh_result = False
        service = ProactiveRefreshMonitor(coordinator, monitor_config, clock, sleep=RecordingSleep(passes=10))
        service.enable_background_refresh()
        await wait_until(lambda: not service.is_background_refresh_enabled)

        # Act
        provider.refresh_result = True
        service.enable_background_refresh()
        await wait_until(lambda: provider.refresh_calls == 4)

        # Assert
        assert service.is_background_refresh_enabled is True
        assert service.background_failure_count == 0
        await service.aclose()

    async def test_start_honours_config(self, coordinator, monitor_config, clock):
        enabled_config = monitor_config.model_copy(update={"enable_background_refresh": True})
        enabled = ProactiveRefreshMonitor(coordinator, enabled_config, clock, sleep=RecordingSleep())
        disabled = ProactiveRefreshMonitor(coordinator, monitor_config, clock)

        async with enabled, disabled:
            assert enabled.is_background_refresh_enabled is True
            assert disabled.is_background_refresh_enabled is False

        assert enabled.is_background_refresh_enabled is False

    async def test_shutdown_is_idempotent(self, monitor: ProactiveRefreshMonitor, clock):
        monitor.enable_background_refresh()
        await monitor.schedule_proactive_refresh("sync", clock() + timedelta(hours=1))

        monitor.shutdown()
        monitor.shutdown()

        assert monitor.is_background_refresh_enabled is False
        assert monitor.get_scheduled_refreshes() == []


# ============================================================================
# Tests: Events
# ============================================================================


class TestMonitorEvents:
    """Tests for MonitorEventEmitter and monitor listener registration."""

    def test_failing_listener_does_not_stop_others(self):
        """Given a listener that raises, the remaining listeners still receive the event."""
        # Arrange
        emitter = MonitorEventEmitter()
        received: list[dict[str, Any]] = []

        def broken(event: dict[str, Any]) -> None:
            raise RuntimeError("listener bug")

        emitter.add_listener(MonitorEventType.TOKEN_REFRESHED, broken)
        emitter.add_listener(MonitorEventType.TOKEN_REFRESHED, received.append)

        # Act
        emitter.emit(MonitorEventType.TOKEN_REFRESHED, operation_id="op1")

        # Assert
        assert len(received) == 1
        assert received[0]["type"] == "token_refreshed"
        assert received[0]["operation_id"] == "op1"
        assert "timestamp" in received[0]

    async def test_async_listener_is_awaited_on_drain(self):
        emitter = MonitorEventEmitter()
        received: list[str] = []

        async def listener(event: dict[str, Any]) -> None:
            await asyncio.sleep(0)
            received.append(event["type"])

        async def broken(event: dict[str, Any]) -> None:
            raise RuntimeError("async listener bug")

        emitter.add_listener("refresh_failed", listener)
        emitter.add_listener("refresh_failed", broken)

        emitter.emit(MonitorEventType.REFRESH_FAILED, reason="x")
        await emitter.drain()

        assert received == ["refresh_failed"]

    def test_timestamp_comes_from_clock(self, clock):
        emitter = MonitorEventEmitter(clock)
        received: list[dict[str, Any]] = []
        emitter.add_listener(MonitorEventType.REFRESH_FAILED, received.append)
        clock.advance(42)

        emitter.emit(MonitorEventType.REFRESH_FAILED, reason="x")

        assert received[0]["timestamp"] == clock().isoformat()

    def test_unknown_event_type_is_rejected(self):
        emitter = MonitorEventEmitter()

        assert emitter.add_listener("token_exploded", print) is False
        assert emitter.remove_listener("token_exploded", print) is False

    def test_remove_listener(self):
        emitter = MonitorEventEmitter()
        received: list[dict[str, Any]] = []
        emitter.add_listener(MonitorEventType.REFRESH_FAILED, received.append)

        assert emitter.remove_listener(MonitorEventType.REFRESH_FAILED, received.append) is True
        emitter.emit(MonitorEventType.REFRESH_FAILED)

        assert received == []
        assert emitter.listener_counts()["refresh_failed"] == 0


# ============================================================================
# Tests: Status
# ============================================================================


class TestMonitoringStatus:
    """Tests for get_token_monitoring_status() and get_service_stats()."""

    async def test_status_inside_proactive_window(
        self, monitor: ProactiveRefreshMonitor, credential_store, make_credential
    ):
        set_expiry(credential_store, make_credential, 300)

        status = await monitor.get_token_monitoring_status()

        assert status.time_until_expiry == pytest.approx(300.0)
        assert status.needs_proactive_refresh is True
        assert status.tokens_expired is False
        assert status.proactive_threshold == 600
        assert status.critical_threshold == 120
        assert status.background_refresh_enabled is False
        assert status.to_dict()["last_background_check"] is None

    async def test_status_without_credential(self, monitor: ProactiveRefreshMonitor, credential_store):
        credential_store.delete()

        status = await monitor.get_token_monitoring_status()

        assert status.time_until_expiry is None
        assert status.tokens_expired is True
        assert status.needs_proactive_refresh is False

    async def test_service_stats(self, monitor: ProactiveRefreshMonitor, clock):
        await monitor.schedule_proactive_refresh("sync", clock() + timedelta(hours=1))

        stats = monitor.get_service_stats()

        assert stats["service_state"]["scheduled_refreshes"][0]["operation_id"] == "sync"
        assert stats["configuration"]["max_background_failures"] == 3
        assert stats["event_listeners"] == {
            "token_refreshed": 1,
            "refresh_failed": 1,
            "critical_operation_blocked": 1,
        }


class TestMonitorConfig:
    """Tests for MonitorConfig validation."""

    def test_critical_threshold_must_not_exceed_proactive(self):
        with pytest.raises(ValueError, match="critical_operation_threshold_seconds"):
            MonitorConfig(proactive_refresh_threshold_seconds=60, critical_operation_threshold_seconds=120)
