"""Shared fixtures: a controllable clock, an in-memory identity provider and
credential store, and coordinator/monitor instances wired to them."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from auth_coordinator.config import CoordinatorConfig, MonitorConfig
from auth_coordinator.coordination.state_coordinator import AuthStateCoordinator
from auth_coordinator.models import CredentialRecord, Identity
from auth_coordinator.security.credential_store import MemoryCredentialStore


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeIdentityProvider:
    """Identity provider backed by a MemoryCredentialStore.

    identity_errors are raised by successive get_current_identity() calls
    before it starts succeeding. Gates, when set, block the corresponding
    call until the test releases them.
    """

    def __init__(self, store: MemoryCredentialStore, clock: FakeClock, user_id: str = "user-123") -> None:
        self.store = store
        self.clock = clock
        self.user_id = user_id
        self.identity_calls = 0
        self.refresh_calls = 0
        self.identity_errors: list[BaseException] = []
        self.refresh_result = True
        self.refresh_error: BaseException | None = None
        self.refreshed_lifetime = 3600.0
        self.identity_gate: asyncio.Event | None = None
        self.refresh_gate: asyncio.Event | None = None

    async def get_current_identity(self) -> Identity:
        self.identity_calls += 1
        if self.identity_gate is not None:
            await self.identity_gate.wait()
        if self.identity_errors:
            raise self.identity_errors.pop(0)
        return Identity(user_id=self.user_id, claims={"email": "user@example.com"})

    async def refresh_credential(self) -> bool:
        self.refresh_calls += 1
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_error is not None:
            raise self.refresh_error
        if not self.refresh_result:
            return False
        current = self.store.get_credential()
        self.store.save(
            CredentialRecord(
                access_token=f"access-{self.refresh_calls}",
                refresh_token=current.refresh_token if current else "refresh-token",
                expires_at=self.clock() + timedelta(seconds=self.refreshed_lifetime),
            )
        )
        return True


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until it holds; fail the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached before timeout")
        await asyncio.sleep(0.005)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_credential(clock: FakeClock) -> Callable[..., CredentialRecord]:
    """Build a credential expiring `expires_in` seconds from the fake clock's now."""

    def _make(expires_in: float = 3600.0, refresh_token: str | None = "refresh-token") -> CredentialRecord:
        return CredentialRecord(
            access_token="access-0",
            refresh_token=refresh_token,
            expires_at=clock() + timedelta(seconds=expires_in),
        )

    return _make


@pytest.fixture
def credential_store(make_credential) -> MemoryCredentialStore:
    """Store holding a credential valid for one hour."""
    return MemoryCredentialStore(make_credential())


@pytest.fixture
def provider(credential_store: MemoryCredentialStore, clock: FakeClock) -> FakeIdentityProvider:
    return FakeIdentityProvider(credential_store, clock)


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    return _wait_until


@pytest.fixture
def coordinator_config() -> CoordinatorConfig:
    return CoordinatorConfig(cache_duration_seconds=300, refresh_timeout_seconds=5)


@pytest.fixture
def coordinator(
    provider: FakeIdentityProvider,
    credential_store: MemoryCredentialStore,
    coordinator_config: CoordinatorConfig,
    clock: FakeClock,
) -> AuthStateCoordinator:
    return AuthStateCoordinator(provider, credential_store, config=coordinator_config, clock=clock)


@pytest.fixture
def monitor_config() -> MonitorConfig:
    return MonitorConfig(
        proactive_refresh_threshold_seconds=600,
        critical_operation_threshold_seconds=120,
        background_check_interval_seconds=300,
        max_background_failures=3,
        background_retry_delay_seconds=30,
        enable_background_refresh=False,
    )
