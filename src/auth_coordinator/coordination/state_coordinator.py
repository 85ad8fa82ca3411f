"""Authentication state coordinator.

Owns the authentication state of one client and is its only writer. All
identity resolution is single-flight: concurrent callers share one
outstanding attempt and receive its outcome. All credential refreshes go
through one RefreshCoordinator, so overlapping refreshes collapse into one
identity provider exchange.

Every failure coming from the identity provider or credential store is
classified before it is stored or raised; callers only ever see
ClassifiedAuthError.

After a suspension (laptop sleep, paused process) resume() picks a recovery
path from how long the client was away: reuse the cached state, refresh
credentials, or force re-authentication.

Usage:
    coordinator = AuthStateCoordinator(provider, credential_store)
    user_id = await coordinator.get_current_user_id()

    try:
        await call_service()
    except Exception as e:
        if coordinator.is_authentication_error(e):
            recovered = await coordinator.handle_authentication_error(e)
"""

from __future__ import annotations

__all__ = ["AuthStateCoordinator", "determine_resume_strategy"]

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from auth_coordinator.config import CoordinatorConfig
from auth_coordinator.coordination.refresh_coordinator import RefreshCoordinator
from auth_coordinator.coordination.single_flight import SingleFlight
from auth_coordinator.models import (
    AuthStateSnapshot,
    CachedAuthError,
    CachedAuthState,
    CredentialRecord,
    Identity,
    ResumeResult,
    ResumeStrategy,
)
from auth_coordinator.security.classifier import (
    ClassifiedAuthError,
    ErrorKind,
    RecoveryStrategy,
    classify,
    is_authentication_error,
)
from auth_coordinator.security.identity import AuthStateCache, CredentialStore, IdentityProvider, SyncListener
from auth_coordinator.telemetry.audit.auth_logger import AuthLogger
from auth_coordinator.telemetry.system.system_logger import get_system_logger


def determine_resume_strategy(
    suspended_seconds: float,
    grace_period_seconds: float,
    max_suspend_seconds: float,
) -> ResumeStrategy:
    """Pick the resume recovery for a suspension of the given length.

    Both bounds are inclusive: a suspension of exactly the grace period
    still uses the cache.
    """
    if suspended_seconds <= grace_period_seconds:
        return ResumeStrategy.USE_CACHE
    if suspended_seconds <= max_suspend_seconds:
        return ResumeStrategy.VALIDATE_AND_REFRESH
    return ResumeStrategy.FORCE_REAUTHENTICATION


@dataclass
class _AuthState:
    """Live authentication state. Never handed out; see AuthStateSnapshot."""

    is_authenticated: bool = False
    user_id: str | None = None
    last_verified_at: datetime | None = None
    last_error: ClassifiedAuthError | None = None
    is_refreshing: bool = False


class AuthStateCoordinator:
    """Coordinates identity resolution and credential refresh for one client.

    Args:
        identity_provider: Resolves identities and refreshes credentials.
        credential_store: Holds the current credential (read via a worker thread).
        cache: Optional persistence cache shared with other instances.
        config: Cache duration, refresh timeout and refresh safety margin.
        clock: Returns the current UTC time.
        auth_logger: Optional audit logger for identity and refresh events.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        credential_store: CredentialStore,
        *,
        cache: AuthStateCache | None = None,
        config: CoordinatorConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        auth_logger: AuthLogger | None = None,
    ) -> None:
        self._provider = identity_provider
        self._store = credential_store
        self._cache = cache
        self._config = config or CoordinatorConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._auth_logger = auth_logger
        self._logger = get_system_logger()

        self._state = _AuthState()
        self._cache_expires_at: datetime | None = None
        # Bumped by clear_authentication_state(); attempts started before a
        # clear do not write their outcome into the cleared state.
        self._generation = 0
        self._suspended_at: datetime | None = None
        self._auth_flight: SingleFlight[str] = SingleFlight("authentication")
        self._refresh = RefreshCoordinator(self._config.refresh_timeout_seconds, clock=self._clock)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def get_current_user_id(self) -> str:
        """Resolve the current user id.

        Resolution order: a fresh persistence cache entry, then the in-memory
        state while the cache duration lasts, then a coordinated
        authentication attempt.

        Raises:
            ClassifiedAuthError: If no user id can be resolved.
        """
        cached = self._read_persisted_state()
        if cached is not None and cached.is_authenticated and cached.user_id:
            return cached.user_id

        if self._is_cache_valid() and self._state.user_id:
            return self._state.user_id

        user_id = await self._auth_flight.run(self._authenticate)
        if not user_id:
            raise ClassifiedAuthError(
                "Not authenticated: no user id could be resolved",
                ErrorKind.TOKEN_MISSING,
                True,
                {"operation": "get_current_user_id"},
            )
        return user_id

    async def ensure_authenticated(self) -> None:
        """Guarantee an authenticated state or raise.

        Raises:
            ClassifiedAuthError: If the identity cannot be resolved, after at
                most one refresh-and-retry for expired credentials.
        """
        if self._is_cache_valid():
            return
        await self._auth_flight.run(self._authenticate)

    async def force_refresh(self) -> None:
        """Discard cached identity and authenticate again."""
        self._cache_expires_at = None
        self._clear_persisted_state("force_refresh")
        await self.ensure_authenticated()

    def clear_authentication_state(self, reason: str = "clear_authentication_state") -> None:
        """Reset all authentication and coordination state.

        Used on sign-out and when reauthentication is required. Attempts that
        are still in flight keep running for their callers but no longer
        affect this coordinator's state.
        """
        user_id = self._state.user_id
        self._generation += 1
        self._state = _AuthState()
        self._cache_expires_at = None
        self._auth_flight.reset()
        self._refresh.reset_state()
        self._clear_persisted_state(reason)

        self._logger.info({"event": "auth_state_cleared", "reason": reason})
        if self._auth_logger is not None:
            self._auth_logger.log_state_cleared(user_id=user_id, reason=reason)

    async def _authenticate(self) -> str:
        generation = self._generation
        try:
            identity = await self._provider.get_current_identity()
        except Exception as e:
            error = classify(e, {"operation": "ensure_authenticated", "service": "identity_provider"})
            if not error.should_refresh_token():
                raise self._authentication_failed(error, generation)

            error.mark_recovery_attempted()
            self._logger.info({"event": "identity_expired_attempting_refresh", "kind": error.kind.value})
            try:
                await self.refresh_tokens_if_needed()
                identity = await self._provider.get_current_identity()
            except Exception as retry_error:
                retry_classified = classify(
                    retry_error, {"operation": "ensure_authenticated", "service": "identity_provider"}
                )
                raise self._authentication_failed(retry_classified, generation)

        return self._authentication_succeeded(identity, generation)

    def _authentication_succeeded(self, identity: Identity, generation: int) -> str:
        if generation != self._generation:
            return identity.user_id

        now = self._clock()
        self._state.is_authenticated = True
        self._state.user_id = identity.user_id
        self._state.last_verified_at = now
        self._state.last_error = None
        self._cache_expires_at = now + timedelta(seconds=self._config.cache_duration_seconds)
        self._persist_state("authentication")

        self._logger.info({"event": "identity_resolved", "user_id": identity.user_id})
        if self._auth_logger is not None:
            self._auth_logger.log_identity_resolved(user_id=identity.user_id)
        return identity.user_id

    def _authentication_failed(self, error: ClassifiedAuthError, generation: int) -> ClassifiedAuthError:
        if generation == self._generation:
            self._state.last_error = error
            self._mark_unauthenticated()
            self._persist_state("authentication_failed")

        self._logger.warning(
            {
                "event": "identity_failed",
                "kind": error.kind.value,
                "strategy": error.recovery_strategy.value,
                "error_message": error.message,
            }
        )
        if self._auth_logger is not None:
            self._auth_logger.log_identity_failed(
                error_kind=error.kind.value,
                error_type=error.context.get("original_error", type(error).__name__),
                error_message=error.message,
            )
        return error

    def _mark_unauthenticated(self) -> None:
        self._state.is_authenticated = False
        self._state.user_id = None
        self._state.last_verified_at = None
        self._cache_expires_at = None

    def _is_cache_valid(self) -> bool:
        return (
            self._state.is_authenticated
            and self._cache_expires_at is not None
            and self._clock() < self._cache_expires_at
        )

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh_tokens_if_needed(self) -> None:
        """Exchange the refresh token for a new credential.

        Joins the exchange already in flight, if any.

        Raises:
            ClassifiedAuthError: TOKEN_MISSING without a refresh token,
                REFRESH_FAILED if the provider declines or leaves no access
                token, TIMEOUT if the exchange takes too long, or the
                classified provider error.
        """
        try:
            await self._refresh.run(self._refresh_credential)
        except ClassifiedAuthError as e:
            self._state.last_error = e
            raise

    async def _refresh_credential(self) -> None:
        self._state.is_refreshing = True
        try:
            credential = await self._read_credential()
            if credential is None or not credential.refresh_token:
                raise ClassifiedAuthError(
                    "No refresh token available",
                    ErrorKind.TOKEN_MISSING,
                    False,
                    {"operation": "refresh_tokens", "service": "credential_store"},
                )

            refreshed = await self._provider.refresh_credential()
            if not refreshed:
                raise ClassifiedAuthError(
                    "Token refresh failed: identity provider declined the refresh",
                    ErrorKind.REFRESH_FAILED,
                    False,
                    {"operation": "refresh_tokens", "service": "identity_provider"},
                )

            credential = await self._read_credential()
            if credential is None or not credential.access_token:
                raise ClassifiedAuthError(
                    "Token refresh failed: no access token after refresh",
                    ErrorKind.REFRESH_FAILED,
                    False,
                    {"operation": "refresh_tokens", "service": "credential_store"},
                )
        except Exception as e:
            error = classify(e, {"operation": "refresh_tokens", "service": "identity_provider"})
            self._logger.warning(
                {
                    "event": "token_refresh_failed",
                    "kind": error.kind.value,
                    "error_message": error.message,
                }
            )
            if self._auth_logger is not None:
                self._auth_logger.log_token_refresh_failed(
                    user_id=self._state.user_id,
                    error_kind=error.kind.value,
                    error_type=error.context.get("original_error", type(error).__name__),
                    error_message=error.message,
                )
            raise error
        finally:
            self._state.is_refreshing = False

        expires_in = credential.seconds_until_expiry(self._clock())
        self._state.last_error = None
        self._persist_state("token_refresh")

        self._logger.info({"event": "token_refreshed", "expires_in_seconds": expires_in})
        if self._auth_logger is not None:
            self._auth_logger.log_token_refreshed(user_id=self._state.user_id, expires_in_seconds=expires_in)

    async def perform_coordinated_refresh(self, operation_id: str = "proactive_refresh") -> bool:
        """Refresh and report whether the credential is now valid.

        Never raises.

        Returns:
            True if the refreshed credential's remaining validity exceeds the
            refresh safety margin.
        """
        try:
            await self.refresh_tokens_if_needed()
            time_until_expiry = await self.get_time_until_token_expiry()
        except Exception as e:
            self._logger.warning(
                {
                    "event": "coordinated_refresh_failed",
                    "operation_id": operation_id,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
            return False

        success = time_until_expiry is not None and time_until_expiry > self._config.refresh_safety_margin_seconds
        self._logger.info(
            {
                "event": "coordinated_refresh_completed",
                "operation_id": operation_id,
                "success": success,
                "time_until_expiry": time_until_expiry,
            }
        )
        return success

    async def get_time_until_token_expiry(self) -> float | None:
        """Seconds until the stored credential expires, or None without one.

        Raises:
            ClassifiedAuthError: If the credential store cannot be read.
        """
        try:
            credential = await self._read_credential()
        except Exception as e:
            raise classify(e, {"operation": "get_time_until_token_expiry", "service": "credential_store"})
        if credential is None:
            return None
        return credential.seconds_until_expiry(self._clock())

    async def _read_credential(self) -> CredentialRecord | None:
        return await asyncio.to_thread(self._store.get_credential)

    # -------------------------------------------------------------------------
    # Error handling
    # -------------------------------------------------------------------------

    async def handle_authentication_error(self, error: BaseException) -> bool:
        """Classify an error raised by a caller's operation and recover if possible.

        Returns:
            True if the caller may retry (or fall back to cached data),
            False if recovery failed or the user must authenticate again.
        """
        classified = classify(
            error, {"operation": "handle_authentication_error", "service": "auth_state_coordinator"}
        )
        already_attempted = classified.recovery_attempted
        strategy = classified.recovery_strategy

        self._state.last_error = classified
        self._mark_unauthenticated()
        self._persist_state("authentication_error")
        self._logger.info(
            {
                "event": "handling_authentication_error",
                "kind": classified.kind.value,
                "strategy": strategy.value,
                "recovery_attempted": already_attempted,
            }
        )

        if strategy is RecoveryStrategy.REAUTHENTICATE:
            self.clear_authentication_state("reauthentication_required")
            self._state.last_error = classified
            return False

        if not classified.can_recover() or already_attempted:
            return False

        classified.mark_recovery_attempted()

        if strategy is RecoveryStrategy.REFRESH_TOKEN:
            try:
                await self.refresh_tokens_if_needed()
                await self.ensure_authenticated()
            except ClassifiedAuthError as e:
                self._logger.warning(
                    {"event": "refresh_recovery_failed", "kind": e.kind.value, "error_message": e.message}
                )
                return False
            return True
        elif strategy in (RecoveryStrategy.RETRY_WITH_BACKOFF, RecoveryStrategy.WAIT_AND_RETRY):
            # The caller decides when to retry, using classified.retry_delay().
            return True
        elif strategy is RecoveryStrategy.FALLBACK_TO_CACHE:
            return True
        return False

    @staticmethod
    def is_authentication_error(error: BaseException | None) -> bool:
        return is_authentication_error(error)

    # -------------------------------------------------------------------------
    # Suspend and resume
    # -------------------------------------------------------------------------

    def mark_suspended(self) -> None:
        """Record that the client is being suspended and persist its state."""
        self._suspended_at = self._clock()
        self._persist_state("suspend")
        self._logger.info({"event": "client_suspended", "user_id": self._state.user_id})

    async def resume(self) -> ResumeResult:
        """Recover after a suspension, according to how long it lasted.

        Within the grace period the state is restored from the persistence
        cache. Up to the maximum suspension the credential is refreshed and
        the identity resolved again. Beyond that all state is cleared and the
        user must authenticate again. Without a prior mark_suspended() the
        suspension counts as zero seconds.

        Never raises; a failed refresh is reported in the result.
        """
        now = self._clock()
        suspended_seconds = (now - self._suspended_at).total_seconds() if self._suspended_at else 0.0
        self._suspended_at = None
        strategy = determine_resume_strategy(
            suspended_seconds,
            self._config.suspend_grace_period_seconds,
            self._config.max_suspend_duration_seconds,
        )
        self._logger.info(
            {"event": "client_resuming", "strategy": strategy.value, "suspended_seconds": suspended_seconds}
        )

        if strategy is ResumeStrategy.USE_CACHE:
            recovered = self.restore_from_persistence()
            if recovered:
                self.synchronize_with_persistence("resume_recovery")
            result = ResumeResult(
                strategy=strategy,
                suspended_seconds=suspended_seconds,
                state_recovered=recovered,
                authentication_valid=self._state.is_authenticated,
                recommended_action="continue_normal_operation" if recovered else "validate_authentication",
            )
        elif strategy is ResumeStrategy.VALIDATE_AND_REFRESH:
            try:
                await self.refresh_tokens_if_needed()
                await self.force_refresh()
            except ClassifiedAuthError as e:
                self._mark_unauthenticated()
                self._persist_state("resume_failed")
                result = ResumeResult(
                    strategy=strategy,
                    suspended_seconds=suspended_seconds,
                    state_recovered=False,
                    authentication_valid=False,
                    recommended_action=(
                        "force_reauthentication" if e.requires_reauthentication() else "validate_authentication"
                    ),
                    error=e,
                )
            else:
                result = ResumeResult(
                    strategy=strategy,
                    suspended_seconds=suspended_seconds,
                    state_recovered=False,
                    authentication_valid=True,
                    recommended_action="continue_normal_operation",
                )
        else:
            self.clear_authentication_state("force_reauthentication")
            result = ResumeResult(
                strategy=strategy,
                suspended_seconds=suspended_seconds,
                state_recovered=False,
                authentication_valid=False,
                recommended_action="force_reauthentication",
            )

        self._logger.info({"event": "client_resumed", **result.to_dict()})
        return result

    def cleanup_stale_state(self) -> int:
        """Remove persistence cache entries past the stale window."""
        if self._cache is None:
            return 0
        try:
            return self._cache.cleanup_stale_state()
        except Exception as e:
            self._log_cache_failure("cleanup_stale_state", e)
            return 0

    # -------------------------------------------------------------------------
    # Snapshot and persistence
    # -------------------------------------------------------------------------

    def get_authentication_state(self) -> AuthStateSnapshot:
        return AuthStateSnapshot(
            is_authenticated=self._state.is_authenticated,
            user_id=self._state.user_id,
            last_verified_at=self._state.last_verified_at,
            last_error=self._state.last_error,
            is_refreshing=self._state.is_refreshing or self._refresh.is_refresh_in_progress,
            is_cache_valid=self._is_cache_valid(),
        )

    def synchronize_with_persistence(self, source: str = "manual") -> None:
        """Push the current state to the persistence cache."""
        if self._cache is None:
            self._logger.debug({"event": "persistence_sync_skipped", "source": source})
            return
        try:
            self._cache.synchronize_state(self._to_cached_state(source), source)
        except Exception as e:
            self._log_cache_failure("synchronize_state", e)

    def restore_from_persistence(self) -> bool:
        """Restore state from the persistence cache, accepting stale entries.

        Returns:
            True if a cached state was restored.
        """
        if self._cache is None:
            return False
        try:
            cached = self._cache.get_cached_auth_state(allow_stale=True)
        except Exception as e:
            self._log_cache_failure("get_cached_auth_state", e)
            return False
        if cached is None:
            return False

        if cached.is_authenticated and cached.user_id:
            verified_at = cached.last_verified_at or cached.cached_at
            self._state.is_authenticated = True
            self._state.user_id = cached.user_id
            self._state.last_verified_at = verified_at
            self._cache_expires_at = verified_at + timedelta(seconds=self._config.cache_duration_seconds)
        else:
            self._mark_unauthenticated()

        if cached.error is not None:
            try:
                kind = ErrorKind(cached.error.kind)
            except ValueError:
                kind = ErrorKind.UNKNOWN
            self._state.last_error = ClassifiedAuthError(
                cached.error.message,
                kind,
                cached.error.recoverable,
                {"operation": "restore_from_persistence", "source": cached.source},
            )
        else:
            self._state.last_error = None

        self._logger.info(
            {
                "event": "auth_state_restored",
                "is_authenticated": self._state.is_authenticated,
                "cache_source": cached.source,
            }
        )
        return True

    def add_sync_listener(self, listener: SyncListener) -> Callable[[], None]:
        """Register a persistence sync listener; returns the unsubscribe function."""
        if self._cache is None:
            return lambda: None
        return self._cache.add_sync_listener(listener)

    def get_authentication_stats(self) -> dict[str, Any]:
        now = self._clock()
        snapshot = self.get_authentication_state()
        cache_age = None
        if self._state.last_verified_at is not None:
            cache_age = (now - self._state.last_verified_at).total_seconds()

        persistence: dict[str, Any] | None = None
        if self._cache is not None:
            try:
                persistence = self._cache.get_status()
            except Exception as e:
                self._log_cache_failure("get_status", e)

        return {
            "auth_state": {**snapshot.to_dict(), "cache_age_seconds": cache_age},
            "coordination_state": {
                "is_authenticating": self._auth_flight.in_flight,
                "has_in_flight_attempt": self._auth_flight.task is not None,
            },
            "services": {
                "identity_provider": type(self._provider).__name__,
                "credential_store": type(self._store).__name__,
                "has_persistence_cache": self._cache is not None,
            },
            "refresh_coordinator": self._refresh.get_refresh_state(),
            "persistence": persistence,
        }

    def _to_cached_state(self, source: str) -> CachedAuthState:
        error = self._state.last_error
        return CachedAuthState(
            is_authenticated=self._state.is_authenticated,
            user_id=self._state.user_id,
            last_verified_at=self._state.last_verified_at,
            error=(
                CachedAuthError(kind=error.kind.value, message=error.message, recoverable=error.recoverable)
                if error is not None
                else None
            ),
            cached_at=self._clock(),
            source=source,
        )

    def _read_persisted_state(self) -> CachedAuthState | None:
        if self._cache is None:
            return None
        try:
            return self._cache.get_cached_auth_state(allow_stale=False)
        except Exception as e:
            self._log_cache_failure("get_cached_auth_state", e)
            return None

    def _persist_state(self, source: str) -> None:
        if self._cache is None:
            return
        try:
            self._cache.cache_auth_state(self._to_cached_state(source), {"source": source})
        except Exception as e:
            self._log_cache_failure("cache_auth_state", e)

    def _clear_persisted_state(self, reason: str) -> None:
        if self._cache is None:
            return
        try:
            self._cache.clear_cached_state(reason)
        except Exception as e:
            self._log_cache_failure("clear_cached_state", e)

    def _log_cache_failure(self, operation: str, error: Exception) -> None:
        self._logger.warning(
            {
                "event": "auth_state_cache_failed",
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        )
