"""Collaborator protocols for authentication coordination.

The coordinator depends only on these protocols, never on a concrete
identity provider or storage backend:

- IdentityProvider: resolves the current identity and refreshes credentials
- CredentialStore: reads the current token pair
- AuthStateCache: optional cross-instance cache of authentication state

Implementations in this package: OIDCIdentityProvider (providers/oidc.py),
MemoryCredentialStore / FileCredentialStore (security/credential_store.py),
MemoryAuthStateCache / FileAuthStateCache (coordination/persistence.py).
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from auth_coordinator.models import CachedAuthState, CredentialRecord, Identity

SyncListener = Callable[[str, dict[str, Any]], Any]


@runtime_checkable
class IdentityProvider(Protocol):
    """Protocol for pluggable identity providers.

    Both methods are async; providers typically make network calls.
    Failures are raised as ordinary exceptions and classified by the
    coordinator.
    """

    async def get_current_identity(self) -> Identity:
        """Resolve the identity bound to the stored credential.

        Raises:
            Exception: If the credential is missing, expired, or rejected.
        """
        ...

    async def refresh_credential(self) -> bool:
        """Exchange the refresh token for a new credential and store it.

        Returns:
            True if a new credential was stored, False if the provider
            declined the refresh.
        """
        ...


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol for credential storage backends (read side)."""

    def get_credential(self) -> CredentialRecord | None:
        """Return the stored credential, or None if there is none."""
        ...


@runtime_checkable
class AuthStateCache(Protocol):
    """Protocol for optional authentication state persistence.

    Cache failures never abort coordination; the coordinator logs them.
    """

    def get_cached_auth_state(self, allow_stale: bool = False) -> CachedAuthState | None:
        """Return the cached state if fresh (or stale but allowed)."""
        ...

    def cache_auth_state(self, state: CachedAuthState, meta: dict[str, Any] | None = None) -> None:
        ...

    def clear_cached_state(self, reason: str = "manual") -> None:
        ...

    def synchronize_state(self, state: CachedAuthState, source: str = "unknown") -> None:
        ...

    def add_sync_listener(self, listener: SyncListener) -> Callable[[], None]:
        """Register a listener called with (event_type, payload).

        Returns:
            Function that unregisters the listener.
        """
        ...

    def cleanup_stale_state(self) -> int:
        """Remove entries past the stale window; returns how many were removed."""
        ...

    def get_status(self) -> dict[str, Any]:
        """Diagnostic view of the cache."""
        ...


@runtime_checkable
class WritableCredentialStore(CredentialStore, Protocol):
    """Credential store that identity providers can write refreshed credentials to."""

    def save(self, record: CredentialRecord) -> None:
        ...

    def delete(self) -> None:
        ...

    def exists(self) -> bool:
        ...
