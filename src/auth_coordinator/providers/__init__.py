"""Identity provider implementations."""

from auth_coordinator.providers.oidc import OIDCIdentityProvider

__all__ = ["OIDCIdentityProvider"]
