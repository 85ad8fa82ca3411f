"""Reference OAuth/OIDC identity provider.

Implements the IdentityProvider protocol over httpx:
- get_current_identity(): calls the userinfo endpoint with the stored
  access token
- refresh_credential(): posts a refresh_token grant to the token endpoint
  and saves the new credential

Errors are raised with messages the classifier understands (for example
"Token expired or invalid" for HTTP 401); the coordinator never sees the
wire format. Tokens are never logged.
"""

from __future__ import annotations

__all__ = ["OIDCIdentityProvider"]

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

import httpx

from auth_coordinator.exceptions import AuthenticationError
from auth_coordinator.models import CredentialRecord, Identity
from auth_coordinator.security.identity import WritableCredentialStore
from auth_coordinator.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from auth_coordinator.config import OIDCConfig

# Used when the token endpoint omits expires_in
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

# Userinfo claims copied into Identity.claims
_IDENTITY_CLAIMS: tuple[str, ...] = ("email", "name", "preferred_username")


class OIDCIdentityProvider:
    """OAuth identity provider backed by a credential store.

    Usage:
        async with OIDCIdentityProvider(oidc_config, create_credential_store()) as provider:
            identity = await provider.get_current_identity()

    Raises:
        AuthenticationError: If not authenticated, the token is rejected, or
            the provider returns an error.
        httpx.TransportError: If the provider cannot be reached.
    """

    def __init__(
        self,
        config: "OIDCConfig",
        credential_store: WritableCredentialStore,
        client: httpx.AsyncClient | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Token and userinfo endpoints, client id and scopes.
            credential_store: Store holding the credential; refreshed
                credentials are saved back to it.
            client: HTTP client (default: one owned and closed by this provider).
            clock: Returns the current UTC time.
        """
        self._config = config
        self._store = credential_store
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = get_system_logger()

    async def __aenter__(self) -> "OIDCIdentityProvider":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_current_identity(self) -> Identity:
        """Resolve the identity for the stored access token.

        Raises:
            AuthenticationError: If no credential is stored, it has expired,
                or the userinfo endpoint rejects it.
        """
        record = await self._load_credential()
        if record.is_expired(self._clock()):
            raise AuthenticationError("Token expired")

        response = await self._client.get(
            self._config.userinfo_endpoint,
            headers={"Authorization": f"Bearer {record.access_token}"},
        )
        self._raise_for_status(response, operation="userinfo")

        claims = self._parse_json(response, operation="userinfo")
        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("User not found: userinfo response has no subject")

        safe_claims = {name: str(claims[name]) for name in _IDENTITY_CLAIMS if claims.get(name)}
        self._logger.debug({"event": "userinfo_resolved", "user_id": subject})
        return Identity(user_id=str(subject), claims=safe_claims)

    async def refresh_credential(self) -> bool:
        """Exchange the stored refresh token for a new credential.

        Returns:
            True if a new credential was saved, False if there is no refresh
            token or the provider rejected it (invalid_grant).

        Raises:
            AuthenticationError: If the token endpoint fails otherwise.
        """
        record = await self._load_credential()
        if not record.refresh_token:
            return False

        data = {
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
            "client_id": self._config.client_id,
        }
        if self._config.scopes:
            data["scope"] = " ".join(self._config.scopes)

        response = await self._client.post(self._config.token_endpoint, data=data)

        if response.status_code in (400, 401):
            error_code = self._error_code(response)
            if error_code == "invalid_grant":
                self._logger.warning({"event": "refresh_token_rejected", "status_code": response.status_code})
                return False
            self._logger.warning(
                {"event": "token_endpoint_error", "status_code": response.status_code, "error": error_code}
            )
            raise AuthenticationError(f"Token refresh failed (HTTP {response.status_code})")
        self._raise_for_status(response, operation="token refresh")

        payload = self._parse_json(response, operation="token refresh")
        access_token = payload.get("access_token")
        if not access_token:
            raise AuthenticationError("Token refresh failed: response has no access_token")

        expires_in = payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS
        refreshed = CredentialRecord(
            access_token=access_token,
            # Providers without refresh token rotation omit it
            refresh_token=payload.get("refresh_token") or record.refresh_token,
            expires_at=self._clock() + timedelta(seconds=float(expires_in)),
        )
        await asyncio.to_thread(self._store.save, refreshed)

        self._logger.info({"event": "credential_refreshed", "expires_in_seconds": float(expires_in)})
        return True

    async def _load_credential(self) -> CredentialRecord:
        record = await asyncio.to_thread(self._store.get_credential)
        if record is None:
            raise AuthenticationError("Not authenticated. No stored credential.")
        return record

    def _raise_for_status(self, response: httpx.Response, *, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 401:
            raise AuthenticationError("Token expired or invalid")
        if status == 403:
            raise AuthenticationError(f"Account disabled or access suspended ({operation})")
        if status == 429:
            raise AuthenticationError(f"Rate limit exceeded ({operation})")
        if status >= 500:
            raise AuthenticationError(f"Service unavailable: identity provider returned HTTP {status} ({operation})")
        raise AuthenticationError(f"Identity provider rejected {operation} request (HTTP {status})")

    def _parse_json(self, response: httpx.Response, *, operation: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError(f"Service unavailable: malformed {operation} response") from e
        if not isinstance(payload, dict):
            raise AuthenticationError(f"Service unavailable: malformed {operation} response")
        return payload

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        return payload.get("error") if isinstance(payload, dict) else None
