"""Tests for the reference OAuth identity provider.

HTTP is mocked with httpx.MockTransport; no network access.

Tests cover:
- get_current_identity() (userinfo call, claim filtering, error mapping)
- refresh_credential() (refresh_token grant, rotation, invalid_grant)
- Integration with AuthStateCoordinator expired-token recovery
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable
from urllib.parse import parse_qs

import httpx
import pytest

from auth_coordinator.config import OIDCConfig
from auth_coordinator.coordination.state_coordinator import AuthStateCoordinator
from auth_coordinator.exceptions import AuthenticationError
from auth_coordinator.providers.oidc import OIDCIdentityProvider
from auth_coordinator.security.classifier import ClassifiedAuthError, ErrorKind, classify
from auth_coordinator.security.credential_store import MemoryCredentialStore

TOKEN_ENDPOINT = "https://auth.example.com/oauth/token"
USERINFO_ENDPOINT = "https://auth.example.com/userinfo"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def oidc_config() -> OIDCConfig:
    """Valid OAuth configuration for tests."""
    return OIDCConfig(
        token_endpoint=TOKEN_ENDPOINT,
        userinfo_endpoint=USERINFO_ENDPOINT,
        client_id="test-client-id",
        scopes=["openid", "offline_access"],
    )


@pytest.fixture
def requests() -> list[httpx.Request]:
    return []


@pytest.fixture
async def make_provider(oidc_config: OIDCConfig, credential_store: MemoryCredentialStore, clock, requests):
    """Build a provider whose HTTP calls are answered by handler."""
    clients: list[httpx.AsyncClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> OIDCIdentityProvider:
        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
        clients.append(client)
        return OIDCIdentityProvider(oidc_config, credential_store, client, clock=clock)

    yield _make

    for client in clients:
        await client.aclose()


def form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


# ============================================================================
# Tests: get_current_identity()
# ============================================================================


class TestGetCurrentIdentity:
    """Tests for OIDCIdentityProvider.get_current_identity()."""

    async def test_returns_identity_from_userinfo(self, make_provider, requests):
        """Given a valid token, calls userinfo with a bearer header and keeps safe claims."""
        # Arrange
        provider = make_provider(
            lambda request: httpx.Response(
                200,
                json={"sub": "auth0|alice", "email": "alice@example.com", "name": "Alice", "groups": ["admin"]},
            )
        )

        # Act
        identity = await provider.get_current_identity()

        # Assert
        assert identity.user_id == "auth0|alice"
        assert identity.claims == {"email": "alice@example.com", "name": "Alice"}
        assert requests[0].url == USERINFO_ENDPOINT
        assert requests[0].headers["Authorization"] == "Bearer access-0"

    async def test_no_credential(self, make_provider, credential_store, requests):
        credential_store.delete()
        provider = make_provider(lambda request: httpx.Response(200, json={}))

        with pytest.raises(AuthenticationError, match="Not authenticated"):
            await provider.get_current_identity()

        assert requests == []

    async def test_expired_credential_is_not_sent(self, make_provider, credential_store, make_credential, requests):
        credential_store.save(make_credential(expires_in=-1))
        provider = make_provider(lambda request: httpx.Response(200, json={"sub": "x"}))

        with pytest.raises(AuthenticationError, match="Token expired"):
            await provider.get_current_identity()

        assert requests == []

    @pytest.mark.parametrize(
        ("status_code", "expected_kind"),
        [
            (401, ErrorKind.TOKEN_EXPIRED),
            (403, ErrorKind.ACCOUNT_DISABLED),
            (429, ErrorKind.RATE_LIMITED),
            (503, ErrorKind.SERVICE_UNAVAILABLE),
        ],
    )
    async def test_http_errors_classify(self, make_provider, status_code: int, expected_kind: ErrorKind):
        """Given an HTTP error from userinfo, raises an error the classifier maps to the right kind."""
        provider = make_provider(lambda request: httpx.Response(status_code))

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.get_current_identity()

        assert classify(exc_info.value).kind is expected_kind

    async def test_missing_subject(self, make_provider):
        provider = make_provider(lambda request: httpx.Response(200, json={"email": "a@example.com"}))

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.get_current_identity()

        assert classify(exc_info.value).kind is ErrorKind.USER_NOT_FOUND

    async def test_malformed_response(self, make_provider):
        provider = make_provider(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(AuthenticationError, match="malformed userinfo response"):
            await provider.get_current_identity()

    async def test_transport_error_propagates(self, make_provider):
        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = make_provider(unreachable)

        with pytest.raises(httpx.ConnectError) as exc_info:
            await provider.get_current_identity()

        assert classify(exc_info.value).kind is ErrorKind.NETWORK_ERROR


# ============================================================================
# Tests: refresh_credential()
# ============================================================================


class TestRefreshCredential:
    """Tests for OIDCIdentityProvider.refresh_credential()."""

    async def test_refresh_saves_new_credential(self, make_provider, credential_store, clock, requests):
        """Given a successful refresh_token grant, saves the rotated credential."""
        # Arrange
        provider = make_provider(
            lambda request: httpx.Response(
                200,
                json={"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 900},
            )
        )

        # Act
        refreshed = await provider.refresh_credential()

        # Assert
        assert refreshed is True
        record = credential_store.get_credential()
        assert record.access_token == "access-1"
        assert record.refresh_token == "refresh-1"
        assert record.expires_at == clock() + timedelta(seconds=900)
        assert requests[0].method == "POST"
        assert requests[0].url == TOKEN_ENDPOINT
        assert form(requests[0]) == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-token",
            "client_id": "test-client-id",
            "scope": "openid offline_access",
        }

    async def test_refresh_without_rotation_keeps_refresh_token(self, make_provider, credential_store, clock):
        provider = make_provider(lambda request: httpx.Response(200, json={"access_token": "access-1"}))

        assert await provider.refresh_credential() is True

        record = credential_store.get_credential()
        assert record.refresh_token == "refresh-token"
        assert record.expires_at == clock() + timedelta(seconds=3600)

    async def test_no_refresh_token(self, make_provider, credential_store, make_credential, requests):
        credential_store.save(make_credential(refresh_token=None))
        provider = make_provider(lambda request: httpx.Response(200, json={}))

        assert await provider.refresh_credential() is False
        assert requests == []

    async def test_invalid_grant_declines(self, make_provider, credential_store):
        provider = make_provider(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

        assert await provider.refresh_credential() is False
        assert credential_store.get_credential().access_token == "access-0"

    async def test_other_client_error_raises_refresh_failed(self, make_provider):
        provider = make_provider(lambda request: httpx.Response(400, json={"error": "invalid_client"}))

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.refresh_credential()

        assert classify(exc_info.value).kind is ErrorKind.REFRESH_FAILED

    async def test_server_error(self, make_provider):
        provider = make_provider(lambda request: httpx.Response(502))

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.refresh_credential()

        assert classify(exc_info.value).kind is ErrorKind.SERVICE_UNAVAILABLE

    async def test_owned_client_is_closed(self, oidc_config: OIDCConfig, credential_store):
        provider = OIDCIdentityProvider(oidc_config, credential_store)

        async with provider:
            pass

        assert provider._client.is_closed


# ============================================================================
# Tests: Coordinator integration
# ============================================================================


class TestCoordinatorIntegration:
    """OIDCIdentityProvider behind AuthStateCoordinator."""

    async def test_expired_credential_is_refreshed_transparently(
        self, make_provider, credential_store, make_credential, clock
    ):
        """Given an expired access token, the coordinator refreshes it and resolves the identity."""
        # Arrange
        credential_store.save(make_credential(expires_in=-5))

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url == TOKEN_ENDPOINT:
                return httpx.Response(200, json={"access_token": "access-1", "expires_in": 3600})
            assert request.headers["Authorization"] == "Bearer access-1"
            return httpx.Response(200, json={"sub": "auth0|alice"})

        provider = make_provider(handler)
        coordinator = AuthStateCoordinator(provider, credential_store, clock=clock)

        # Act
        user_id = await coordinator.get_current_user_id()

        # Assert
        assert user_id == "auth0|alice"
        assert await coordinator.get_time_until_token_expiry() == pytest.approx(3600.0)

    async def test_revoked_refresh_token_fails_with_refresh_failed(
        self, make_provider, credential_store, make_credential, clock
    ):
        credential_store.save(make_credential(expires_in=-5))
        provider = make_provider(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
        coordinator = AuthStateCoordinator(provider, credential_store, clock=clock)

        with pytest.raises(ClassifiedAuthError) as exc_info:
            await coordinator.get_current_user_id()

        assert exc_info.value.kind is ErrorKind.REFRESH_FAILED
        assert exc_info.value.requires_reauthentication() is True
