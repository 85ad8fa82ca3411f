"""Shared data models.

- Identity: user identity returned by an IdentityProvider
- CredentialRecord: token pair and expiry held by a CredentialStore
- AuthStateSnapshot: immutable view of a coordinator's authentication state
- CachedAuthState: auth state as written to a persistence cache
- MonitoringStatus: credential and background-refresh status of a monitor
- ResumeStrategy, ResumeResult: how a coordinator recovered after a suspension
"""

from __future__ import annotations

__all__ = [
    "AuthStateSnapshot",
    "CachedAuthState",
    "CachedAuthError",
    "CredentialRecord",
    "Identity",
    "MonitoringStatus",
    "ResumeResult",
    "ResumeStrategy",
]

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Identity(BaseModel):
    """User identity resolved by the identity provider.

    Attributes:
        user_id: Stable subject identifier.
        claims: Safe, string-valued claims (email, name, issuer, ...).
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    claims: dict[str, str] = Field(default_factory=dict)


class CredentialRecord(BaseModel):
    """Access/refresh token pair with absolute expiry.

    Attributes:
        access_token: Bearer token presented to protected services.
        refresh_token: Token exchanged for a new pair, if issued.
        expires_at: When access_token stops being accepted (UTC).
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime

    def seconds_until_expiry(self, now: datetime | None = None) -> float:
        """Remaining validity in seconds (negative once expired)."""
        return (self.expires_at - (now or _utcnow())).total_seconds()

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.seconds_until_expiry(now) <= 0

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> CredentialRecord:
        return cls.model_validate_json(data)

    def __repr__(self) -> str:
        # Tokens are never rendered.
        return f"CredentialRecord(expires_at={self.expires_at.isoformat()}, has_refresh_token={self.refresh_token is not None})"


@dataclass(frozen=True)
class AuthStateSnapshot:
    """Point-in-time copy of a coordinator's authentication state."""

    is_authenticated: bool
    user_id: str | None
    last_verified_at: datetime | None
    last_error: Any  # ClassifiedAuthError | None
    is_refreshing: bool
    is_cache_valid: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_authenticated": self.is_authenticated,
            "user_id": self.user_id,
            "last_verified_at": self.last_verified_at.isoformat() if self.last_verified_at else None,
            "last_error": self.last_error.to_dict() if self.last_error is not None else None,
            "is_refreshing": self.is_refreshing,
            "is_cache_valid": self.is_cache_valid,
        }


class CachedAuthError(BaseModel):
    """Serializable summary of the last classified error."""

    kind: str
    message: str
    recoverable: bool


class CachedAuthState(BaseModel):
    """Auth state entry stored by a persistence cache."""

    is_authenticated: bool = False
    user_id: str | None = None
    last_verified_at: datetime | None = None
    error: CachedAuthError | None = None
    cached_at: datetime = Field(default_factory=_utcnow)
    source: str = "unknown"

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or _utcnow()) - self.cached_at).total_seconds()


@dataclass(frozen=True)
class MonitoringStatus:
    """Credential and background-refresh status reported by the monitor."""

    time_until_expiry: float | None
    needs_proactive_refresh: bool
    tokens_expired: bool
    proactive_threshold: float
    critical_threshold: float
    background_refresh_enabled: bool
    last_background_check: datetime | None
    background_failure_count: int
    last_background_failure: dict[str, Any] | None
    scheduled_refresh_count: int

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        if self.last_background_check is not None:
            result["last_background_check"] = self.last_background_check.isoformat()
        return result


class ResumeStrategy(str, Enum):
    """Recovery chosen on resume, by how long the client was suspended."""

    USE_CACHE = "use_cache"
    VALIDATE_AND_REFRESH = "validate_and_refresh"
    FORCE_REAUTHENTICATION = "force_reauthentication"


@dataclass(frozen=True)
class ResumeResult:
    """Outcome of AuthStateCoordinator.resume()."""

    strategy: ResumeStrategy
    suspended_seconds: float
    state_recovered: bool
    authentication_valid: bool
    recommended_action: str
    error: Any = None  # ClassifiedAuthError | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "suspended_seconds": self.suspended_seconds,
            "state_recovered": self.state_recovered,
            "authentication_valid": self.authentication_valid,
            "recommended_action": self.recommended_action,
            "error": self.error.to_dict() if self.error is not None else None,
        }
