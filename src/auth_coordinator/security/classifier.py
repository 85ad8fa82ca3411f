"""Authentication error classification.

Turns arbitrary failures from the identity provider or credential store into
a closed taxonomy of error kinds. Each kind is bound to exactly one recovery
strategy at classification time:

    TOKEN_EXPIRED                                   -> REFRESH_TOKEN
    NETWORK_ERROR, TIMEOUT, SERVICE_UNAVAILABLE     -> RETRY_WITH_BACKOFF
    RATE_LIMITED, CONCURRENT_REFRESH                -> WAIT_AND_RETRY
    INVALID_CREDENTIALS, TOKEN_INVALID, TOKEN_MISSING,
    REFRESH_FAILED, INVALID_TOKEN_FORMAT,
    USER_NOT_FOUND                                  -> REAUTHENTICATE
    ACCOUNT_DISABLED                                -> NO_RECOVERY
    UNKNOWN                                         -> FALLBACK_TO_CACHE
                                                       (NO_RECOVERY if terminal)

Classification is a pure function of the raw error's type and message.
"""

from __future__ import annotations

__all__ = [
    "ClassifiedAuthError",
    "ErrorKind",
    "RecoveryStrategy",
    "classify",
    "is_authentication_error",
    "strategy_for",
]

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from auth_coordinator.constants import (
    CONCURRENT_REFRESH_DELAY_SECONDS,
    NETWORK_MAX_DELAY_SECONDS,
    RATE_LIMITED_MAX_DELAY_SECONDS,
    RETRY_BASE_DELAY_SECONDS,
    SERVICE_UNAVAILABLE_MAX_DELAY_SECONDS,
    TIMEOUT_ERRORS,
    TRANSPORT_ERRORS,
)
from auth_coordinator.exceptions import AuthenticationError


class ErrorKind(str, Enum):
    """Closed set of authentication failure kinds."""

    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"
    TOKEN_MISSING = "token_missing"
    INVALID_CREDENTIALS = "invalid_credentials"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    USER_NOT_FOUND = "user_not_found"
    REFRESH_FAILED = "refresh_failed"
    CONCURRENT_REFRESH = "concurrent_refresh"
    INVALID_TOKEN_FORMAT = "invalid_token_format"
    ACCOUNT_DISABLED = "account_disabled"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class RecoveryStrategy(str, Enum):
    """Recovery action bound to an error kind."""

    REFRESH_TOKEN = "refresh_token"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    WAIT_AND_RETRY = "wait_and_retry"
    REAUTHENTICATE = "reauthenticate"
    FALLBACK_TO_CACHE = "fallback_to_cache"
    NO_RECOVERY = "no_recovery"


_STRATEGY_BY_KIND: dict[ErrorKind, RecoveryStrategy] = {
    ErrorKind.TOKEN_EXPIRED: RecoveryStrategy.REFRESH_TOKEN,
    ErrorKind.NETWORK_ERROR: RecoveryStrategy.RETRY_WITH_BACKOFF,
    ErrorKind.TIMEOUT: RecoveryStrategy.RETRY_WITH_BACKOFF,
    ErrorKind.SERVICE_UNAVAILABLE: RecoveryStrategy.RETRY_WITH_BACKOFF,
    ErrorKind.RATE_LIMITED: RecoveryStrategy.WAIT_AND_RETRY,
    ErrorKind.CONCURRENT_REFRESH: RecoveryStrategy.WAIT_AND_RETRY,
    ErrorKind.INVALID_CREDENTIALS: RecoveryStrategy.REAUTHENTICATE,
    ErrorKind.TOKEN_INVALID: RecoveryStrategy.REAUTHENTICATE,
    ErrorKind.TOKEN_MISSING: RecoveryStrategy.REAUTHENTICATE,
    ErrorKind.REFRESH_FAILED: RecoveryStrategy.REAUTHENTICATE,
    ErrorKind.INVALID_TOKEN_FORMAT: RecoveryStrategy.REAUTHENTICATE,
    ErrorKind.USER_NOT_FOUND: RecoveryStrategy.REAUTHENTICATE,
    ErrorKind.ACCOUNT_DISABLED: RecoveryStrategy.NO_RECOVERY,
}

_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.TOKEN_EXPIRED: "Your session has expired. Please wait while we refresh your login.",
    ErrorKind.TOKEN_INVALID: "Your session is no longer valid. Please log in again.",
    ErrorKind.TOKEN_MISSING: "You are not logged in. Please log in to continue.",
    ErrorKind.INVALID_CREDENTIALS: "Your login credentials are invalid. Please log in again.",
    ErrorKind.NETWORK_ERROR: "Network connection error. Please check your connection and try again.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.USER_NOT_FOUND: "User account not found. Please log in again.",
    ErrorKind.REFRESH_FAILED: "Unable to refresh your session. Please log in again.",
    ErrorKind.CONCURRENT_REFRESH: "Authentication is being refreshed. Please wait a moment.",
    ErrorKind.INVALID_TOKEN_FORMAT: "Invalid authentication format. Please log in again.",
    ErrorKind.ACCOUNT_DISABLED: "Your account has been disabled. Please contact support.",
    ErrorKind.SERVICE_UNAVAILABLE: "Authentication service is temporarily unavailable. Please try again later.",
    ErrorKind.TIMEOUT: "Authentication request timed out. Please try again.",
}

_DEFAULT_USER_MESSAGE = "An authentication error occurred. Please try again."

# Ordered message patterns: (all-of substrings, any-of substrings, kind, recoverable).
# First match wins.
_MESSAGE_PATTERNS: tuple[tuple[tuple[str, ...], tuple[str, ...], ErrorKind, bool], ...] = (
    (("token", "format"), (), ErrorKind.INVALID_TOKEN_FORMAT, False),
    (("token", "expired"), (), ErrorKind.TOKEN_EXPIRED, True),
    (("token", "invalid"), (), ErrorKind.TOKEN_INVALID, False),
    ((), ("not authenticated",), ErrorKind.TOKEN_MISSING, True),
    ((), ("network", "connection"), ErrorKind.NETWORK_ERROR, True),
    ((), ("timeout", "timed out"), ErrorKind.TIMEOUT, True),
    ((), ("rate limit", "too many"), ErrorKind.RATE_LIMITED, True),
    ((), ("user not found",), ErrorKind.USER_NOT_FOUND, True),
    ((), ("credentials", "unauthorized"), ErrorKind.INVALID_CREDENTIALS, False),
    ((), ("disabled", "suspended"), ErrorKind.ACCOUNT_DISABLED, False),
    (("refresh", "failed"), (), ErrorKind.REFRESH_FAILED, False),
    ((), ("service unavailable", "server error"), ErrorKind.SERVICE_UNAVAILABLE, True),
    ((), ("concurrent", "already refreshing"), ErrorKind.CONCURRENT_REFRESH, True),
)

_AUTH_KEYWORDS: tuple[str, ...] = (
    "not authenticated",
    "authentication",
    "unauthorized",
    "token",
    "credentials",
    "login",
    "session",
)


def strategy_for(kind: ErrorKind, recoverable: bool = True) -> RecoveryStrategy:
    """Return the recovery strategy bound to an error kind."""
    strategy = _STRATEGY_BY_KIND.get(kind)
    if strategy is not None:
        return strategy
    return RecoveryStrategy.FALLBACK_TO_CACHE if recoverable else RecoveryStrategy.NO_RECOVERY


class ClassifiedAuthError(AuthenticationError):
    """Authentication failure with kind, recovery strategy and context.

    The recovery strategy is fixed at construction. The only mutable field is
    recovery_attempted, set once by mark_recovery_attempted() so the same
    failure is never recovered twice.

    Attributes:
        kind: Classified error kind.
        recoverable: Whether any recovery is possible.
        recovery_strategy: Strategy bound to kind (and recoverable for UNKNOWN).
        context: Diagnostic context (operation, service, original error type, ...).
        recovery_attempted: True once a recovery has been attempted.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.recoverable = recoverable
        self.context: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": "unknown",
            "service": "unknown",
            **(context or {}),
        }
        self.recovery_attempted = False
        self._recovery_strategy = strategy_for(kind, recoverable)

    @property
    def recovery_strategy(self) -> RecoveryStrategy:
        return self._recovery_strategy

    def mark_recovery_attempted(self) -> None:
        """Record that recovery has been attempted for this failure."""
        self.recovery_attempted = True
        self.context["recovery_attempted_at"] = datetime.now(timezone.utc).isoformat()

    def can_recover(self) -> bool:
        return self.recoverable and self._recovery_strategy is not RecoveryStrategy.NO_RECOVERY

    def should_retry(self) -> bool:
        return (
            self.recoverable
            and not self.recovery_attempted
            and self._recovery_strategy
            in (RecoveryStrategy.RETRY_WITH_BACKOFF, RecoveryStrategy.WAIT_AND_RETRY)
        )

    def should_refresh_token(self) -> bool:
        return (
            self.recoverable
            and not self.recovery_attempted
            and self._recovery_strategy is RecoveryStrategy.REFRESH_TOKEN
        )

    def requires_reauthentication(self) -> bool:
        return self._recovery_strategy is RecoveryStrategy.REAUTHENTICATE

    @property
    def user_message(self) -> str:
        """Human-readable message for callers that present errors to users."""
        return _USER_MESSAGES.get(self.kind, _DEFAULT_USER_MESSAGE)

    def retry_delay(self, attempt: int = 1) -> float:
        """Suggested delay in seconds before retry attempt number `attempt`.

        The delay is reported, never slept on the caller's behalf.
        """
        base = RETRY_BASE_DELAY_SECONDS
        if self.kind is ErrorKind.RATE_LIMITED:
            return min(base * 2**attempt, RATE_LIMITED_MAX_DELAY_SECONDS)
        if self.kind in (ErrorKind.NETWORK_ERROR, ErrorKind.TIMEOUT):
            return min(base * attempt, NETWORK_MAX_DELAY_SECONDS)
        if self.kind is ErrorKind.SERVICE_UNAVAILABLE:
            return min(base * 2**attempt, SERVICE_UNAVAILABLE_MAX_DELAY_SECONDS)
        if self.kind is ErrorKind.CONCURRENT_REFRESH:
            return CONCURRENT_REFRESH_DELAY_SECONDS
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict for logging."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "kind": self.kind.value,
            "recoverable": self.recoverable,
            "recovery_strategy": self._recovery_strategy.value,
            "recovery_attempted": self.recovery_attempted,
            "context": {k: v for k, v in self.context.items() if _is_json_scalar(v)},
        }

    def __repr__(self) -> str:
        return f"ClassifiedAuthError({self.message!r}, kind={self.kind.value}, strategy={self._recovery_strategy.value})"


def _is_json_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _classify_message(message: str) -> tuple[ErrorKind, bool]:
    text = message.lower()
    for all_of, any_of, kind, recoverable in _MESSAGE_PATTERNS:
        if all_of and not all(part in text for part in all_of):
            continue
        if any_of and not any(part in text for part in any_of):
            continue
        return kind, recoverable
    return ErrorKind.UNKNOWN, True


def classify(
    error: BaseException,
    context: dict[str, Any] | None = None,
    *,
    recoverable: bool | None = None,
) -> ClassifiedAuthError:
    """Classify a raw failure.

    Args:
        error: Raw exception from a collaborator, or an already classified error.
        context: Diagnostic context merged into the classified error.
        recoverable: Overrides recoverability for UNKNOWN errors, for callers
            that already know the failure is terminal.

    Returns:
        The error itself if already classified, otherwise a new
        ClassifiedAuthError chained to the raw error.
    """
    if isinstance(error, ClassifiedAuthError):
        return error

    message = str(error) or type(error).__name__

    if isinstance(error, TIMEOUT_ERRORS):
        kind, is_recoverable = ErrorKind.TIMEOUT, True
    elif isinstance(error, TRANSPORT_ERRORS):
        kind, is_recoverable = ErrorKind.NETWORK_ERROR, True
    else:
        kind, is_recoverable = _classify_message(message)

    if kind is ErrorKind.UNKNOWN and recoverable is not None:
        is_recoverable = recoverable

    classified = ClassifiedAuthError(
        message,
        kind,
        is_recoverable,
        {"original_error": type(error).__name__, **(context or {})},
    )
    classified.__cause__ = error
    return classified


def is_authentication_error(error: BaseException | None) -> bool:
    """Heuristic check for authentication-related failures."""
    if isinstance(error, AuthenticationError):
        return True
    if error is None:
        return False
    message = str(error).lower()
    if not message:
        return False
    return any(keyword in message for keyword in _AUTH_KEYWORDS)
