"""Authentication audit logger.

Logs authentication events to audit/auth.jsonl:
- Identity resolution (success/failure)
- Token refresh attempts (success/failure)
- Authentication state clears

Audit logging never interrupts coordination: if a write fails the event is
reported on the system logger instead.
"""

from __future__ import annotations

import logging
from pathlib import Path

from auth_coordinator.telemetry.models.audit import AuthEvent
from auth_coordinator.telemetry.system.system_logger import get_system_logger
from auth_coordinator.utils.logging.logger_setup import setup_jsonl_logger

_system_logger = get_system_logger()


class AuthLogger:
    """Audit logger for authentication events.

    Usage:
        logger = create_auth_logger(get_auth_log_path(config))
        logger.log_identity_resolved(user_id="alice")
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _log_event(self, event: AuthEvent) -> bool:
        """Write an auth event.

        Returns:
            True if written to the audit log, False if the system log was used.
        """
        event_data = event.model_dump(mode="json", exclude={"time"}, exclude_none=True)
        try:
            self._logger.info(event_data)
        except Exception as e:
            _system_logger.warning(
                {
                    "event": "auth_audit_write_failed",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "audit_event": event_data,
                }
            )
            return False
        return True

    def log_identity_resolved(self, *, user_id: str, message: str | None = None) -> bool:
        """Log a successful identity resolution."""
        event = AuthEvent(
            event_type="identity_resolved",
            status="Success",
            user_id=user_id,
            message=message,
        )
        return self._log_event(event)

    def log_identity_failed(
        self,
        *,
        error_kind: str | None = None,
        error_type: str | None = None,
        error_message: str | None = None,
        message: str | None = None,
    ) -> bool:
        """Log a failed identity resolution.

        Args:
            error_kind: Classified error kind.
            error_type: Exception class name of the raw error.
            error_message: Human-readable error description.
            message: Optional human-readable message.
        """
        event = AuthEvent(
            event_type="identity_failed",
            status="Failure",
            error_kind=error_kind,
            error_type=error_type,
            error_message=error_message,
            message=message,
        )
        return self._log_event(event)

    def log_token_refreshed(
        self,
        *,
        user_id: str | None = None,
        operation_id: str | None = None,
        expires_in_seconds: float | None = None,
        message: str | None = None,
    ) -> bool:
        """Log a successful credential refresh."""
        event = AuthEvent(
            event_type="token_refreshed",
            status="Success",
            user_id=user_id,
            operation_id=operation_id,
            expires_in_seconds=expires_in_seconds,
            message=message,
        )
        return self._log_event(event)

    def log_token_refresh_failed(
        self,
        *,
        user_id: str | None = None,
        operation_id: str | None = None,
        error_kind: str | None = None,
        error_type: str | None = None,
        error_message: str | None = None,
        message: str | None = None,
    ) -> bool:
        """Log a failed credential refresh."""
        event = AuthEvent(
            event_type="token_refresh_failed",
            status="Failure",
            user_id=user_id,
            operation_id=operation_id,
            error_kind=error_kind,
            error_type=error_type,
            error_message=error_message,
            message=message,
        )
        return self._log_event(event)

    def log_state_cleared(
        self,
        *,
        user_id: str | None = None,
        reason: str,
        message: str | None = None,
    ) -> bool:
        """Log that authentication state was cleared.

        Args:
            user_id: User whose state was cleared, if known.
            reason: Why the state was cleared (e.g. "reauthentication_required").
            message: Optional human-readable message.
        """
        event = AuthEvent(
            event_type="state_cleared",
            status="Success",
            user_id=user_id,
            reason=reason,
            message=message,
        )
        return self._log_event(event)


def create_auth_logger(log_path: Path, log_level: int = logging.INFO) -> AuthLogger:
    """Create an auth logger writing to log_path.

    Args:
        log_path: Path to auth.jsonl (from get_auth_log_path()).
        log_level: Minimum level to record.

    Returns:
        AuthLogger: Configured logger for authentication events.
    """
    logger = setup_jsonl_logger("auth_coordinator.audit.auth", log_path, log_level)
    return AuthLogger(logger)
