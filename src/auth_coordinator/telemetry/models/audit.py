"""Audit log record models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

AuthEventType = Literal[
    "identity_resolved",
    "identity_failed",
    "token_refreshed",
    "token_refresh_failed",
    "state_cleared",
]


class AuthEvent(BaseModel):
    """One line of audit/auth.jsonl.

    Tokens are never part of an event; only identifiers, outcomes and
    classified error details are recorded.

    Attributes:
        time: Event time (UTC). Written by the formatter, excluded from the payload.
        event_type: What happened.
        status: Success or Failure.
        user_id: Resolved user, when known.
        operation_id: Caller-supplied operation identifier.
        error_kind: Classified error kind (ErrorKind value).
        error_type: Exception class name.
        error_message: Error description.
        expires_in_seconds: Remaining credential validity after a refresh.
        reason: Why state was cleared.
        message: Optional human-readable message.
    """

    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: AuthEventType
    status: Literal["Success", "Failure"]
    user_id: str | None = None
    operation_id: str | None = None
    error_kind: str | None = None
    error_type: str | None = None
    error_message: str | None = None
    expires_in_seconds: float | None = None
    reason: str | None = None
    message: str | None = None
