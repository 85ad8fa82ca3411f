"""Pydantic models for audit log records."""

from auth_coordinator.telemetry.models.audit import AuthEvent

__all__ = ["AuthEvent"]
