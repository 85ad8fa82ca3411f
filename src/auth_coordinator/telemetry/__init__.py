"""Structured logging: system log and authentication audit log."""
