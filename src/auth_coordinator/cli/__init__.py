"""Diagnostic command line interface."""

from auth_coordinator.cli.main import cli, main

__all__ = ["cli", "main"]
