"""Shared helpers for CLI commands."""

from __future__ import annotations

from pathlib import Path

import click

from auth_coordinator.config import AppConfig


def get_context_config_path(ctx: click.Context) -> Path:
    """Config path selected with the top-level --config option."""
    return ctx.find_root().obj["config_path"]


def load_config(ctx: click.Context) -> AppConfig:
    """Load configuration from the selected path.

    Returns:
        AppConfig instance.

    Raises:
        click.ClickException: If config not found or invalid.
    """
    config_path = get_context_config_path(ctx)

    if not config_path.exists():
        raise click.ClickException(
            f"Configuration not found at {config_path}\n"
            "Run 'auth-coordinator config init' to create configuration."
        )

    try:
        return AppConfig.load_from_files(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(f"Failed to load configuration: {e}") from e


def format_duration(seconds: float) -> str:
    """Render a duration as seconds, minutes, hours or days."""
    magnitude = abs(seconds)
    if magnitude < 120:
        text = f"{magnitude:.0f} seconds"
    elif magnitude < 2 * 3600:
        text = f"{magnitude / 60:.1f} minutes"
    elif magnitude < 2 * 86400:
        text = f"{magnitude / 3600:.1f} hours"
    else:
        text = f"{magnitude / 86400:.1f} days"
    return f"{text} ago" if seconds < 0 else text
