"""Auth state cache commands for auth-coordinator CLI.

Commands:
    cache show  - Display the cached authentication state
    cache clear - Clear the cached authentication state
"""

from __future__ import annotations

import json

import click

from auth_coordinator.cli.helpers import load_config
from auth_coordinator.coordination.persistence import FileAuthStateCache
from auth_coordinator.utils.config import get_cache_path


def _open_cache(ctx: click.Context) -> FileAuthStateCache:
    config = load_config(ctx)
    return FileAuthStateCache(get_cache_path(config), config.persistence.cache_expiry_seconds)


@click.group()
def cache() -> None:
    """Auth state cache commands."""
    pass


@cache.command()
@click.option("--fresh-only", is_flag=True, help="Ignore entries older than the cache expiry")
@click.pass_context
def show(ctx: click.Context, fresh_only: bool) -> None:
    """Display the cached authentication state as JSON."""
    state_cache = _open_cache(ctx)
    cached = state_cache.get_cached_auth_state(allow_stale=not fresh_only)
    if cached is None:
        click.echo(click.style("No cached authentication state", fg="yellow"))
        return
    click.echo(json.dumps(cached.model_dump(mode="json"), indent=2))


@cache.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    """Clear the cached authentication state."""
    state_cache = _open_cache(ctx)
    if not yes and not click.confirm(f"Clear cached auth state at {state_cache.path}?"):
        click.echo("Aborted.")
        return
    state_cache.clear_cached_state("cli")
    click.echo(click.style("Cached authentication state cleared", fg="green"))
