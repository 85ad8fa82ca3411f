"""Status command for auth-coordinator CLI.

Reads the credential file and the auth state cache directly; no identity
provider calls are made.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import click

from auth_coordinator.cli.helpers import format_duration, load_config
from auth_coordinator.config import AppConfig
from auth_coordinator.coordination.persistence import FileAuthStateCache
from auth_coordinator.models import CredentialRecord
from auth_coordinator.security.credential_store import FileCredentialStore
from auth_coordinator.utils.config import get_cache_path, get_credential_path


def _collect_status(config: AppConfig) -> dict[str, Any]:
    store = FileCredentialStore(get_credential_path(config))
    cache = FileAuthStateCache(get_cache_path(config), config.persistence.cache_expiry_seconds)
    now = datetime.now(timezone.utc)

    record: CredentialRecord | None = store.get_credential()
    time_until_expiry = record.seconds_until_expiry(now) if record else None
    proactive = config.monitor.proactive_refresh_threshold_seconds
    critical = config.monitor.critical_operation_threshold_seconds

    cached = cache.get_cached_auth_state(allow_stale=True)
    return {
        "credential": {
            "path": str(store.path),
            "present": record is not None,
            "has_refresh_token": bool(record and record.refresh_token),
            "expires_at": record.expires_at.isoformat() if record else None,
            "time_until_expiry": time_until_expiry,
            "expired": time_until_expiry is None or time_until_expiry <= 0,
            "needs_proactive_refresh": time_until_expiry is not None and 0 < time_until_expiry <= proactive,
            "critical_operations_allowed": time_until_expiry is not None and time_until_expiry > critical,
        },
        "cached_state": cached.model_dump(mode="json") if cached else None,
    }


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show credential and cached authentication status."""
    config = load_config(ctx)
    info = _collect_status(config)

    if as_json:
        click.echo(json.dumps(info, indent=2))
        return

    credential = info["credential"]
    click.echo(click.style("Credential", fg="cyan", bold=True))
    click.echo(f"  Location: {credential['path']}")

    if not credential["present"]:
        click.echo(click.style("  Status: Not authenticated", fg="yellow"))
    elif credential["expired"]:
        click.echo(click.style("  Status: Expired", fg="red"))
        click.echo(f"  Expired: {format_duration(credential['time_until_expiry'])}")
    else:
        click.echo(click.style("  Status: Valid", fg="green", bold=True))
        click.echo(f"  Expires in: {format_duration(credential['time_until_expiry'])}")
        if credential["needs_proactive_refresh"]:
            click.echo(click.style("  Within proactive refresh window", fg="yellow"))
        if not credential["critical_operations_allowed"]:
            click.echo(click.style("  Critical operations blocked until refresh", fg="red"))

    if credential["present"]:
        click.echo(f"  Has refresh token: {'Yes' if credential['has_refresh_token'] else 'No'}")
    click.echo()

    cached = info["cached_state"]
    click.echo(click.style("Cached auth state", fg="cyan", bold=True))
    if cached is None:
        click.echo("  None")
        return
    click.echo(f"  Authenticated: {'Yes' if cached['is_authenticated'] else 'No'}")
    if cached["user_id"]:
        click.echo(f"  User: {cached['user_id']}")
    click.echo(f"  Source: {cached['source']}")
    click.echo(f"  Cached at: {cached['cached_at']}")
    if cached["error"]:
        click.echo(f"  Last error: {cached['error']['kind']} - {cached['error']['message']}")
