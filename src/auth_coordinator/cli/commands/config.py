"""Configuration commands for auth-coordinator CLI.

Commands:
    config init - Create a configuration file
    config show - Display current configuration
    config path - Show config file path
"""

from __future__ import annotations

import json

import click

from auth_coordinator.cli.helpers import get_context_config_path, load_config
from auth_coordinator.config import AppConfig, LoggingConfig, OIDCConfig


@click.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command()
@click.option("--log-dir", default=None, help="Base directory for system and audit logs")
@click.option("--token-endpoint", default=None, help="OAuth token endpoint")
@click.option("--userinfo-endpoint", default=None, help="OIDC userinfo endpoint")
@click.option("--client-id", default=None, help="OAuth client ID")
@click.option("--force", is_flag=True, help="Overwrite an existing configuration")
@click.pass_context
def init(
    ctx: click.Context,
    log_dir: str | None,
    token_endpoint: str | None,
    userinfo_endpoint: str | None,
    client_id: str | None,
    force: bool,
) -> None:
    """Create a configuration file with defaults.

    The OAuth section is written only when all three OAuth options are given.
    """
    config_path = get_context_config_path(ctx)
    if config_path.exists() and not force:
        raise click.ClickException(f"Configuration already exists at {config_path}\nUse --force to overwrite.")

    oidc_options = (token_endpoint, userinfo_endpoint, client_id)
    if any(oidc_options) and not all(oidc_options):
        raise click.ClickException("--token-endpoint, --userinfo-endpoint and --client-id must be given together.")

    oidc = None
    if token_endpoint and userinfo_endpoint and client_id:
        oidc = OIDCConfig(
            token_endpoint=token_endpoint,
            userinfo_endpoint=userinfo_endpoint,
            client_id=client_id,
        )

    app_config = AppConfig(oidc=oidc, logging=LoggingConfig(log_dir=log_dir))
    app_config.save_to_file(config_path)
    click.echo(click.style(f"Configuration written to {config_path}", fg="green"))


@config.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Display current configuration as JSON."""
    app_config = load_config(ctx)
    click.echo(json.dumps(app_config.model_dump(), indent=2))


@config.command()
@click.pass_context
def path(ctx: click.Context) -> None:
    """Show config file path."""
    click.echo(str(get_context_config_path(ctx)))
