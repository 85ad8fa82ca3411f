"""Main CLI entry point for auth-coordinator.

Defines the CLI group and registers all subcommands.

Commands:
    status  - Show credential and cached authentication status
    cache   - Auth state cache commands
        show  - Display the cached authentication state
        clear - Clear the cached authentication state
    config  - Configuration management commands
        init - Create a configuration file
        show - Display current configuration
        path - Show config file path

Usage:
    auth-coordinator -h, --help      Show help message
    auth-coordinator -v, --version   Show version
    auth-coordinator status          Show authentication status
    auth-coordinator cache show      Display cached auth state
    auth-coordinator cache clear     Clear cached auth state
    auth-coordinator config init     Create configuration
    auth-coordinator config show     Display configuration
    auth-coordinator config path     Show config file path

Subcommand help:
    auth-coordinator COMMAND -h      Show help for a specific command
"""

import sys
from pathlib import Path

import click

from auth_coordinator import __version__
from auth_coordinator.utils.config import get_config_path

from .commands.cache import cache
from .commands.config import config
from .commands.status import status


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: platform config directory)",
)
@click.pass_context
def cli(ctx: click.Context, version: bool, config_path: Path | None) -> None:
    """auth-coordinator: authentication state and credential refresh diagnostics."""
    if version:
        click.echo(f"auth-coordinator {__version__}")
        sys.exit(0)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path or get_config_path()
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(status)
cli.add_command(cache)
cli.add_command(config)


def main() -> None:
    """CLI entry point."""
    cli()
