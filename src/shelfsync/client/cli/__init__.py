"""Command-line interface for ShelfSync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- add: Subscribe to a library URL
- list: List all subscriptions
- show: Show one subscription
- remove: Remove subscriptions
- reset: Forget the version state of subscriptions
- sync: Synchronize subscriptions once
- listen: Synchronize subscriptions whenever the stream reports updates
- plugins: List available plugins
"""

from __future__ import annotations

import click

from shelfsync.client.cli.config import (
    build_api_config,
    build_sync_config,
    get_config_dir,
    get_config_file,
    get_database_path,
    load_config,
    setup_logging,
)
from shelfsync.client.cli.plugins import plugins
from shelfsync.client.cli.subscriptions import (
    add,
    list_subscriptions,
    remove,
    reset,
    show,
)
from shelfsync.client.cli.sync import listen, sync


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(package_name="shelfsync")
def cli(verbose: bool) -> None:
    """ShelfSync - Mirror remote reference libraries through plugins."""
    setup_logging(verbose)


# Subscription commands
cli.add_command(add)
cli.add_command(list_subscriptions)
cli.add_command(show)
cli.add_command(remove)
cli.add_command(reset)

# Sync commands
cli.add_command(sync)
cli.add_command(listen)

# Plugin commands
cli.add_command(plugins)


__all__ = [
    # Main entry point
    "cli",
    # Config utilities
    "build_api_config",
    "build_sync_config",
    "get_config_dir",
    "get_config_file",
    "get_database_path",
    "load_config",
    "setup_logging",
]
