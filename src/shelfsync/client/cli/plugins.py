"""Plugin commands for the ShelfSync CLI.

Commands:
- plugins: List available plugins
"""

from __future__ import annotations

import click


@click.command()
def plugins() -> None:
    """List available plugins."""
    from shelfsync.plugins import registry

    registry.discover()

    for name, plugin in sorted(registry.available.items()):
        click.echo(f"{name:<12} {plugin.summary}")
