"""Subscription management commands for the ShelfSync CLI.

Commands:
- add: Subscribe to a library URL
- list: List all subscriptions
- show: Show one subscription
- remove: Remove subscriptions
- reset: Forget the version state of subscriptions
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click

from shelfsync.client.cli.config import build_api_config, get_database_path
from shelfsync.client.state import SubscriptionNotFoundError, SubscriptionStore
from shelfsync.client.subscription import Subscription


def open_store() -> SubscriptionStore:
    """Open the subscription database in the config directory."""
    db_path = get_database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return SubscriptionStore(db_path)


def parse_plugin_options(names: tuple[str, ...], options: tuple[str, ...]) -> list[dict[str, Any]]:
    """Build plugin descriptors from --plugin and --option values.

    Options have the form NAME.KEY=VALUE; values are decoded as JSON when
    possible (so `true` or `3` become bool and int) and kept as strings
    otherwise.

    Raises:
        click.BadParameter: If an option is malformed or names a plugin
            that was not given with --plugin.
    """
    plugins: dict[str, dict[str, Any]] = {name: {} for name in names}

    for option in options:
        target, sep, raw = option.partition("=")
        name, dot, key = target.partition(".")
        if not sep or not dot or not name or not key:
            raise click.BadParameter(f"expected NAME.KEY=VALUE, got {option!r}")
        if name not in plugins:
            raise click.BadParameter(f"option for unknown plugin {name!r}")
        try:
            value: Any = json.loads(raw)
        except ValueError:
            value = raw
        plugins[name][key] = value

    return [{"name": name, "options": opts} for name, opts in plugins.items()]


def describe(subscription: Subscription) -> str:
    """One-line summary of a subscription."""
    plugins = ", ".join(p.get("name", "?") for p in subscription.plugins) or "-"
    return (
        f"{subscription.id}  {subscription.url}  "
        f"version={subscription.version}  plugins={plugins}"
    )


@click.command()
@click.argument("url")
@click.option("--key", "-k", default=None, help="API key used to access the library.")
@click.option(
    "--plugin", "-p", "plugin_names", multiple=True, help="Plugin to run on new data."
)
@click.option(
    "--option", "-o", "plugin_options", multiple=True, help="Plugin option NAME.KEY=VALUE."
)
def add(
    url: str,
    key: str | None,
    plugin_names: tuple[str, ...],
    plugin_options: tuple[str, ...],
) -> None:
    """Subscribe to a library URL (e.g. /users/123/items)."""
    plugins = parse_plugin_options(plugin_names, plugin_options)

    subscription = Subscription({"url": url, "key": key, "plugins": plugins})
    if not subscription.path:
        click.echo("Error: URL has no path.", err=True)
        sys.exit(1)

    store = open_store()
    try:
        store.save(subscription)
    finally:
        store.close()

    click.echo(f"Subscription {subscription.id} added for {subscription.url}")


@click.command("list")
def list_subscriptions() -> None:
    """List all subscriptions."""
    store = open_store()
    try:
        subscriptions = store.all()
    finally:
        store.close()

    if not subscriptions:
        click.echo("No subscriptions.")
        return

    for subscription in subscriptions:
        click.echo(describe(subscription))


@click.command()
@click.argument("subscription_id")
def show(subscription_id: str) -> None:
    """Show a subscription as JSON."""
    store = open_store()
    try:
        subscription = store.load(subscription_id)
    except SubscriptionNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        store.close()

    click.echo(json.dumps(subscription.json, indent=2))


@click.command()
@click.argument("query")
@click.option(
    "--invalidate-key", is_flag=True, help="Also delete the API key on the server."
)
def remove(query: str, invalidate_key: bool) -> None:
    """Remove subscriptions matching QUERY (comma-separated id prefixes)."""
    store = open_store()
    try:
        subscriptions = store.find(query)
        if not subscriptions:
            click.echo(f"No subscriptions match {query!r}.")
            return

        if invalidate_key:
            asyncio.run(_invalidate_keys(subscriptions))

        for subscription in subscriptions:
            store.destroy(subscription)
            click.echo(f"Subscription {subscription.id} removed")
    finally:
        store.close()


async def _invalidate_keys(subscriptions: list[Subscription]) -> None:
    from shelfsync.client.api import APIClient, APIError

    async with APIClient(build_api_config()) as client:
        for subscription in subscriptions:
            path = subscription.key_path
            if path is None:
                continue
            try:
                await client.delete(path, headers={"Authorization": f"Bearer {subscription.key}"})
            except APIError as e:
                click.echo(f"Warning: could not invalidate key of {subscription.id}: {e}", err=True)
            else:
                click.echo(f"Key of {subscription.id} invalidated")


@click.command()
@click.argument("query")
def reset(query: str) -> None:
    """Forget the version state of subscriptions matching QUERY.

    The next sync downloads the whole library again.
    """
    store = open_store()
    try:
        subscriptions = store.find(query)
        for subscription in subscriptions:
            store.save(subscription.reset())
            click.echo(f"Subscription {subscription.id} reset")
    finally:
        store.close()

    if not subscriptions:
        click.echo(f"No subscriptions match {query!r}.")
