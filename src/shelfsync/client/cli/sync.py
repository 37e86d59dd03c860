"""Synchronization commands for the ShelfSync CLI.

Commands:
- sync: Synchronize subscriptions once
- listen: Keep synchronizing subscriptions as the stream reports updates
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

import click

from shelfsync.client.cli.config import build_api_config, build_sync_config
from shelfsync.client.cli.subscriptions import open_store

if TYPE_CHECKING:
    from shelfsync.client.state import SubscriptionStore
    from shelfsync.client.subscription import Subscription
    from shelfsync.client.sync import Synchronizer

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs at most one synchronization per subscription at a time.

    A request arriving while a run for the same subscription is in
    progress is remembered, and one more run starts when the current one
    finishes, so no reported update is lost.
    """

    def __init__(self, run: Callable[[str], Coroutine[Any, Any, None]]) -> None:
        self._run = run
        self._running: dict[str, asyncio.Task[None]] = {}
        self._dirty: set[str] = set()

    def schedule(self, subscription_id: str) -> None:
        """Start a run, or queue one if a run is already in progress."""
        task = self._running.get(subscription_id)
        if task is not None and not task.done():
            logger.debug("[%s] synchronization running, queueing another run", subscription_id)
            self._dirty.add(subscription_id)
            return

        self._dirty.discard(subscription_id)
        task = asyncio.get_running_loop().create_task(self._run(subscription_id))
        task.add_done_callback(lambda done: self._finished(subscription_id, done))
        self._running[subscription_id] = task

    def cancel(self) -> None:
        """Cancel all runs and forget queued ones."""
        self._dirty.clear()
        for task in list(self._running.values()):
            task.cancel()

    def _finished(self, subscription_id: str, task: asyncio.Task[None]) -> None:
        if self._running.get(subscription_id) is task:
            del self._running[subscription_id]
        if subscription_id in self._dirty and not task.cancelled():
            self.schedule(subscription_id)


@click.command()
@click.argument("query", required=False)
@click.option("--skip", is_flag=True, help="Only update versions; do not download or run plugins.")
def sync(query: str | None, skip: bool) -> None:
    """Synchronize subscriptions matching QUERY (all by default)."""
    from shelfsync.plugins import registry

    registry.discover()

    store = open_store()
    try:
        subscriptions = store.find(query)
        if not subscriptions:
            click.echo("No subscriptions to synchronize.")
            return

        failed = asyncio.run(_synchronize_all(subscriptions, skip))
    finally:
        store.close()

    if failed:
        click.echo(f"{failed} subscription(s) failed to synchronize.", err=True)
        sys.exit(1)


async def _synchronize_all(subscriptions: list[Subscription], skip: bool) -> int:
    from shelfsync.client.api import APIClient
    from shelfsync.client.sync import Synchronizer

    failed = 0
    async with APIClient(build_api_config()) as client:
        synchronizer = Synchronizer(client, build_sync_config())

        for subscription in subscriptions:
            try:
                session = await synchronizer.synchronize(subscription, skip=skip)
            except Exception as e:
                failed += 1
                click.echo(f"  ✗ {subscription.id}: {e}", err=True)
                logger.debug("Full traceback:", exc_info=True)
                continue

            if session.modified:
                click.echo(
                    f"  ↓ {subscription.id}: version {session.version} "
                    f"({len(session.created)} created, {len(session.updated)} updated, "
                    f"{len(session.deleted)} deleted)"
                )
            else:
                click.echo(f"  = {subscription.id}: up to date")

    return failed


@click.command()
def listen() -> None:
    """Listen for library updates and synchronize as they arrive.

    Every subscription is registered on the stream and synchronized once
    at startup. Press Ctrl+C to stop.
    """
    from shelfsync.plugins import registry

    registry.discover()

    store = open_store()
    try:
        asyncio.run(_listen(store))
    except KeyboardInterrupt:
        click.echo("\nStopped.")
    finally:
        store.close()


async def _listen(store: SubscriptionStore) -> None:
    from shelfsync.client.api import APIClient
    from shelfsync.client.stream import StreamClient
    from shelfsync.client.sync import (
        Listener,
        ListenerEvent,
        Registration,
        SubscribeError,
        Synchronizer,
    )

    api_config = build_api_config()

    async with APIClient(api_config) as client:
        synchronizer = Synchronizer(client, build_sync_config())
        stream = StreamClient(api_config)
        listener = Listener(stream)

        scheduler = SyncScheduler(
            lambda subscription_id: _synchronize_one(store, synchronizer, subscription_id)
        )

        def on_updated(registration: Registration, version: Any) -> None:
            click.echo(f"Update for {registration.path} (version {version})")
            scheduler.schedule(registration.id)

        def on_error(registration: Registration | None, reason: Any) -> None:
            if registration is None:
                logger.warning("Stream error: %s", reason)
            else:
                click.echo(f"Error for {registration.id}: {reason}", err=True)

        listener.on(ListenerEvent.UPDATED, on_updated)
        listener.on(ListenerEvent.ERROR, on_error)

        click.echo(f"Connecting to {stream.url}...")
        stream.start()
        try:
            await stream.wait_connected(timeout=api_config.timeout)

            for subscription in store.all():
                try:
                    registration = await listener.add(subscription)
                except SubscribeError as e:
                    click.echo(f"  ✗ {subscription.id}: {e}", err=True)
                    continue
                click.echo(f"  Listening for {registration.path} ({subscription.id})")
                scheduler.schedule(registration.id)

            click.echo("\nWatching for updates... (Ctrl+C to stop)\n")
            await asyncio.Event().wait()
        finally:
            scheduler.cancel()
            await stream.stop()


async def _synchronize_one(
    store: SubscriptionStore, synchronizer: Synchronizer, subscription_id: str
) -> None:
    from shelfsync.client.state import SubscriptionNotFoundError

    try:
        subscription = store.load(subscription_id)
    except SubscriptionNotFoundError:
        logger.warning("[%s] subscription no longer exists", subscription_id)
        return

    try:
        session = await synchronizer.synchronize(subscription)
    except Exception as e:
        logger.error("[%s] synchronization failed: %s", subscription_id, e)
        logger.debug("Full traceback:", exc_info=True)
        return

    if session.modified:
        click.echo(
            f"  ↓ {subscription_id}: version {session.version} "
            f"({len(session.created)} created, {len(session.updated)} updated, "
            f"{len(session.deleted)} deleted)"
        )
