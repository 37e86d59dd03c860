"""Synchronizer orchestrating synchronization sessions.

This module provides:
- Synchronizer: Runs sessions for subscriptions and dispatches the
  results to the subscription's plugins

Flow:
    synchronize(sub) ─► Session.execute() ─► dispatch() ─► sub.update()

Plugins run strictly one after the other, in the order configured on the
subscription. The first failing plugin aborts the pipeline.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shelfsync.client.sync.session import Session
from shelfsync.core.config import SyncConfig
from shelfsync.plugins import registry as default_registry

if TYPE_CHECKING:
    from shelfsync.client.api import APIClient
    from shelfsync.client.subscription import Subscription
    from shelfsync.plugins import PluginRegistry

logger = logging.getLogger(__name__)


class Synchronizer:
    """Synchronizes subscriptions with the remote API.

    Usage:
        async with APIClient(APIConfig()) as client:
            synchronizer = Synchronizer(client)

            # Full run: download changes and run plugins
            session = await synchronizer.synchronize(subscription)

            # Only fetch versions
            session = await synchronizer.update(subscription)
    """

    def __init__(
        self,
        client: APIClient,
        config: SyncConfig | None = None,
        registry: PluginRegistry | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            client: API client used by all sessions.
            config: Synchronization settings.
            registry: Plugin registry (defaults to the built-in registry).
        """
        self.client = client
        self.config = config or SyncConfig()
        self.registry = registry if registry is not None else default_registry

    async def synchronize(self, subscription: Subscription, skip: bool = False) -> Session:
        """Synchronize a subscription.

        If new data is found, the session is dispatched to the plugins
        (unless skip is set) and the subscription's new version state is
        saved afterwards, even when a plugin fails.

        Args:
            subscription: The subscription to synchronize.
            skip: Only update versions; no downloads and no plugins.

        Returns:
            The finished session.
        """
        session = Session(subscription, self)

        logger.debug("[%s] processing subscription...", subscription.id)

        subscription.touch()

        await session.execute(skip, retry=self.config.retries)

        if session.modified:
            try:
                if not skip:
                    await self.dispatch(session)
            finally:
                subscription.update(version=session.version, versions=session.versions)

        return session

    async def update(self, subscription: Subscription) -> Session:
        """Update the subscription's versions without downloading items."""
        return await self.synchronize(subscription, skip=True)

    async def dispatch(self, session: Session) -> Synchronizer:
        """Run all plugins of the session's subscription, one at a time.

        Unknown plugins are skipped.

        Raises:
            Exception: The error of the first failing plugin.
        """
        logger.debug("[%s] dispatching sync session data to plugins...", session.id)

        for descriptor in session.subscription.plugins:
            name = descriptor.get("name", "")

            if name not in self.registry:
                logger.info("[%s] plugin %s not available, skipping...", session.id, name)
                continue

            logger.debug("[%s] processing data with %s plugin...", session.id, name)

            try:
                plugin = self.registry.use(name, descriptor.get("options") or {})
                await plugin.process(session)
            except Exception as e:
                logger.error(
                    "[%s] plugin %s failed: %s", session.id, name, e, exc_info=True
                )
                raise

        logger.debug("[%s] finished processing plugins", session.id)
        return self
