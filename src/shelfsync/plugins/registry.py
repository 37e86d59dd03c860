"""Plugin registry.

Plugins are registered by name, either explicitly via register() or
discovered from installed packages through the `shelfsync.plugins`
entry-point group.
"""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Any

from shelfsync.plugins.base import Plugin

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "shelfsync.plugins"


class PluginError(Exception):
    """Base exception for plugin registry errors."""


class UnknownPluginError(PluginError):
    """No plugin with the given name is registered."""


class PluginRegistry:
    """Manages available plugins.

    Usage:
        registry = PluginRegistry()
        registry.register(MirrorPlugin)

        plugin = registry.use("mirror", {"path": "/srv/mirror"})
        await plugin.process(session)
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._plugins: dict[str, type[Plugin]] = {}

    @property
    def available(self) -> dict[str, type[Plugin]]:
        """Registered plugin classes indexed by name."""
        return dict(self._plugins)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    def register(self, plugin: type[Plugin]) -> type[Plugin]:
        """Register a plugin class under its name.

        Can be used as a class decorator.

        Raises:
            PluginError: If the plugin has no name.
        """
        if not plugin.name:
            raise PluginError(f"plugin {plugin.__name__} has no name")

        if plugin.name in self._plugins and self._plugins[plugin.name] is not plugin:
            logger.warning("Replacing plugin %s", plugin.name)

        self._plugins[plugin.name] = plugin
        logger.debug("Registered plugin %s", plugin.name)
        return plugin

    def unregister(self, name: str) -> bool:
        """Remove a plugin; returns False if it was not registered."""
        return self._plugins.pop(name, None) is not None

    def use(self, name: str, options: dict[str, Any] | None = None) -> Plugin:
        """Create a plugin instance.

        Raises:
            UnknownPluginError: If no such plugin is registered.
        """
        try:
            plugin = self._plugins[name]
        except KeyError:
            raise UnknownPluginError(f"plugin not available: {name}") from None
        return plugin(options)

    def discover(self) -> int:
        """Register plugins advertised by installed packages.

        Returns:
            Number of plugins registered.
        """
        loaded = 0
        for ep in importlib.metadata.entry_points(group=ENTRY_POINT_GROUP):
            try:
                plugin = ep.load()
            except Exception as e:
                logger.warning("Failed to load plugin %s: %s", ep.name, e)
                logger.debug("Full traceback:", exc_info=True)
                continue

            if not (isinstance(plugin, type) and issubclass(plugin, Plugin)):
                logger.warning("Entry point %s is not a plugin class", ep.name)
                continue

            self.register(plugin)
            loaded += 1

        logger.debug("Discovered %d plugin(s)", loaded)
        return loaded
