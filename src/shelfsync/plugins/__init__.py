"""Synchronization plugins.

Plugins process finished synchronization sessions. They are looked up by
name in a PluginRegistry; the module-level `registry` holds the built-in
plugins and is used by default.

Built-in plugins:
- logger: Logs a summary of synchronized changes
- mirror: Mirrors items to a local directory
"""

from shelfsync.plugins.base import Callback, CallbackPlugin, Plugin
from shelfsync.plugins.logger import LoggerPlugin
from shelfsync.plugins.mirror import MirrorPlugin
from shelfsync.plugins.registry import (
    ENTRY_POINT_GROUP,
    PluginError,
    PluginRegistry,
    UnknownPluginError,
)

registry = PluginRegistry()
registry.register(LoggerPlugin)
registry.register(MirrorPlugin)

__all__ = [
    "ENTRY_POINT_GROUP",
    "Callback",
    "CallbackPlugin",
    "LoggerPlugin",
    "MirrorPlugin",
    "Plugin",
    "PluginError",
    "PluginRegistry",
    "UnknownPluginError",
    "registry",
]
