"""Synchronization of subscribed libraries.

Architecture:
    StreamClient → Listener ─updated─► Synchronizer → Session → Plugins

Components:
- **Session**: One synchronization run (version diff + item download)
- **Synchronizer**: Runs sessions and dispatches them to plugins
- **Listener**: Correlates stream notifications with subscriptions
"""

from shelfsync.client.sync.listener import Listener
from shelfsync.client.sync.session import Session, get_parent, has_children
from shelfsync.client.sync.synchronizer import Synchronizer
from shelfsync.client.sync.types import (
    DEFAULT_RESUME_DELAY,
    ListenerError,
    ListenerEvent,
    NotRegisteredError,
    Registration,
    SubscribeError,
    SyncError,
    SyncInterruptedError,
    UnexpectedResponseError,
)

__all__ = [
    "DEFAULT_RESUME_DELAY",
    "Listener",
    "ListenerError",
    "ListenerEvent",
    "NotRegisteredError",
    "Registration",
    "Session",
    "SubscribeError",
    "SyncError",
    "SyncInterruptedError",
    "Synchronizer",
    "UnexpectedResponseError",
    "get_parent",
    "has_children",
]
