"""Base classes for synchronization plugins.

This module provides:
- Plugin: Abstract base class for plugins processing sessions
- CallbackPlugin: Base class for plugins signalling completion via callback

Plugins receive finished synchronization sessions and do something with
the new data: mirror it to disk, push it to another service, log it.

Usage:
    class MyPlugin(Plugin):
        name = "my-plugin"
        summary = "Does something with new items"

        async def process(self, session: Session) -> None:
            for key in session.created:
                item = session.items[key]
                ...
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shelfsync.client.sync.session import Session

# Completion callback: called with None on success or the error on failure
Callback = Callable[[BaseException | None], None]


class Plugin(ABC):
    """Abstract base class for plugins.

    Subclasses set `name` and `summary` and implement process().
    """

    name: str = ""
    summary: str = ""

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        """Initialize the plugin.

        Args:
            options: Plugin options from the subscription's plugin descriptor.
        """
        self.options: dict[str, Any] = dict(options or {})

    def __repr__(self) -> str:
        return f"{type(self).__name__}(options={self.options!r})"

    @abstractmethod
    async def process(self, session: Session) -> None:
        """Process a finished synchronization session.

        Raises:
            Exception: Any error aborts the remaining plugin pipeline.
        """
        ...


class CallbackPlugin(Plugin):
    """Plugin that reports completion through a callback.

    Subclasses implement run() and call the callback exactly once, with
    None on success or with the error on failure. The callback may be
    called from run() directly or later from the event loop.
    """

    @abstractmethod
    def run(self, session: Session, callback: Callback) -> None:
        """Start processing the session."""
        ...

    async def process(self, session: Session) -> None:
        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()

        def callback(error: BaseException | None = None) -> None:
            if done.done():
                return
            if error is not None:
                done.set_exception(error)
            else:
                done.set_result(None)

        self.run(session, callback)
        await done
