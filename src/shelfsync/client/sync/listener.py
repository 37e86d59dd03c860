"""Listener correlating stream notifications with local subscriptions.

This module provides:
- Listener: Tracks which subscriptions are registered on the stream and
  emits lifecycle events for them

The stream confirms subscription requests asynchronously and only by
(apiKey, topic); it has no notion of local subscription ids. The Listener
keeps, per (key, topic), a FIFO queue of registrations waiting for
confirmation. Each confirmed topic resolves the oldest waiting entry.

Events:
    ADDED    handler(registration)
    UPDATED  handler(registration, version)
    ERROR    handler(registration | None, reason)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shelfsync.client.sync.types import (
    ListenerEvent,
    NotRegisteredError,
    Registration,
    SubscribeError,
)

if TYPE_CHECKING:
    from shelfsync.client.stream import StreamClient
    from shelfsync.client.subscription import Subscription

logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    registration: Registration
    future: asyncio.Future[Registration]


class Listener:
    """Registers subscriptions on the stream and dispatches topic updates.

    Usage:
        stream = StreamClient(config)
        listener = Listener(stream)
        listener.on(ListenerEvent.UPDATED, handle_update)

        stream.start()
        await stream.wait_connected()

        registration = await listener.add(subscription)
        ...
        await listener.remove(subscription)
    """

    def __init__(self, stream: StreamClient) -> None:
        """Initialize the listener and hook it into the stream's callbacks.

        Args:
            stream: Stream client delivering confirmations and updates.
        """
        self.stream = stream

        self.pending: dict[tuple[str | None, str], deque[_Pending]] = {}
        self.active: list[Registration] = []
        self._removing: set[str] = set()

        self._handlers: dict[ListenerEvent, list[Callable[..., Any]]] = {
            event: [] for event in ListenerEvent
        }

        stream.set_callbacks(
            on_subscriptions_created=self.subscriptions_created,
            on_topic_updated=self.topic_updated,
            on_error=self.error,
        )

    def on(self, event: ListenerEvent, handler: Callable[..., Any]) -> Listener:
        """Register an event handler."""
        self._handlers[ListenerEvent(event)].append(handler)
        return self

    def emit(self, event: ListenerEvent, *args: Any) -> None:
        """Call all handlers of an event; handler errors are logged."""
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception as e:
                logger.error("%s handler failed: %s", event.value, e, exc_info=True)

    def registered(self, subscription: Subscription) -> Registration | None:
        """Get the active registration of a subscription."""
        for registration in self.active:
            if registration.id == subscription.id:
                return registration
        return None

    async def add(self, subscription: Subscription) -> Registration:
        """Register a subscription's topic on the stream.

        Resolves once the stream confirms the topic.

        Raises:
            SubscribeError: If the stream rejects the topic.
            StreamError: If the request could not be sent.
        """
        if subscription.id is None:
            raise ValueError("subscription has no id")

        registration = Registration(
            id=subscription.id,
            key=subscription.key or None,
            path=subscription.topic,
        )

        identity = (registration.key, registration.path)
        future: asyncio.Future[Registration] = asyncio.get_running_loop().create_future()
        entry = _Pending(registration, future)

        # Queued before sending so a fast confirmation finds it
        self.pending.setdefault(identity, deque()).append(entry)

        data: dict[str, Any] = {"topics": [registration.path]}
        if registration.key:
            data["apiKey"] = registration.key

        logger.debug("[%s] subscribing to %s...", registration.id, registration.path)

        try:
            await self.stream.subscribe(data)
        except Exception:
            self._discard(identity, entry)
            raise

        return await future

    async def remove(self, subscription: Subscription) -> Registration:
        """Unregister a subscription's topic from the stream.

        Raises:
            NotRegisteredError: If the subscription is not active or is
                already being removed.
            StreamError: If the request could not be sent.
        """
        registration = self.registered(subscription)
        if registration is None or registration.id in self._removing:
            raise NotRegisteredError(f"subscription {subscription.id} is not registered")

        data: dict[str, Any] = {"topic": registration.path}
        if registration.key:
            data["apiKey"] = registration.key

        logger.debug("[%s] unsubscribing from %s...", registration.id, registration.path)

        self._removing.add(registration.id)
        try:
            await self.stream.unsubscribe(data)
        finally:
            self._removing.discard(registration.id)

        self.active.remove(registration)
        return registration

    # === Stream callbacks ===

    def subscriptions_created(
        self,
        subscriptions: list[dict[str, Any]],
        errors: list[dict[str, Any]],
    ) -> None:
        """Resolve pending registrations confirmed or rejected by the stream."""
        for confirmed in subscriptions:
            key = confirmed.get("apiKey") or None
            for topic in confirmed.get("topics") or []:
                entry = self._next(key, topic)
                if entry is None:
                    logger.debug("Confirmation for unknown topic %s", topic)
                    continue

                self.active.append(entry.registration)
                if not entry.future.done():
                    entry.future.set_result(entry.registration)

                logger.info("[%s] listening for %s", entry.registration.id, topic)
                self.emit(ListenerEvent.ADDED, entry.registration)

        for failure in errors:
            key = failure.get("apiKey") or None
            topic = failure.get("topic")
            reason = failure.get("error")

            entry = self._next(key, topic) if topic else None
            if entry is None:
                logger.warning("Subscription error for unknown topic %s: %s", topic, reason)
                continue

            logger.warning("[%s] failed to subscribe: %s", entry.registration.id, reason)
            if not entry.future.done():
                entry.future.set_exception(SubscribeError(entry.registration, reason))
            self.emit(ListenerEvent.ERROR, entry.registration, reason)

    def topic_updated(self, data: dict[str, Any]) -> None:
        """Emit UPDATED for every active registration watching the topic."""
        key = data.get("apiKey") or None
        topic = data.get("topic", "")
        version = data.get("version")

        for registration in list(self.active):
            if registration.matches(key, topic):
                self.emit(ListenerEvent.UPDATED, registration, version)

    def error(self, error: BaseException) -> None:
        """Forward a stream-level error."""
        self.emit(ListenerEvent.ERROR, None, error)

    def _next(self, key: str | None, topic: str) -> _Pending | None:
        queue = self.pending.get((key, topic))
        if not queue:
            return None
        entry = queue.popleft()
        if not queue:
            del self.pending[(key, topic)]
        return entry

    def _discard(self, identity: tuple[str | None, str], entry: _Pending) -> None:
        queue = self.pending.get(identity)
        if queue is None:
            return
        try:
            queue.remove(entry)
        except ValueError:
            return
        if not queue:
            del self.pending[identity]
