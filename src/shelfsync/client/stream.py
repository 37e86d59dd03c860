"""WebSocket client for the streaming notification API.

This module provides:
- StreamClient: Persistent connection to the stream endpoint
- StreamError: Raised when a stream request cannot be sent

Architecture:
    Stream endpoint ─push─► StreamClient ─callbacks─► Listener

The stream multiplexes many topics over one connection. Topic
subscriptions are requested with createSubscriptions and confirmed
asynchronously by a subscriptionsCreated message; afterwards a
topicUpdated message arrives whenever a subscribed library changes.

Messages handled:
    {"event": "connected", "retry": 10000}
    {"event": "subscriptionsCreated", "subscriptions": [...], "errors": [...]}
    {"event": "subscriptionsDeleted"}
    {"event": "topicUpdated", "apiKey": "...", "topic": "/users/1", "version": 42}
    {"event": "topicAdded" | "topicRemoved", "apiKey": "...", "topic": "..."}
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import WebSocketException

from shelfsync.core.config import APIConfig

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

SubscriptionsCreatedCallback = Callable[[list[dict[str, Any]], list[dict[str, Any]]], None]
TopicUpdatedCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[BaseException], None]


class StreamError(Exception):
    """A request could not be sent over the stream."""


class StreamClient:
    """WebSocket client with automatic reconnection.

    Usage:
        stream = StreamClient(APIConfig())
        stream.set_callbacks(
            on_subscriptions_created=handle_created,
            on_topic_updated=handle_update,
            on_error=handle_error,
        )
        stream.start()
        await stream.wait_connected()

        await stream.subscribe({"apiKey": key, "topics": ["/users/1"]})

        await stream.stop()
    """

    def __init__(self, config: APIConfig | None = None, reconnect_delay: float = 5.0) -> None:
        """Initialize the stream client.

        Args:
            config: Configuration holding the stream URL and TLS settings.
            reconnect_delay: Delay between reconnection attempts; the
                server may override it in its connected message.
        """
        self._config = config or APIConfig()
        self._reconnect_delay = reconnect_delay

        # Connection state
        self._ws: ClientConnection | None = None
        self._connected = asyncio.Event()
        self._should_run = False
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

        # Callbacks
        self._on_subscriptions_created: SubscriptionsCreatedCallback | None = None
        self._on_topic_updated: TopicUpdatedCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._on_connected: Callable[[], None] | None = None

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._connected.is_set()

    @property
    def url(self) -> str:
        """Get the WebSocket URL."""
        return self._config.stream_url

    def set_callbacks(
        self,
        on_subscriptions_created: SubscriptionsCreatedCallback | None = None,
        on_topic_updated: TopicUpdatedCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_connected: Callable[[], None] | None = None,
    ) -> None:
        """Set message callbacks.

        Args:
            on_subscriptions_created: Called with (subscriptions, errors).
            on_topic_updated: Called with the topicUpdated message.
            on_error: Called with connection errors.
            on_connected: Called whenever a connection is established.
        """
        self._on_subscriptions_created = on_subscriptions_created
        self._on_topic_updated = on_topic_updated
        self._on_error = on_error
        self._on_connected = on_connected

    def start(self) -> None:
        """Start the connection loop as a task of the running event loop."""
        if self._task and not self._task.done():
            logger.warning("StreamClient already running")
            return

        self._should_run = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._connection_loop(), name="StreamClient"
        )
        logger.info("StreamClient started")

    async def stop(self) -> None:
        """Stop the connection loop and close the connection."""
        self._should_run = False

        if self._stop_event:
            self._stop_event.set()

        await self._close_connection()

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        logger.info("StreamClient stopped")

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until the connection is established.

        Raises:
            TimeoutError: If not connected within timeout seconds.
        """
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def subscribe(self, data: dict[str, Any]) -> None:
        """Request topic subscriptions.

        Args:
            data: {"apiKey": ..., "topics": [...]} (apiKey optional).

        Raises:
            StreamError: If the request could not be sent.
        """
        await self._send({"action": "createSubscriptions", "subscriptions": [data]})

    async def unsubscribe(self, data: dict[str, Any]) -> None:
        """Cancel a topic subscription.

        Args:
            data: {"apiKey": ..., "topic": ...}.

        Raises:
            StreamError: If the request could not be sent.
        """
        await self._send({"action": "deleteSubscriptions", "subscriptions": [data]})

    async def _send(self, message: dict[str, Any]) -> None:
        if not self.connected or self._ws is None:
            raise StreamError("not connected")
        try:
            await self._ws.send(json.dumps(message))
        except WebSocketException as e:
            raise StreamError(f"failed to send {message['action']}: {e}") from e
        logger.debug("Sent %s", message["action"])

    async def _connection_loop(self) -> None:
        """Main connection loop with automatic reconnection."""
        was_connected = False

        while self._should_run:
            try:
                await self._connect()
                was_connected = True
                await self._listen_for_messages()

            except WebSocketException as e:
                if was_connected:
                    logger.warning("StreamClient disconnected: %s", e)
                logger.debug("WebSocket error: %s", e)
                self._emit_error(e)
            except (ConnectionRefusedError, OSError) as e:
                if was_connected:
                    logger.warning("StreamClient connection lost")
                logger.debug("Connection error: %s", e)
                self._emit_error(e)
            except Exception as e:
                logger.warning("StreamClient error: %s", e)
                logger.debug("Full traceback:", exc_info=True)
                self._emit_error(e)

            self._connected.clear()

            if not self._should_run:
                break

            logger.info("StreamClient reconnecting in %.0fs...", self._reconnect_delay)
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),  # type: ignore[union-attr]
                    timeout=self._reconnect_delay,
                )
                break
            except TimeoutError:
                pass

    async def _connect(self) -> None:
        """Establish WebSocket connection."""
        ssl_context: ssl.SSLContext | None = None
        if self.url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ws = await websockets.connect(
            self.url,
            ssl=ssl_context,
            open_timeout=self._config.timeout,
            close_timeout=5,
        )
        logger.info("StreamClient connected to %s", self.url)

    async def _listen_for_messages(self) -> None:
        """Listen for incoming messages."""
        while self._should_run and self._ws:
            try:
                message = await self._ws.recv()
            except websockets.ConnectionClosed:
                logger.info("Connection closed by server")
                break

            if isinstance(message, bytes):
                message = message.decode("utf-8")
            self._handle_message(message)

    def _handle_message(self, message: str) -> None:
        """Dispatch an incoming message to the registered callbacks.

        Args:
            message: Raw message string.
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid message received: %s", message[:100])
            return

        if not isinstance(data, dict):
            logger.warning("Invalid message received: %s", message[:100])
            return

        event = data.get("event")

        if event == "connected":
            retry = data.get("retry")
            if isinstance(retry, (int, float)) and retry > 0:
                self._reconnect_delay = retry / 1000
            self._connected.set()
            if self._on_connected:
                self._on_connected()

        elif event == "subscriptionsCreated":
            if self._on_subscriptions_created:
                self._on_subscriptions_created(
                    data.get("subscriptions") or [], data.get("errors") or []
                )

        elif event == "topicUpdated":
            logger.debug("Topic %s updated to version %s", data.get("topic"), data.get("version"))
            if self._on_topic_updated:
                self._on_topic_updated(data)

        elif event in ("subscriptionsDeleted", "topicAdded", "topicRemoved"):
            logger.info("Received %s: %s", event, data.get("topic", ""))

        else:
            logger.debug("Ignoring message: %s", message[:100])

    def _emit_error(self, error: BaseException) -> None:
        if self._on_error:
            self._on_error(error)

    async def _close_connection(self) -> None:
        """Close the WebSocket connection."""
        if self._ws:
            with contextlib.suppress(WebSocketException):
                await self._ws.close()
            self._ws = None
        self._connected.clear()
