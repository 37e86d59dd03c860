"""Subscription model.

A subscription describes one remote library location that is mirrored
locally: the URL to watch, the API key used to access it, the last
synchronized versions and the plugins that process new data.

Subscriptions are persisted by SubscriptionStore (see state.py); a
subscription loaded from or saved to a store stays bound to it so that
update() can persist new version state directly.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlencode, urlsplit

if TYPE_CHECKING:
    from shelfsync.client.state import SubscriptionStore

logger = logging.getLogger(__name__)

LIBRARY_PATTERN = re.compile(r"^/?(?:users|groups)/\d+(?:/publications)?")
TOPIC_PATTERN = re.compile(r"^/?(?:users|groups)/\d+")
USER_PATTERN = re.compile(r"^/?users/(\d+)")

KEYS = ("id", "url", "key", "version", "versions", "plugins", "timestamp")


def _to_version(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class Subscription:
    """A mirrored remote library location.

    Attributes:
        id: Unique id (None until identified by a store).
        path: Path part of the subscribed URL.
        params: Query parameters of the subscribed URL.
        key: Optional API key.
        versions: Last known item versions (item key -> version).
        plugins: Ordered plugin descriptors ({"name": ..., "options": ...}).
        timestamp: ISO timestamp of the last synchronization attempt.
    """

    def __init__(self, data: dict[str, Any] | list[Any] | None = None) -> None:
        self.id: str | None = None
        self.path: str | None = None
        self.params: dict[str, str] = {}
        self.key: str | None = None
        self._version = 0
        self.versions: dict[str, int] = {}
        self.plugins: list[dict[str, Any]] = []
        self.timestamp: str | int = 0
        self._store: SubscriptionStore | None = None

        if isinstance(data, (list, tuple)):
            data = dict(zip(KEYS, data, strict=False))

        for name, value in (data or {}).items():
            if name in ("path", "params") or name in KEYS:
                setattr(self, name, value)
            else:
                raise TypeError(f"unknown subscription field: {name}")

    def __repr__(self) -> str:
        return f"Subscription(id={self.id!r}, url={self.url!r}, version={self.version})"

    @property
    def version(self) -> int:
        """Last synchronized library version (always an int)."""
        return self._version

    @version.setter
    def version(self, value: Any) -> None:
        self._version = _to_version(value)

    @property
    def url(self) -> str:
        """The subscribed URL, composed of path and params."""
        if not self.path:
            return ""
        if not self.params:
            return self.path
        return f"{self.path}?{urlencode(self.params)}"

    @url.setter
    def url(self, value: str | None) -> None:
        if not value:
            self.path = None
            self.params = {}
            return
        parts = urlsplit(value)
        self.path = parts.path
        self.params = dict(parse_qsl(parts.query, keep_blank_values=True))

    @property
    def library(self) -> str:
        """The library part of the subscribed path (e.g. /users/123)."""
        match = LIBRARY_PATTERN.match(self.path or "")
        if not match:
            return self.path or ""
        return match.group(0)

    @property
    def topic(self) -> str:
        """The stream topic carrying update notifications for this library.

        Topics name the user or group only; a publications library is
        announced on the topic of its user.
        """
        match = TOPIC_PATTERN.match(self.path or "")
        topic = match.group(0) if match else self.library
        return topic if topic.startswith("/") else f"/{topic}"

    @property
    def key_path(self) -> str | None:
        """API path of this subscription's key, used to invalidate it."""
        match = USER_PATTERN.match(self.path or "")
        if not self.key or not match:
            return None
        return f"/users/{match.group(1)}/keys/{self.key}"

    @property
    def headers(self) -> dict[str, str]:
        """HTTP headers required to access the subscribed URL."""
        headers: dict[str, str] = {}
        if self.key:
            headers["Authorization"] = f"Bearer {self.key}"
        if self.version:
            headers["If-Modified-Since-Version"] = str(self.version)
        return headers

    @property
    def json(self) -> dict[str, Any]:
        """JSON-serializable representation."""
        return {
            "id": self.id,
            "url": self.url,
            "key": self.key,
            "version": self.version,
            "versions": dict(self.versions),
            "plugins": list(self.plugins),
            "timestamp": self.timestamp,
        }

    @property
    def values(self) -> list[Any]:
        """Field values in KEYS order."""
        return [getattr(self, name) for name in KEYS]

    def bind(self, store: SubscriptionStore) -> Subscription:
        """Bind this subscription to the store that persists it."""
        self._store = store
        return self

    def unbind(self) -> Subscription:
        """Detach this subscription from its store."""
        self._store = None
        return self

    def touch(self) -> Subscription:
        """Record a synchronization attempt."""
        self.timestamp = datetime.now(UTC).isoformat()
        return self

    def reset(self) -> Subscription:
        """Forget all version state; the next sync downloads everything."""
        self.version = 0
        self.versions = {}
        return self

    def update(self, version: int, versions: dict[str, int]) -> Subscription:
        """Record a newly synchronized version state and persist it.

        Args:
            version: The new library version.
            versions: The new item versions.

        Raises:
            SubscriptionNotFoundError: If the subscription was removed from
                its store in the meantime.
        """
        self.version = version
        self.versions = dict(versions)

        if self._store is not None:
            self._store.persist(self)
        else:
            logger.debug("[%s] not bound to a store, skipping save", self.id)

        return self

    def lookup(self, plugin: str, key: str) -> str | None:
        """Look up a value a plugin remembered for an item key."""
        if self._store is None:
            return None
        return self._store.lookup(self._namespace(plugin), key)

    def remember(self, plugin: str, key: str, value: str) -> None:
        """Remember a value (e.g. a remote id) for an item key on behalf of a plugin."""
        if self._store is None:
            raise RuntimeError("subscription is not bound to a store")
        self._store.remember(self._namespace(plugin), key, value)

    def _namespace(self, plugin: str) -> str:
        return f"{plugin}:{self.library}"
