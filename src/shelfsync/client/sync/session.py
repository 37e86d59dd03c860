"""Synchronization session for a single subscription.

This module provides:
- Session: State and logic of one synchronization run

A session first fetches the remote version manifest of its subscription,
diffs it against the versions known locally and then downloads all new or
changed items. The remote library may change while a session is in
flight; every paginated or batched response is therefore checked against
the version observed first, and a mismatch interrupts the session. An
interrupted session is resumed after a short delay, keeping everything it
has downloaded so far.

Flow:
    execute() ─► update() ─► diff()
              └► download() ─► fetch() ─► receive() ─► children()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from shelfsync.client.sync.types import SyncInterruptedError, UnexpectedResponseError
from shelfsync.core.config import SyncConfig

if TYPE_CHECKING:
    from shelfsync.client.api import APIClient, Message
    from shelfsync.client.subscription import Subscription
    from shelfsync.client.sync.synchronizer import Synchronizer

logger = logging.getLogger(__name__)


def get_parent(item: dict[str, Any]) -> str | None:
    """Return the key of an item's parent, if any."""
    data = item.get("data") or {}
    return data.get("parentItem") or None


def has_children(item: dict[str, Any]) -> bool:
    """Check whether the API reports child items for an item."""
    meta = item.get("meta") or {}
    return bool(meta.get("numChildren"))


class Session:
    """A synchronization session for one subscription.

    Sessions are created by a Synchronizer and used for a single run.
    Plugins receive the finished session and read its results.

    Attributes:
        subscription: The subscription being synchronized.
        synchronizer: The Synchronizer that created this session.
        version: Remote library version (None until fetched).
        versions: Remote item versions fetched during this run.
        created: Keys of items created remotely.
        updated: Keys of items updated remotely.
        deleted: Keys of items deleted remotely.
        items: Downloaded items indexed by key.
        attachments: Downloaded attachment files indexed by item key.
    """

    def __init__(self, subscription: Subscription, synchronizer: Synchronizer) -> None:
        self.subscription = subscription
        self.synchronizer = synchronizer

        self.version: int | None = None
        self.versions: dict[str, int] = {}

        self.created: list[str] = []
        self.updated: list[str] = []
        self.deleted: list[str] = []

        self.items: dict[str, dict[str, Any]] = {}
        self.attachments: dict[str, Message] = {}

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id!r}, version={self.version}, "
            f"created={len(self.created)}, updated={len(self.updated)}, "
            f"deleted={len(self.deleted)})"
        )

    @property
    def id(self) -> str | None:
        """The session id is the id of its subscription."""
        return self.subscription.id

    @property
    def modified(self) -> bool:
        """Whether new data is available remotely.

        Only meaningful after update() has run.
        """
        return self.version is not None and self.version > self.subscription.version

    @property
    def client(self) -> APIClient:
        """The API client of this session's synchronizer."""
        return self.synchronizer.client

    @property
    def config(self) -> SyncConfig:
        """Synchronization settings."""
        return self.synchronizer.config

    # === Requests ===

    async def get(
        self,
        path: str | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Message:
        """Request a path with the subscription's parameters and credentials.

        Plugins should use this to talk to the API so their requests
        carry the same credentials as the session itself.

        Args:
            path: Path to request (defaults to the subscription's path).
            params: Additional query parameters.
            headers: Additional HTTP headers.
        """
        s = self.subscription
        return await self.client.get(
            path or s.path or "",
            params={**s.params, **(params or {})},
            headers={**s.headers, **(headers or {})},
        )

    async def fetch(self, batch: list[str]) -> Message:
        """Fetch a batch of items by key."""
        return await self.get(
            f"{self.subscription.library}/items",
            {"format": "json", "include": "data", "itemKey": ",".join(batch)},
        )

    async def children(self, item: dict[str, Any]) -> Message:
        """Fetch the child items of an item."""
        return await self.get(
            f"{self.subscription.library}/items/{item['key']}/children",
            {"format": "json", "include": "data"},
        )

    async def attachment(self, item: dict[str, Any]) -> Message:
        """Download an item's attachment file, caching it for this session."""
        key = item["key"]
        if key not in self.attachments:
            self.debug("downloading attachment of %s", key)
            self.attachments[key] = await self.get(
                f"{self.subscription.library}/items/{key}/file"
            )
        return self.attachments[key]

    # === Synchronization ===

    async def execute(self, skip: bool = False, retry: int | None = None) -> Session:
        """Run the session: fetch versions and download changed items.

        If the remote library changes while the session runs, the session
        pauses and resumes up to `retry` times; items downloaded before the
        interruption are kept.

        Args:
            skip: Only fetch versions; do not download items.
            retry: Maximum number of resumptions (defaults to config.retries).

        Raises:
            SyncInterruptedError: If the session is still interrupted after
                all retries.
        """
        if retry is None:
            retry = self.config.retries

        while True:
            try:
                await self.update()
                if not skip:
                    await self.download()
                return self

            except SyncInterruptedError as error:
                if not retry:
                    raise

                retry -= 1
                self.debug(
                    "synchronization interrupted, resuming in %.1fs (%d retries left)...",
                    error.resume,
                    retry,
                )
                await asyncio.sleep(error.resume)

    async def update(self) -> Session:
        """Fetch the subscription's current item versions.

        Large libraries need several requests; each following page must
        report the same library version as the first one.

        Raises:
            SyncInterruptedError: If a version mismatch is detected.
            UnexpectedResponseError: If the API returns something other than JSON.
        """
        s = self.subscription
        self.version = None

        self.debug("requesting %s...", s.path)

        message = await self.get(s.path, {"limit": self.config.page_limit, "format": "versions"})

        if message.unmodified:
            self.created.clear()
            self.updated.clear()
            self.deleted.clear()
            self.debug("not modified")
            return self

        expect_json(message)

        self.debug("new version detected: %s (was %d)", message.version, s.version)

        self.version = message.version
        self.versions = dict(message.data or {})

        if message.multi:
            while not message.done:
                message = await message.next()

                self.check(message.version)
                expect_json(message)

                self.versions.update(message.data or {})

        self.diff()

        self.debug(
            "versions received: %d created, %d updated, %d deleted",
            len(self.created),
            len(self.updated),
            len(self.deleted),
        )
        return self

    def diff(
        self,
        versions: dict[str, int] | None = None,
        earlier: dict[str, int] | None = None,
    ) -> Session:
        """Compare item versions and recompute created, updated and deleted.

        The three key lists are reset on every call.

        Args:
            versions: The new versions (defaults to this session's versions).
            earlier: The old versions (defaults to the subscription's versions).
        """
        if versions is None:
            versions = self.versions
        if earlier is None:
            earlier = self.subscription.versions

        self.created.clear()
        self.updated.clear()
        self.deleted.clear()

        for key, version in versions.items():
            if key not in earlier:
                self.created.append(key)
            elif version > earlier[key]:
                self.updated.append(key)

        self.deleted.extend(key for key in earlier if key not in versions)

        return self

    def check(self, version: int | None) -> bool:
        """Verify that a response belongs to the version of this session.

        Returns:
            True if no version was observed yet or the versions match.

        Raises:
            SyncInterruptedError: If the versions do not match.
        """
        if self.version is None or self.version == version:
            return True

        self.debug("version mismatch detected: %s (was %d)!", version, self.version)

        raise SyncInterruptedError(
            "version mismatch detected",
            resume=self.config.resume_delay,
            expected=self.version,
            actual=version,
        )

    async def download(self, keys: list[str] | None = None) -> Session:
        """Download new and changed items into items.

        Items already downloaded are skipped unless their version changed,
        so an interrupted download can be resumed cheaply. Parents of
        downloaded items are downloaded as well.

        Args:
            keys: Keys to download (defaults to updated + created).

        Raises:
            SyncInterruptedError: If a version mismatch is detected.
        """
        worklist = list(self.updated + self.created if keys is None else keys)

        if not worklist:
            return self

        scheduled = set(worklist)
        batch_size = self.config.batch_size
        cursor = 0

        self.debug("%d items to download", len(worklist))

        # The worklist grows while we iterate: receive() appends
        # missing parent items so they are fetched in a later batch.
        while cursor < len(worklist):
            batch: list[str] = []

            while cursor < len(worklist) and len(batch) < batch_size:
                key = worklist[cursor]
                cursor += 1

                item = self.items.get(key)
                if item is None or item.get("version") != self.versions.get(key):
                    batch.append(key)

            if not batch:
                continue

            self.debug("requesting %d items...", len(batch))
            await self.receive(await self.fetch(batch), worklist, scheduled)

        self.debug("downloaded %d item(s)", len(worklist))
        return self

    async def receive(
        self,
        message: Message,
        worklist: list[str] | None = None,
        scheduled: set[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Store a batch of received items.

        A version mismatch aborts the download; items stored by earlier
        batches are kept.

        Args:
            message: The API response.
            worklist: Download worklist to append missing parents to.
            scheduled: Keys already in the worklist.

        Returns:
            The received items.
        """
        self.check(message.version)
        expect_json(message)

        items: list[dict[str, Any]] = list(message.data or [])

        self.debug("%d items received...", len(items))

        for item in items:
            self.items[item["key"]] = item

            parent = get_parent(item)
            if worklist is not None and scheduled is not None and parent:
                if parent not in scheduled:
                    self.debug("requesting additional parent item %s...", parent)
                    scheduled.add(parent)
                    worklist.append(parent)

            # Children are fetched right away so that they share the
            # version of their parent.
            if has_children(item):
                self.debug("fetching children of %s", item["key"])
                item["children"] = await self.receive(await self.children(item))

        return items

    def debug(self, message: str, *args: Any) -> None:
        """Log a debug message prefixed with the session id."""
        logger.debug("[%s] " + message, self.id, *args)


def expect_json(message: Message) -> None:
    """Raise unless a response carries JSON data."""
    if message.type != "json":
        raise UnexpectedResponseError("json", message.type)
