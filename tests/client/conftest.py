"""Shared fixtures for client tests."""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from shelfsync.client.api import Message
from shelfsync.client.state import SubscriptionStore

Handler = Callable[[dict[str, Any]], Message]


class FakeClient:
    """Scripted stand-in for APIClient.

    Responses are either queued per path (used once, in order) or served
    by a handler receiving the request parameters.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any], dict[str, str]]] = []
        self._queued: dict[str, list[Message]] = {}
        self._handlers: dict[str, Handler] = {}

    def route(self, path: str, *messages: Message) -> None:
        self._queued.setdefault(path, []).extend(messages)

    def serve(self, path: str, handler: Handler) -> None:
        self._handlers[path] = handler

    def requests(self, path: str) -> list[dict[str, Any]]:
        """Parameters of all requests made to path."""
        return [params for p, params, _ in self.calls if p == path]

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Message:
        params = dict(params or {})
        self.calls.append((path, params, dict(headers or {})))
        queue = self._queued.get(path)
        if queue:
            return queue.pop(0)
        if path in self._handlers:
            return self._handlers[path](params)
        raise AssertionError(f"unexpected request: {path} {params}")


def paged(*pages: Message) -> Message:
    """Chain messages through next links; returns the first page."""
    for index, page in enumerate(pages[:-1]):
        following = pages[index + 1]

        async def follow(url: str, following: Message = following) -> Message:
            return following

        page.links["next"] = f"/page/{index + 2}"
        page.follow = follow
        following.links["prev"] = f"/page/{index + 1}"
    return pages[0]


def item(key: str, version: int, parent: str | None = None, children: int = 0) -> dict[str, Any]:
    """Build an item as returned by the API."""
    data: dict[str, Any] = {"key": key, "version": version, "title": f"Item {key}"}
    if parent:
        data["parentItem"] = parent
    return {"key": key, "version": version, "data": data, "meta": {"numChildren": children}}


def serve_items(items: dict[str, dict[str, Any]], version: int) -> Handler:
    """Handler answering itemKey batch requests from items."""

    def handler(params: dict[str, Any]) -> Message:
        keys = params["itemKey"].split(",")
        return Message(data=[items[k] for k in keys if k in items], version=version)

    return handler


@pytest.fixture
def client() -> FakeClient:
    """Create a scripted API client."""
    return FakeClient()


@pytest.fixture
def store(tmp_path: Path) -> Generator[SubscriptionStore, None, None]:
    """Create a subscription store in a temporary directory."""
    db = SubscriptionStore(tmp_path / "subscriptions.db")
    yield db
    db.close()


@pytest.fixture
def helpers() -> SimpleNamespace:
    """Expose response builders to tests."""
    return SimpleNamespace(paged=paged, item=item, serve_items=serve_items)
