"""Tests for the Synchronizer and plugin dispatch."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from shelfsync.client.api import Message
from shelfsync.client.state import SubscriptionNotFoundError, SubscriptionStore
from shelfsync.client.subscription import Subscription
from shelfsync.client.sync import Session, Synchronizer
from shelfsync.core.config import SyncConfig
from shelfsync.plugins import Plugin, PluginRegistry

URL = "/users/1/items/top"
ITEMS = "/users/1/items"


@pytest.fixture
def calls() -> list[tuple[Any, ...]]:
    """Record plugin invocations."""
    return []


@pytest.fixture
def registry(calls: list[tuple[Any, ...]]) -> PluginRegistry:
    """Create a registry with recording and failing plugins."""
    registry = PluginRegistry()

    class Recorder(Plugin):
        name = "recorder"

        async def process(self, session: Session) -> None:
            calls.append((self.options.get("tag"), session.id, list(session.created)))

    class Failing(Plugin):
        name = "failing"

        async def process(self, session: Session) -> None:
            calls.append(("failing", session.id))
            raise RuntimeError("boom")

    registry.register(Recorder)
    registry.register(Failing)
    return registry


def subscribe(store: SubscriptionStore, *plugins: dict[str, Any], **data: Any) -> Subscription:
    """Save a new subscription with the given plugin descriptors."""
    return store.save(Subscription({"url": URL, "plugins": list(plugins), **data}))


class TestSynchronize:
    """Tests for Synchronizer.synchronize()."""

    @pytest.mark.asyncio
    async def test_downloads_and_dispatches(  # type: ignore[no-untyped-def]
        self, client, store, registry, calls, helpers: SimpleNamespace
    ) -> None:
        """Should run plugins and persist the new version state."""
        subscription = subscribe(store, {"name": "recorder", "options": {"tag": "one"}})
        client.route(URL, Message(data={"A": 7}, version=7))
        client.serve(ITEMS, helpers.serve_items({"A": helpers.item("A", 7)}, 7))

        synchronizer = Synchronizer(client, SyncConfig(), registry=registry)
        session = await synchronizer.synchronize(subscription)

        assert session.items["A"]["key"] == "A"
        assert calls == [("one", subscription.id, ["A"])]

        saved = store.load(subscription.id)
        assert saved.version == 7
        assert saved.versions == {"A": 7}
        assert saved.timestamp

    @pytest.mark.asyncio
    async def test_plugins_run_in_order(self, client, store, registry, calls) -> None:  # type: ignore[no-untyped-def]
        """Should run plugins sequentially in configured order."""
        subscription = subscribe(
            store,
            {"name": "recorder", "options": {"tag": "first"}},
            {"name": "recorder", "options": {"tag": "second"}},
        )
        client.route(URL, Message(data={}, version=2))

        await Synchronizer(client, registry=registry).synchronize(subscription)

        assert [tag for tag, *_ in calls] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_skip(self, client, store, registry, calls) -> None:  # type: ignore[no-untyped-def]
        """Should only update versions when skipping."""
        subscription = subscribe(store, {"name": "recorder"})
        client.route(URL, Message(data={"A": 3}, version=3))

        session = await Synchronizer(client, registry=registry).update(subscription)

        assert session.items == {}
        assert calls == []
        assert store.load(subscription.id).versions == {"A": 3}

    @pytest.mark.asyncio
    async def test_not_modified(self, client, store, registry, calls) -> None:  # type: ignore[no-untyped-def]
        """Should neither dispatch nor save version state on 304."""
        subscription = subscribe(store, {"name": "recorder"}, version=4, versions={"A": 4})
        client.route(URL, Message(type="none", unmodified=True))

        session = await Synchronizer(client, registry=registry).synchronize(subscription)

        assert session.modified is False
        assert calls == []
        assert store.load(subscription.id).version == 4
        assert subscription.timestamp

    @pytest.mark.asyncio
    async def test_failing_plugin_aborts_pipeline(  # type: ignore[no-untyped-def]
        self, client, store, registry, calls
    ) -> None:
        """Should stop at the first failing plugin and still save versions."""
        subscription = subscribe(store, {"name": "failing"}, {"name": "recorder"})
        client.route(URL, Message(data={}, version=5))

        with pytest.raises(RuntimeError, match="boom"):
            await Synchronizer(client, registry=registry).synchronize(subscription)

        assert calls == [("failing", subscription.id)]
        assert store.load(subscription.id).version == 5

    @pytest.mark.asyncio
    async def test_unknown_plugin_skipped(self, client, store, registry, calls) -> None:  # type: ignore[no-untyped-def]
        """Should skip plugins that are not registered."""
        subscription = subscribe(store, {"name": "missing"}, {"name": "recorder"})
        client.route(URL, Message(data={}, version=1))

        await Synchronizer(client, registry=registry).synchronize(subscription)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_removed_during_run(self, client, store, registry) -> None:  # type: ignore[no-untyped-def]
        """Should fail and not bring back a subscription removed mid-run."""
        subscription = subscribe(store)
        manifest = Message(data={"A": 2}, version=2)

        def remove_then_answer(params: dict[str, Any]) -> Message:
            store.destroy(store.load(subscription.id))
            return manifest

        client.serve(URL, remove_then_answer)

        with pytest.raises(SubscriptionNotFoundError):
            await Synchronizer(client, registry=registry).update(subscription)

        assert not store.exists(subscription.id)

    @pytest.mark.asyncio
    async def test_unbound_subscription(self, client, registry) -> None:  # type: ignore[no-untyped-def]
        """Should update an unsaved subscription in memory."""
        subscription = Subscription({"id": "local", "url": URL})
        client.route(URL, Message(data={"A": 1}, version=1))

        await Synchronizer(client, registry=registry).update(subscription)

        assert subscription.version == 1
        assert subscription.versions == {"A": 1}


class TestDefaults:
    """Tests for Synchronizer defaults."""

    def test_uses_builtin_registry(self, client) -> None:  # type: ignore[no-untyped-def]
        """Should fall back to the built-in plugin registry."""
        synchronizer = Synchronizer(client)

        assert "logger" in synchronizer.registry
        assert "mirror" in synchronizer.registry
        assert synchronizer.config.batch_size == 50
