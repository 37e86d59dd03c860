"""Tests for the plugin registry and plugin base classes."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from shelfsync.plugins import (
    ENTRY_POINT_GROUP,
    Callback,
    CallbackPlugin,
    Plugin,
    PluginError,
    PluginRegistry,
    UnknownPluginError,
)


class Echo(Plugin):
    name = "echo"
    summary = "Echoes"

    async def process(self, session: Any) -> None:
        session.seen.append(self.options)


class TestPluginRegistry:
    """Tests for PluginRegistry."""

    def test_register_and_use(self) -> None:
        """Should create configured plugin instances."""
        registry = PluginRegistry()
        registry.register(Echo)

        plugin = registry.use("echo", {"a": 1})

        assert isinstance(plugin, Echo)
        assert plugin.options == {"a": 1}
        assert "echo" in registry
        assert registry.available == {"echo": Echo}

    def test_register_as_decorator(self) -> None:
        """Should return the class so register works as decorator."""
        registry = PluginRegistry()

        @registry.register
        class Decorated(Plugin):
            name = "decorated"

            async def process(self, session: Any) -> None:
                pass

        assert registry.available["decorated"] is Decorated

    def test_register_without_name(self) -> None:
        """Should reject plugins without name."""

        class Nameless(Plugin):
            async def process(self, session: Any) -> None:
                pass

        with pytest.raises(PluginError):
            PluginRegistry().register(Nameless)

    def test_use_unknown(self) -> None:
        """Should raise UnknownPluginError."""
        with pytest.raises(UnknownPluginError):
            PluginRegistry().use("nope")

    def test_unregister(self) -> None:
        """Should remove registered plugins."""
        registry = PluginRegistry()
        registry.register(Echo)

        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False
        assert "echo" not in registry

    def test_discover(self) -> None:
        """Should register plugin classes advertised by entry points."""
        good = MagicMock()
        good.name = "echo"
        good.load.return_value = Echo
        bad = MagicMock()
        bad.name = "bad"
        bad.load.return_value = object()
        broken = MagicMock()
        broken.name = "broken"
        broken.load.side_effect = ImportError("missing dependency")

        registry = PluginRegistry()
        with patch(
            "importlib.metadata.entry_points",
            return_value=[good, bad, broken],
        ) as entry_points:
            loaded = registry.discover()

        entry_points.assert_called_once_with(group=ENTRY_POINT_GROUP)
        assert loaded == 1
        assert list(registry.available) == ["echo"]


class TestCallbackPlugin:
    """Tests for callback-style plugins."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Should complete when the callback is called without error."""

        class Later(CallbackPlugin):
            name = "later"

            def run(self, session: Any, callback: Callback) -> None:
                asyncio.get_running_loop().call_soon(callback, None)

        await Later().process(MagicMock())

    @pytest.mark.asyncio
    async def test_failure(self) -> None:
        """Should raise the error passed to the callback."""

        class Failing(CallbackPlugin):
            name = "failing"

            def run(self, session: Any, callback: Callback) -> None:
                callback(RuntimeError("failed"))

        with pytest.raises(RuntimeError, match="failed"):
            await Failing().process(MagicMock())

    @pytest.mark.asyncio
    async def test_repeated_callback_ignored(self) -> None:
        """Should only honour the first completion."""

        class Twice(CallbackPlugin):
            name = "twice"

            def run(self, session: Any, callback: Callback) -> None:
                callback(None)
                callback(RuntimeError("late"))

        await Twice().process(MagicMock())
