"""
Tests for the plugin registry and built-in plugin discovery.
"""

import pytest
from unittest.mock import patch

from plugins.errors import PluginNotFound
from plugins.fitbit import FitbitPlugin
from plugins.registry import PluginRegistry, initialize_plugins
from tests.fakes import FakePlugin


class TestPluginRegistry:
    def test_register_and_get(self, registry):
        plugin = FakePlugin("oura")
        registry.register(plugin)

        assert registry.get("oura") is plugin
        assert registry.require("oura") is plugin
        assert registry.plugin_ids() == ["oura"]

    def test_unknown_plugin(self, registry):
        assert registry.get("missing") is None
        with pytest.raises(PluginNotFound):
            registry.require("missing")

    def test_last_registration_wins(self, registry):
        first, second = FakePlugin("oura"), FakePlugin("oura")
        registry.register(first)
        registry.register(second)

        assert registry.get("oura") is second
        assert len(registry.list_plugins()) == 1

    def test_singleton(self, registry):
        registry.register(FakePlugin("oura"))
        assert PluginRegistry().get("oura") is not None

    def test_list_plugins_includes_field_catalog(self, registry):
        registry.register(FakePlugin("oura"))
        [info] = registry.list_plugins()

        assert info["id"] == "oura"
        assert info["name"] == "Oura"
        assert info["fields"][0]["id"] == "steps"


class TestInitializePlugins:
    def test_skips_unconfigured_plugins(self, registry):
        with patch("plugins.registry.builtin_plugins", return_value=[FitbitPlugin(client_id="", client_secret="")]):
            initialize_plugins(registry)
        assert registry.get("fitbit") is None

    def test_registers_configured_plugins(self, registry):
        with patch("plugins.registry.builtin_plugins", return_value=[FitbitPlugin(client_id="id", client_secret="secret")]):
            initialize_plugins(registry)
        assert isinstance(registry.get("fitbit"), FitbitPlugin)
