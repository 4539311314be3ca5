"""
PluginRegistry — keyed lookup of every data-source plugin.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from plugins.base import BasePlugin
from plugins.errors import PluginNotFound
from plugins.fitbit import FitbitPlugin

logger = logging.getLogger(__name__)


def builtin_plugins() -> List[BasePlugin]:
    """All known plugins — add new ones here."""
    return [
        FitbitPlugin(),
    ]


class PluginRegistry:
    """Process-wide singleton mapping plugin id → plugin."""

    _instance: Optional["PluginRegistry"] = None

    def __new__(cls) -> "PluginRegistry":
        if cls._instance is None:
            inst = super().__new__(cls)
            inst._plugins: Dict[str, BasePlugin] = {}
            cls._instance = inst
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (tests)."""
        cls._instance = None

    def register(self, plugin: BasePlugin) -> None:
        """Add a plugin; an existing plugin with the same id is replaced."""
        if plugin.id in self._plugins:
            logger.info("Plugin %s re-registered, replacing previous instance", plugin.id)
        self._plugins[plugin.id] = plugin

    def get(self, plugin_id: str) -> Optional[BasePlugin]:
        return self._plugins.get(plugin_id)

    def require(self, plugin_id: str) -> BasePlugin:
        plugin = self._plugins.get(plugin_id)
        if plugin is None:
            raise PluginNotFound(plugin_id)
        return plugin

    def list_plugins(self) -> List[Dict[str, object]]:
        return [p.describe() for p in self._plugins.values()]

    def plugin_ids(self) -> List[str]:
        return list(self._plugins.keys())


def initialize_plugins(registry: Optional[PluginRegistry] = None) -> PluginRegistry:
    """Register every configured built-in plugin."""
    registry = registry or PluginRegistry()
    for plugin in builtin_plugins():
        if plugin.is_configured():
            registry.register(plugin)
            logger.info("Plugin registered: %s (%s)", plugin.name, plugin.id)
        else:
            logger.warning(
                "Plugin %s skipped — not configured (missing client_id/secret)",
                plugin.id,
            )
    return registry
