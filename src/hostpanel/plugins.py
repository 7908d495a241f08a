"""Plugin discovery and lifecycle hooks.

Plugins are published under the ``hostpanel.plugins`` entry-point group.
The entry point resolves to a factory called as ``factory(config, settings)``
(usually a ``Plugin`` subclass).  Lifecycle methods return None or a
``Result``; raising is reported as a failure of the plugin row.

Installed plugins (row status ``ok``) may subscribe to handler events in
``register_listeners``, which the task processor calls at pass start.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Mapping
from importlib.metadata import entry_points
from typing import Any

from hostpanel.config import EngineConfig
from hostpanel.events import EventManager
from hostpanel.status import OK, Result

log = logging.getLogger(__name__)

PLUGIN_GROUP = "hostpanel.plugins"

PluginFactory = Callable[[EngineConfig, Mapping[str, Any]], "Plugin"]


class Plugin:
    """Base class with no-op lifecycle methods."""

    def __init__(self, config: EngineConfig, settings: Mapping[str, Any]) -> None:
        self.config = config
        self.settings = dict(settings)

    def install(self) -> Result | None:
        return None

    def update(self) -> Result | None:
        return None

    def enable(self) -> Result | None:
        return None

    def disable(self) -> Result | None:
        return None

    def uninstall(self) -> Result | None:
        return None

    def register_listeners(self, events: EventManager) -> None:
        return None


class PluginNotFound(LookupError):
    pass


def discover_plugins() -> dict[str, PluginFactory]:
    factories: dict[str, PluginFactory] = {}
    for ep in entry_points(group=PLUGIN_GROUP):
        factories[ep.name] = lambda config, settings, ep=ep: ep.load()(config, settings)
    return factories


def as_result(value: Result | None) -> Result:
    return Result.ok() if value is None else value


class PluginManager:
    def __init__(
        self, config: EngineConfig, factories: Mapping[str, PluginFactory] | None = None
    ) -> None:
        self.config = config
        self._factories = dict(factories) if factories is not None else discover_plugins()

    def names(self) -> list[str]:
        return sorted(self._factories)

    def load(self, name: str, settings: Mapping[str, Any]) -> Plugin:
        try:
            factory = self._factories[name]
        except KeyError:
            raise PluginNotFound(f"Plugin '{name}' is not installed") from None
        return factory(self.config, settings)

    def register_active(self, conn: sqlite3.Connection, events: EventManager) -> int:
        """Let every installed plugin subscribe to events.  Returns the count."""
        rows = conn.execute(
            "SELECT plugin_name, plugin_config FROM plugin WHERE plugin_status = ? "
            "ORDER BY plugin_id",
            (OK,),
        ).fetchall()
        registered = 0
        for row in rows:
            try:
                plugin = self.load(row["plugin_name"], json.loads(row["plugin_config"] or "{}"))
                plugin.register_listeners(events)
            except Exception:
                log.exception("Could not activate plugin %s", row["plugin_name"])
                continue
            registered += 1
        return registered
