"""Plugin row handler: drives a plugin through its lifecycle methods."""

from __future__ import annotations

import json
import logging
from typing import Any

from hostpanel.db import EntityType
from hostpanel.modules_common import EngineContext, RowLoader
from hostpanel.plugins import Plugin, as_result
from hostpanel.status import TOADD, TOCHANGE, Result

log = logging.getLogger(__name__)


class PluginModule:
    entity_type = EntityType.PLUGIN
    load_sql = (
        "SELECT *, plugin_id AS id, plugin_status AS status FROM plugin WHERE plugin_id = ?"
    )

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _build_data(self) -> dict[str, Any]:
        return {
            "STATUS": self.loaded.status,
            "PLUGIN_NAME": self.loaded.row["plugin_name"],
            "PLUGIN_SETTINGS": json.loads(self.loaded.row["plugin_config"] or "{}"),
        }

    def _plugin(self) -> Plugin:
        if self.ctx.plugins is None:
            raise RuntimeError("Plugin support is not configured")
        data = self.loaded.get("load")
        return self.ctx.plugins.load(data["PLUGIN_NAME"], data["PLUGIN_SETTINGS"])

    def add(self) -> Result:
        plugin = self._plugin()
        if self.loaded.status == TOADD:
            return as_result(plugin.install()).then(lambda: as_result(plugin.enable()))
        if self.loaded.status == TOCHANGE:
            return as_result(plugin.update())
        return as_result(plugin.enable())

    def disable(self) -> Result:
        return as_result(self._plugin().disable())

    def restore(self) -> Result:
        return self.add()

    def delete(self) -> Result:
        plugin = self._plugin()
        return as_result(plugin.disable()).then(lambda: as_result(plugin.uninstall()))
