"""Custom DNS record handler."""

from __future__ import annotations

import logging
from typing import Any

from hostpanel.db import EntityType
from hostpanel.modules_common import ActionRunner, EngineContext, RowLoader
from hostpanel.status import Result

log = logging.getLogger(__name__)


class CustomDnsModule:
    """One resource record living in the zone of its domain or alias."""

    entity_type = EntityType.CUSTOM_DNS
    load_sql = """
        SELECT r.*, r.domain_dns_id AS id, r.domain_dns_status AS status,
               d.domain_name, al.alias_name
        FROM domain_dns r
        JOIN domain d ON d.domain_id = r.domain_id
        LEFT JOIN domain_aliases al ON al.alias_id = r.alias_id
        WHERE r.domain_dns_id = ?
    """

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _build_data(self) -> dict[str, Any]:
        r = self.loaded.row
        return {
            "STATUS": self.loaded.status,
            "RECORD_ID": r["domain_dns_id"],
            "ZONE_NAME": r["alias_name"] or r["domain_name"],
            "RECORD_NAME": r["domain_dns"],
            "RECORD_CLASS": r["domain_class"],
            "RECORD_TYPE": r["domain_type"],
            "RECORD_DATA": r["domain_text"],
            "OWNED_BY": r["owned_by"],
        }

    def add(self) -> Result:
        return self.runner.dispatch(self, "add")

    def disable(self) -> Result:
        return self.runner.dispatch(self, "delete")

    def restore(self) -> Result:
        return self.runner.dispatch(self, "add")

    def delete(self) -> Result:
        return self.runner.dispatch(self, "delete")
