"""Mail account handler (mailboxes, forwards and catch-alls)."""

from __future__ import annotations

import logging
from typing import Any

from hostpanel.db import EntityType
from hostpanel.modules_common import ActionRunner, EngineContext, RowLoader
from hostpanel.status import Result

log = logging.getLogger(__name__)


class MailModule:
    entity_type = EntityType.MAIL
    load_sql = """
        SELECT m.*, m.mail_id AS id, d.domain_name, d.domain_admin_id
        FROM mail_users m JOIN domain d ON d.domain_id = m.domain_id
        WHERE m.mail_id = ?
    """

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _build_data(self) -> dict[str, Any]:
        r = self.loaded.row
        address = r["mail_addr"]
        local_part, _, mail_domain = address.rpartition("@")
        catchall = "_catchall" in r["mail_type"]
        user = self.ctx.config.system_user(r["domain_admin_id"])
        return {
            "STATUS": self.loaded.status,
            "DOMAIN_ADMIN_ID": r["domain_admin_id"],
            "USER": user,
            "GROUP": user,
            "MAIL_ID": r["mail_id"],
            "MAIL_ADDR": address,
            # Catch-all rows keep their delivery targets in mail_acc.
            "MAIL_ACC": local_part if catchall else r["mail_acc"],
            "MAIL_CATCHALL": r["mail_acc"] if catchall else None,
            "DOMAIN_NAME": mail_domain or r["domain_name"],
            "MAIL_TYPE": r["mail_type"],
            "MAIL_PASS": r["mail_pass"],
            "MAIL_FORWARD": r["mail_forward"],
            "MAIL_QUOTA": r["quota"],
            "MAIL_AUTO_RESPOND": bool(r["mail_auto_respond"]),
            "MAIL_AUTO_RESPOND_TEXT": r["mail_auto_respond_text"] or "",
        }

    def add(self) -> Result:
        return self.runner.dispatch(self, "add")

    def disable(self) -> Result:
        return self.runner.dispatch(self, "disable")

    def restore(self) -> Result:
        return self.runner.dispatch(self, "add")

    def delete(self) -> Result:
        return self.runner.dispatch(self, "delete")
