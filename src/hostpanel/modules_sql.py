"""Customer SQL databases and their users."""

from __future__ import annotations

import logging
from typing import Any

from hostpanel.db import EntityType
from hostpanel.modules_common import ActionRunner, EngineContext, RowLoader
from hostpanel.modules_web import pending_dependents
from hostpanel.status import Result

log = logging.getLogger(__name__)


class SqlDatabaseModule:
    entity_type = EntityType.SQL_DATABASE
    load_sql = """
        SELECT db.*, db.sqld_id AS id, d.domain_name
        FROM sql_database db JOIN domain d ON d.domain_id = db.domain_id
        WHERE db.sqld_id = ?
    """

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _build_data(self) -> dict[str, Any]:
        return {
            "STATUS": self.loaded.status,
            "DATABASE_ID": self.loaded.row["sqld_id"],
            "DATABASE_NAME": self.loaded.row["sqld_name"],
            "DOMAIN_NAME": self.loaded.row["domain_name"],
        }

    def add(self) -> Result:
        return self.runner.dispatch(self, "add")

    def disable(self) -> Result:
        return Result.ok()

    def restore(self) -> Result:
        return self.runner.dispatch(self, "add")

    def delete(self) -> Result:
        remaining = pending_dependents(
            self.ctx.conn,
            [
                ("SQL user(s)", "SELECT COUNT(*) FROM sql_user WHERE sqld_id = ?",
                 (self.loaded.entity_id,)),
            ],
        )
        if remaining:
            return Result.fail(
                f"Cannot drop database {self.loaded.row['sqld_name']}: "
                f"{', '.join(remaining)} still attached"
            )
        return self.runner.dispatch(self, "delete")


class SqlUserModule:
    entity_type = EntityType.SQL_USER
    load_sql = """
        SELECT u.*, u.sqlu_id AS id, db.sqld_name
        FROM sql_user u JOIN sql_database db ON db.sqld_id = u.sqld_id
        WHERE u.sqlu_id = ?
    """

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _build_data(self) -> dict[str, Any]:
        return {
            "STATUS": self.loaded.status,
            "SQL_USER": self.loaded.row["sqlu_name"],
            "SQL_HOST": self.loaded.row["sqlu_host"],
            "PASSWORD_HASH": self.loaded.row["sqlu_pass"],
            "DATABASE_NAME": self.loaded.row["sqld_name"],
        }

    def add(self) -> Result:
        return self.runner.dispatch(self, "add")

    def disable(self) -> Result:
        return Result.ok()

    def restore(self) -> Result:
        return self.runner.dispatch(self, "add")

    def delete(self) -> Result:
        return self.runner.dispatch(self, "delete")
