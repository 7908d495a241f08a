"""Handlers for customer accounts and their FTP logins."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from hostpanel.db import EntityType
from hostpanel.modules_common import ActionRunner, EngineContext, RowLoader
from hostpanel.modules_web import pending_dependents
from hostpanel.services_system import resolve_account_ids
from hostpanel.status import TOCHANGEPWD, Result

log = logging.getLogger(__name__)


class UserModule:
    """Customer account: system user/group, home directory, panel credentials.

    ``tochangepwd`` pushes the new password hash to the collaborators
    (``change_password`` action), then repeats the ``add`` registration every
    collaborator performs; the system account itself is left alone.
    """

    entity_type = EntityType.USER
    load_sql = "SELECT *, admin_id AS id, admin_status AS status FROM admin WHERE admin_id = ?"

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _build_data(self) -> dict[str, Any]:
        row = self.loaded.row
        user = self.ctx.config.system_user(self.loaded.entity_id)
        return {
            "STATUS": self.loaded.status,
            "USERNAME": row["admin_name"],
            "USER": user,
            "GROUP": user,
            "HOME_DIR": self.ctx.config.user_web_dir / user,
            "PASSWORD_HASH": row["admin_pass"],
            "USER_SYS_UID": row["admin_sys_uid"],
            "USER_SYS_GID": row["admin_sys_gid"],
        }

    def _persist_account(self) -> Result:
        user = self.ctx.config.system_user(self.loaded.entity_id)
        try:
            uid, gid = resolve_account_ids(self.ctx.config, user, self.loaded.entity_id)
        except KeyError:
            return Result.fail(f"System account {user} was not created")
        conn = self.ctx.conn
        conn.execute(
            "UPDATE admin SET admin_sys_name = ?, admin_sys_uid = ?, admin_sys_gname = ?, "
            "admin_sys_gid = ? WHERE admin_id = ?",
            (user, uid, user, gid, self.loaded.entity_id),
        )
        conn.commit()
        self.loaded.update(
            admin_sys_name=user, admin_sys_uid=uid, admin_sys_gname=user, admin_sys_gid=gid
        )
        return Result.ok()

    def add(self) -> Result:
        if self.loaded.status == TOCHANGEPWD:
            return self.runner.dispatch(self, "change_password").then(
                lambda: self.runner.dispatch(self, "add")
            )
        return self.runner.dispatch(self, "add").then(self._persist_account)

    def disable(self) -> Result:
        return self.runner.dispatch(self, "disable")

    def restore(self) -> Result:
        return self.runner.dispatch(self, "restore")

    def delete(self) -> Result:
        remaining = pending_dependents(
            self.ctx.conn,
            [
                ("domain(s)", "SELECT COUNT(*) FROM domain WHERE domain_admin_id = ?",
                 (self.loaded.entity_id,)),
                ("FTP account(s)", "SELECT COUNT(*) FROM ftp_users WHERE admin_id = ?",
                 (self.loaded.entity_id,)),
            ],
        )
        if remaining:
            return Result.fail(
                f"Cannot delete user {self.loaded.row['admin_name']}: "
                f"{', '.join(remaining)} still attached"
            )
        return self.runner.dispatch(self, "delete")


class FtpUserModule:
    entity_type = EntityType.FTP_USER
    load_sql = """
        SELECT f.*, f.ftp_id AS id, a.admin_sys_uid, a.admin_sys_gid
        FROM ftp_users f JOIN admin a ON a.admin_id = f.admin_id
        WHERE f.ftp_id = ?
    """

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _build_data(self) -> dict[str, Any]:
        user = self.ctx.config.system_user(self.loaded.row["admin_id"])
        return {
            "STATUS": self.loaded.status,
            "FTP_USER": self.loaded.row["userid"],
            "PASSWORD_HASH": self.loaded.row["passwd"],
            "FTP_HOME": Path(self.loaded.row["homedir"]),
            "USER": user,
            "GROUP": user,
            "USER_SYS_UID": self.loaded.row["admin_sys_uid"],
            "USER_SYS_GID": self.loaded.row["admin_sys_gid"],
        }

    def add(self) -> Result:
        return self.runner.dispatch(self, "add")

    def disable(self) -> Result:
        return self.runner.dispatch(self, "disable")

    def restore(self) -> Result:
        return self.runner.dispatch(self, "add")

    def delete(self) -> Result:
        return self.runner.dispatch(self, "delete")
