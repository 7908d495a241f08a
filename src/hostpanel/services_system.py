"""Unix accounts owning customer files."""

from __future__ import annotations

import grp
import logging
import pwd
from collections.abc import Mapping
from typing import Any

from hostpanel.config import EngineConfig
from hostpanel.db import EntityType
from hostpanel.services import Capabilities, Service
from hostpanel.status import TOCHANGEPWD, Result
from hostpanel.system import run_command

log = logging.getLogger(__name__)

ACCOUNT_SHELL = "/bin/false"
ACCOUNT_COMMENT = "hostpanel customer"


def account_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
    except KeyError:
        return False
    return True


def resolve_account_ids(config: EngineConfig, name: str, admin_id: int) -> tuple[int, int]:
    """uid/gid of a customer's system account.

    With ``manage_system_users`` off no account exists, so ids are derived
    from the admin id the same way the account name is.
    """
    if not config.manage_system_users:
        uid = config.system_user_min_uid + admin_id
        return uid, uid
    return pwd.getpwnam(name).pw_uid, grp.getgrnam(name).gr_gid


class SystemAccountService(Service):
    name = "system"
    priority = 1000

    def capabilities(self) -> Capabilities:
        return {
            ("add", EntityType.USER): self.add_user,
            ("delete", EntityType.USER): self.delete_user,
        }

    def add_user(self, data: Mapping[str, Any]) -> Result:
        if not self.config.manage_system_users or data["STATUS"] == TOCHANGEPWD:
            return Result.ok()
        user = data["USER"]
        timeout = self.config.command_timeout
        if account_exists(user):
            run_command(
                [*self.config.usermod_command, "--home", str(data["HOME_DIR"]),
                 "--shell", ACCOUNT_SHELL, user],
                timeout=timeout,
            )
            log.debug("Updated system account %s", user)
        else:
            run_command(
                [*self.config.useradd_command, "--home-dir", str(data["HOME_DIR"]),
                 "--no-create-home", "--shell", ACCOUNT_SHELL, "--comment", ACCOUNT_COMMENT,
                 "--user-group", user],
                timeout=timeout,
            )
            log.info("Created system account %s", user)
        return Result.ok()

    def delete_user(self, data: Mapping[str, Any]) -> Result:
        if not self.config.manage_system_users:
            return Result.ok()
        user = data["USER"]
        if account_exists(user):
            run_command([*self.config.userdel_command, user], timeout=self.config.command_timeout)
            log.info("Removed system account %s", user)
        return Result.ok()
