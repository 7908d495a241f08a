"""SQL server collaborator: customer databases, users and grants.

Statements are handed to an executor, by default the configured SQL client
fed on stdin.  Every statement is safe to replay (``IF NOT EXISTS`` /
``IF EXISTS``, re-granting an existing privilege is a no-op).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from hostpanel.config import EngineConfig
from hostpanel.db import EntityType
from hostpanel.services import Capabilities, Service
from hostpanel.status import Result
from hostpanel.system import run_command
from hostpanel.templates import TemplateRenderer

log = logging.getLogger(__name__)

Executor = Callable[[Sequence[str]], None]


def quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def quote_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def account(user: str, host: str) -> str:
    return f"{quote_string(user)}@{quote_string(host)}"


class ClientExecutor:
    """Run statements through the SQL command-line client."""

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def __call__(self, statements: Sequence[str]) -> None:
        script = "".join(f"{stmt};\n" for stmt in statements)
        run_command(
            list(self.config.sql_client_command),
            timeout=self.config.command_timeout,
            input_text=script,
        )


class SqldService(Service):
    name = "sqld"
    priority = 80

    def __init__(
        self,
        config: EngineConfig,
        renderer: TemplateRenderer | None = None,
        executor: Executor | None = None,
    ) -> None:
        super().__init__(config, renderer)
        self.executor = executor or ClientExecutor(config)

    def capabilities(self) -> Capabilities:
        return {
            ("add", EntityType.SQL_DATABASE): self.add_database,
            ("delete", EntityType.SQL_DATABASE): self.delete_database,
            ("add", EntityType.SQL_USER): self.add_user,
            ("delete", EntityType.SQL_USER): self.delete_user,
        }

    def add_database(self, data: Mapping[str, Any]) -> Result:
        name = quote_identifier(data["DATABASE_NAME"])
        self.executor([f"CREATE DATABASE IF NOT EXISTS {name} CHARACTER SET utf8mb4"])
        return Result.ok()

    def delete_database(self, data: Mapping[str, Any]) -> Result:
        self.executor([f"DROP DATABASE IF EXISTS {quote_identifier(data['DATABASE_NAME'])}"])
        log.info("Dropped database %s", data["DATABASE_NAME"])
        return Result.ok()

    def add_user(self, data: Mapping[str, Any]) -> Result:
        who = account(data["SQL_USER"], data["SQL_HOST"])
        auth = f"IDENTIFIED WITH mysql_native_password AS {quote_string(data['PASSWORD_HASH'])}"
        database = quote_identifier(data["DATABASE_NAME"])
        self.executor(
            [
                f"CREATE USER IF NOT EXISTS {who} {auth}",
                # Rotates the password when the row was re-queued with a new hash.
                f"ALTER USER {who} {auth}",
                f"GRANT ALL PRIVILEGES ON {database}.* TO {who}",
            ]
        )
        return Result.ok()

    def delete_user(self, data: Mapping[str, Any]) -> Result:
        self.executor([f"DROP USER IF EXISTS {account(data['SQL_USER'], data['SQL_HOST'])}"])
        return Result.ok()
