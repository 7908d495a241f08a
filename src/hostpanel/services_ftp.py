"""FTP collaborator: a proftpd ``AuthUserFile`` style passwd file."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from hostpanel.db import EntityType
from hostpanel.services import Capabilities, Service
from hostpanel.status import Result
from hostpanel.system import write_file_atomic

log = logging.getLogger(__name__)

FTP_SHELL = "/bin/false"
LOCKED_PREFIX = "!"


def read_passwd(text: str) -> dict[str, str]:
    """Map userid -> full passwd line."""
    entries: dict[str, str] = {}
    for line in text.splitlines():
        if line and not line.startswith("#"):
            entries[line.split(":", 1)[0]] = line
    return entries


class FtpdService(Service):
    name = "ftpd"
    priority = 60

    def capabilities(self) -> Capabilities:
        return {
            ("add", EntityType.FTP_USER): self.add_ftp_user,
            ("disable", EntityType.FTP_USER): self.disable_ftp_user,
            ("delete", EntityType.FTP_USER): self.delete_ftp_user,
        }

    def _rewrite(self, userid: str, line: str | None) -> None:
        path = self.config.ftpd_passwd_path
        try:
            entries = read_passwd(path.read_text())
        except FileNotFoundError:
            entries = {}
        if line is None:
            entries.pop(userid, None)
        else:
            entries[userid] = line
        content = "".join(f"{entries[key]}\n" for key in sorted(entries))
        write_file_atomic(path, content, mode=0o600)

    def _line(self, data: Mapping[str, Any], password_hash: str) -> str:
        return ":".join(
            [
                data["FTP_USER"],
                password_hash,
                str(data["USER_SYS_UID"]),
                str(data["USER_SYS_GID"]),
                "",
                str(data["FTP_HOME"]),
                FTP_SHELL,
            ]
        )

    def add_ftp_user(self, data: Mapping[str, Any]) -> Result:
        self._rewrite(data["FTP_USER"], self._line(data, data["PASSWORD_HASH"]))
        return Result.ok()

    def disable_ftp_user(self, data: Mapping[str, Any]) -> Result:
        self._rewrite(data["FTP_USER"], self._line(data, LOCKED_PREFIX + data["PASSWORD_HASH"]))
        return Result.ok()

    def delete_ftp_user(self, data: Mapping[str, Any]) -> Result:
        self._rewrite(data["FTP_USER"], None)
        return Result.ok()
