"""MTA collaborator: postfix-style lookup tables and maildirs.

Tables live in ``EngineConfig.mta_map_dir``:

- ``domains``   virtual mailbox domains
- ``mailboxes`` address -> maildir relative to ``mail_root``
- ``aliases``   address (or ``@domain`` catch-all) -> comma separated targets
- ``passwd``    address -> password hash, read by the IMAP/SMTP-auth daemon
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from hostpanel.db import EntityType
from hostpanel.services import Capabilities, Service
from hostpanel.status import Result
from hostpanel.system import ensure_dir, read_map, remove_path, write_map

log = logging.getLogger(__name__)

MAILDIR_SUBDIRS = ("cur", "new", "tmp")


def mail_types(data: Mapping[str, Any]) -> set[str]:
    return {t.strip() for t in str(data["MAIL_TYPE"]).split(",") if t.strip()}


class MtaService(Service):
    name = "mta"
    priority = 70
    reload_command_key = "mta_reload_command"

    def capabilities(self) -> Capabilities:
        caps: dict = {
            ("add", EntityType.MAIL): self.add_mail,
            ("disable", EntityType.MAIL): self.disable_mail,
            ("delete", EntityType.MAIL): self.delete_mail,
        }
        for entity_type in (EntityType.DOMAIN, EntityType.ALIAS):
            caps[("add", entity_type)] = self.add_domain
            caps[("restore", entity_type)] = self.add_domain
            caps[("disable", entity_type)] = self.remove_domain
            caps[("delete", entity_type)] = self.remove_domain
        return caps

    def _map(self, name: str) -> Path:
        return self.config.mta_map_dir / name

    def _update(
        self, name: str, *, set_: Mapping[str, str] | None = None, drop: tuple[str, ...] = ()
    ) -> bool:
        path = self._map(name)
        entries = read_map(path)
        entries.update(set_ or {})
        for key in drop:
            entries.pop(key, None)
        return write_map(path, entries)

    # -- domains --

    def add_domain(self, data: Mapping[str, Any]) -> Result:
        domain = data["DOMAIN_NAME"]
        if data["MAIL_ENABLED"]:
            self._update("domains", set_={domain: "OK"})
        else:
            self._update("domains", drop=(domain,))
        return Result.ok()

    def remove_domain(self, data: Mapping[str, Any]) -> Result:
        self._update("domains", drop=(data["DOMAIN_NAME"],))
        return Result.ok()

    # -- accounts --

    def maildir(self, data: Mapping[str, Any]) -> Path:
        return self.config.mail_root / data["DOMAIN_NAME"] / data["MAIL_ACC"]

    def add_mail(self, data: Mapping[str, Any]) -> Result:
        address = data["MAIL_ADDR"]
        types = mail_types(data)

        if any(t.endswith("_mail") for t in types):
            maildir = self.maildir(data)
            for sub in MAILDIR_SUBDIRS:
                ensure_dir(maildir / sub, mode=0o700)
            relative = f"{data['DOMAIN_NAME']}/{data['MAIL_ACC']}/"
            self._update("mailboxes", set_={address: relative})
            self._update("passwd", set_={address: data["MAIL_PASS"]})
        else:
            self._update("mailboxes", drop=(address,))
            self._update("passwd", drop=(address,))

        if any(t.endswith("_forward") for t in types) and data["MAIL_FORWARD"] != "_no_":
            self._update("aliases", set_={address: data["MAIL_FORWARD"]})
        elif any(t.endswith("_catchall") for t in types):
            self._update("aliases", set_={address: data["MAIL_CATCHALL"]})
        else:
            self._update("aliases", drop=(address,))
        return Result.ok()

    def disable_mail(self, data: Mapping[str, Any]) -> Result:
        """Stop delivery but keep the mailbox contents."""
        address = data["MAIL_ADDR"]
        for table in ("mailboxes", "passwd", "aliases"):
            self._update(table, drop=(address,))
        return Result.ok()

    def delete_mail(self, data: Mapping[str, Any]) -> Result:
        self.disable_mail(data)
        if any(t.endswith("_mail") for t in mail_types(data)):
            remove_path(self.maildir(data))
        return Result.ok()
