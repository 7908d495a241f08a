"""Web server collaborator: vhost files, web directories and PHP settings."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from hostpanel.db import EntityType
from hostpanel.services import Capabilities, Service
from hostpanel.status import Result
from hostpanel.system import ensure_dir, remove_path, write_file_atomic

log = logging.getLogger(__name__)

WEB_TYPES = (EntityType.DOMAIN, EntityType.SUBDOMAIN, EntityType.ALIAS, EntityType.SUBALIAS)

PHP_INI_KEYS = (
    "PHP_INI_ALLOW_URL_FOPEN",
    "PHP_INI_DISPLAY_ERRORS",
    "PHP_INI_ERROR_REPORTING",
    "PHP_INI_DISABLE_FUNCTIONS",
    "PHP_INI_POST_MAX_SIZE",
    "PHP_INI_UPLOAD_MAX_FILESIZE",
    "PHP_INI_MAX_EXECUTION_TIME",
    "PHP_INI_MAX_INPUT_TIME",
    "PHP_INI_MEMORY_LIMIT",
)


class HttpdService(Service):
    name = "httpd"
    priority = 100
    reload_command_key = "httpd_reload_command"

    def capabilities(self) -> Capabilities:
        caps: dict = {
            ("add", EntityType.USER): self.add_user,
            ("change_password", EntityType.USER): self.write_htpasswd,
            ("delete", EntityType.USER): self.delete_user,
        }
        for entity_type in WEB_TYPES:
            caps[("add", entity_type)] = self.add_site
            caps[("restore", entity_type)] = self.add_site
            caps[("disable", entity_type)] = self.disable_site
            caps[("delete", entity_type)] = self.delete_site
        return caps

    def _owner(self, data: Mapping[str, Any]) -> tuple[str | None, str | None]:
        if not self.config.apply_ownership:
            return None, None
        return data["USER"], data["GROUP"]

    def vhost_path(self, data: Mapping[str, Any]) -> Path:
        return self.config.httpd_vhost_dir / f"{data['DOMAIN_NAME']}.conf"

    # -- customer accounts --

    def add_user(self, data: Mapping[str, Any]) -> Result:
        owner, group = self._owner(data)
        ensure_dir(Path(data["HOME_DIR"]), mode=0o750, owner=owner, group=group)
        return self.write_htpasswd(data)

    def write_htpasswd(self, data: Mapping[str, Any]) -> Result:
        """Statistics area credentials follow the panel login password."""
        owner, group = self._owner(data)
        path = Path(data["HOME_DIR"]) / ".htpasswd"
        write_file_atomic(
            path, f"{data['USERNAME']}:{data['PASSWORD_HASH']}\n", mode=0o640,
            owner=owner, group=group,
        )
        return Result.ok()

    def delete_user(self, data: Mapping[str, Any]) -> Result:
        remove_path(Path(data["HOME_DIR"]))
        return Result.ok()

    # -- sites --

    def _ensure_web_dirs(self, data: Mapping[str, Any]) -> None:
        owner, group = self._owner(data)
        home = Path(data["HOME_DIR"])
        web_dir = Path(data["WEB_DIR"])
        if data["DOMAIN_TYPE"] == "dmn":
            ensure_dir(home, mode=0o750, owner=owner, group=group)
        if data["SHARED_MOUNT_POINT"]:
            # Another site owns this tree; leave its permissions alone.
            web_dir.mkdir(parents=True, exist_ok=True)
        else:
            ensure_dir(web_dir, mode=0o750, owner=owner, group=group)
        if data["FORWARD"] == "no":
            document_root = Path(data["DOCUMENT_ROOT"])
            if not document_root.exists():
                ensure_dir(document_root, mode=0o750, owner=owner, group=group)

    def _write_php_ini(self, data: Mapping[str, Any]) -> None:
        path = self.config.php_ini_dir / f"{data['PHP_INI_NAME']}.ini"
        if not data["PHP_SUPPORT"]:
            if data["PHP_INI_NAME"] == data["DOMAIN_NAME"]:
                remove_path(path)
            return
        lines = [f"; {data['PHP_INI_NAME']}", f"date.timezone = {data['TIMEZONE']}",
                 f"include_path = .:{data['PEAR_DIR']}"]
        for key in PHP_INI_KEYS:
            option = key.removeprefix("PHP_INI_").lower()
            lines.append(f"{option} = {data[key]}")
        write_file_atomic(path, "\n".join(lines) + "\n")

    def add_site(self, data: Mapping[str, Any]) -> Result:
        self._ensure_web_dirs(data)
        self._write_php_ini(data)
        template = "httpd/vhost" if data["FORWARD"] == "no" else "httpd/vhost_forward"
        context = {
            **data,
            "SECTION_SSL": data["SSL_SUPPORT"],
            "SECTION_HSTS": data["SSL_SUPPORT"] and data["HSTS_SUPPORT"],
        }
        if write_file_atomic(self.vhost_path(data), self.renderer.render(template, context)):
            log.info("Wrote vhost for %s", data["DOMAIN_NAME"])
        return Result.ok()

    def disable_site(self, data: Mapping[str, Any]) -> Result:
        disabled_root = self.config.user_web_dir / ".disabled"
        disabled_root.mkdir(parents=True, exist_ok=True)
        content = self.renderer.render(
            "httpd/vhost_disabled", {**data, "DISABLED_PAGE_ROOT": disabled_root}
        )
        write_file_atomic(self.vhost_path(data), content)
        log.info("Disabled vhost for %s", data["DOMAIN_NAME"])
        return Result.ok()

    def delete_site(self, data: Mapping[str, Any]) -> Result:
        remove_path(self.vhost_path(data))
        if data["PHP_INI_NAME"] == data["DOMAIN_NAME"]:
            remove_path(self.config.php_ini_dir / f"{data['PHP_INI_NAME']}.ini")
        if data["DOMAIN_TYPE"] == "dmn":
            remove_path(Path(data["HOME_DIR"]))
        elif not data["SHARED_MOUNT_POINT"]:
            remove_path(Path(data["WEB_DIR"]))
        else:
            log.info("Keeping shared mount point %s of %s", data["WEB_DIR"], data["DOMAIN_NAME"])
        return Result.ok()
