"""DNS collaborator: zone files assembled from per-entity fragments.

Each zone (a domain or an alias) owns a fragment directory; the domain or
alias writes the ``00-base`` fragment, subdomains and custom records add
their own.  The zone file is the concatenation of its fragments.  The SOA
serial only moves when the zone body actually changes, so re-running an
add leaves the zone file byte-identical.
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from hostpanel.db import EntityType
from hostpanel.services import Capabilities, Service
from hostpanel.status import Result
from hostpanel.system import remove_path, write_file_atomic

log = logging.getLogger(__name__)

SERIAL_MARK = "@SERIAL@"
BASE_FRAGMENT = "00-base.db"

_SERIAL_RE = re.compile(r"^(\s*)(\S+)(\s*; serial)$", re.MULTILINE)


def next_serial(previous: int | None, today: datetime.date | None = None) -> int:
    """YYYYMMDDnn serial, strictly greater than ``previous``."""
    base = int((today or datetime.date.today()).strftime("%Y%m%d")) * 100
    if previous is None:
        return base
    return max(base, previous + 1)


class NamedService(Service):
    name = "named"
    priority = 90
    reload_command_key = "named_reload_command"

    def capabilities(self) -> Capabilities:
        caps: dict = {}
        for zone_type in (EntityType.DOMAIN, EntityType.ALIAS):
            caps[("add", zone_type)] = self.add_zone
            caps[("restore", zone_type)] = self.add_zone
            caps[("delete", zone_type)] = self.delete_zone
        for sub_type in (EntityType.SUBDOMAIN, EntityType.SUBALIAS):
            caps[("add", sub_type)] = self.add_subdomain
            caps[("restore", sub_type)] = self.add_subdomain
            caps[("delete", sub_type)] = self.delete_subdomain
        caps[("add", EntityType.CUSTOM_DNS)] = self.add_record
        caps[("delete", EntityType.CUSTOM_DNS)] = self.delete_record
        return caps

    def fragment_dir(self, zone: str) -> Path:
        return self.config.named_zone_dir / "fragments" / zone

    def zone_path(self, zone: str) -> Path:
        return self.config.named_zone_dir / f"{zone}.db"

    def rebuild_zone(self, zone: str) -> Result:
        fragments = self.fragment_dir(zone)
        if not (fragments / BASE_FRAGMENT).is_file():
            return Result.fail(f"DNS zone {zone} is not provisioned")
        body = "".join(p.read_text() for p in sorted(fragments.glob("*.db")))

        path = self.zone_path(zone)
        previous: int | None = None
        try:
            existing = path.read_text()
        except FileNotFoundError:
            existing = None
        if existing is not None:
            match = _SERIAL_RE.search(existing)
            if match and match.group(2).isdigit():
                previous = int(match.group(2))
            normalized = _SERIAL_RE.sub(
                lambda m: f"{m.group(1)}{SERIAL_MARK}{m.group(3)}", existing, count=1
            )
            if normalized == body:
                return Result.ok()

        serial = next_serial(previous)
        write_file_atomic(path, body.replace(SERIAL_MARK, str(serial), 1))
        log.info("Rebuilt zone %s (serial %d)", zone, serial)
        return Result.ok()

    def add_zone(self, data: Mapping[str, Any]) -> Result:
        zone = data["DOMAIN_NAME"]
        content = self.renderer.render(
            "named/zone_base",
            {**data, "SERIAL": SERIAL_MARK, "SECTION_MAIL": data["MAIL_ENABLED"]},
        )
        write_file_atomic(self.fragment_dir(zone) / BASE_FRAGMENT, content)
        return self.rebuild_zone(zone)

    def delete_zone(self, data: Mapping[str, Any]) -> Result:
        zone = data["DOMAIN_NAME"]
        remove_path(self.fragment_dir(zone))
        remove_path(self.zone_path(zone))
        log.info("Removed zone %s", zone)
        return Result.ok()

    def _sub_fragment(self, data: Mapping[str, Any]) -> Path:
        return self.fragment_dir(data["ZONE_NAME"]) / f"10-sub-{data['SUBDOMAIN_LABEL']}.db"

    def add_subdomain(self, data: Mapping[str, Any]) -> Result:
        write_file_atomic(self._sub_fragment(data), self.renderer.render("named/subdomain", data))
        return self.rebuild_zone(data["ZONE_NAME"])

    def delete_subdomain(self, data: Mapping[str, Any]) -> Result:
        if not remove_path(self._sub_fragment(data)):
            return Result.ok()
        if not (self.fragment_dir(data["ZONE_NAME"]) / BASE_FRAGMENT).is_file():
            return Result.ok()
        return self.rebuild_zone(data["ZONE_NAME"])

    def _record_fragment(self, data: Mapping[str, Any]) -> Path:
        return self.fragment_dir(data["ZONE_NAME"]) / f"50-custom-{data['RECORD_ID']}.db"

    def add_record(self, data: Mapping[str, Any]) -> Result:
        write_file_atomic(self._record_fragment(data), self.renderer.render("named/record", data))
        return self.rebuild_zone(data["ZONE_NAME"])

    def delete_record(self, data: Mapping[str, Any]) -> Result:
        if not remove_path(self._record_fragment(data)):
            return Result.ok()
        if not (self.fragment_dir(data["ZONE_NAME"]) / BASE_FRAGMENT).is_file():
            return Result.ok()
        return self.rebuild_zone(data["ZONE_NAME"])
