"""Certificate collaborator: one PEM bundle per site."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from hostpanel.db import EntityType
from hostpanel.services import Capabilities, Service
from hostpanel.status import Result
from hostpanel.system import remove_path, write_file_atomic

log = logging.getLogger(__name__)

PEM_MARKER = "-----BEGIN "


class SslService(Service):
    name = "ssl"
    priority = 150

    def capabilities(self) -> Capabilities:
        return {
            ("add", EntityType.SSL): self.add_certificate,
            ("delete", EntityType.SSL): self.delete_certificate,
        }

    def add_certificate(self, data: Mapping[str, Any]) -> Result:
        parts = [data["PRIVATE_KEY"], data["CERTIFICATE"]]
        if data["CA_BUNDLE"]:
            parts.append(data["CA_BUNDLE"])
        for label, part in zip(("private key", "certificate", "CA bundle"), parts):
            if PEM_MARKER not in part:
                return Result.fail(f"Invalid {label} for {data['DOMAIN_NAME']}: not PEM encoded")
        content = "".join(part.strip() + "\n" for part in parts)
        if write_file_atomic(data["CERT_PATH"], content, mode=0o640):
            log.info("Installed certificate for %s", data["DOMAIN_NAME"])
        return Result.ok()

    def delete_certificate(self, data: Mapping[str, Any]) -> Result:
        if data["CERT_PATH"] is not None:
            remove_path(data["CERT_PATH"])
        return Result.ok()
