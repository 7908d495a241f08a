"""SSL certificate handler.

Certificates attach to any site kind through ``(domain_id, domain_type)``.
Installing or removing one queues the owning site for a vhost rewrite (see
``hostpanel.cascade``).
"""

from __future__ import annotations

import logging
from typing import Any

from hostpanel.cascade import apply_cascades
from hostpanel.db import EntityType
from hostpanel.modules_common import ActionRunner, EngineContext, RowLoader
from hostpanel.status import TODELETE, Result

log = logging.getLogger(__name__)

# domain_type -> expression yielding the site's full name.
_SITE_NAME_SQL = {
    "dmn": "SELECT domain_name FROM domain WHERE domain_id = ?",
    "als": "SELECT alias_name FROM domain_aliases WHERE alias_id = ?",
    "sub": (
        "SELECT s.subdomain_name || '.' || d.domain_name FROM subdomain s "
        "JOIN domain d ON d.domain_id = s.domain_id WHERE s.subdomain_id = ?"
    ),
    "subals": (
        "SELECT sa.subdomain_alias_name || '.' || al.alias_name FROM subdomain_alias sa "
        "JOIN domain_aliases al ON al.alias_id = sa.alias_id WHERE sa.subdomain_alias_id = ?"
    ),
}


class SslCertificateModule:
    entity_type = EntityType.SSL
    load_sql = "SELECT *, cert_id AS id FROM ssl_certs WHERE cert_id = ?"

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(ctx, self.entity_type, self.load_sql, self._build_data)

    def _site_name(self) -> str | None:
        row = self.loaded.row
        found = self.ctx.conn.execute(
            _SITE_NAME_SQL[row["domain_type"]], (row["domain_id"],)
        ).fetchone()
        if found is not None:
            return found[0]
        if self.loaded.status == TODELETE:
            # Nothing on disk can be addressed without the site name.
            log.warning(
                "Certificate %d: owning %s %d is gone, removing row only",
                self.loaded.entity_id, row["domain_type"], row["domain_id"],
            )
            return None
        raise LookupError(
            f"{row['domain_type']} {row['domain_id']} owning certificate "
            f"{self.loaded.entity_id} does not exist"
        )

    def _build_data(self) -> dict[str, Any]:
        row = self.loaded.row
        name = self._site_name()
        return {
            "STATUS": self.loaded.status,
            "DOMAIN_NAME": name,
            "DOMAIN_TYPE": row["domain_type"],
            "PRIVATE_KEY": row["private_key"],
            "CERTIFICATE": row["certificate"],
            "CA_BUNDLE": row["ca_bundle"],
            "CERT_PATH": self.ctx.config.ssl_cert_dir / f"{name}.pem" if name else None,
        }

    def _cascade(self) -> Result:
        loaded = self.loaded
        return apply_cascades(self.ctx.conn, self.entity_type, loaded.status, loaded.row)

    def add(self) -> Result:
        return self.runner.dispatch(self, "add").then(self._cascade)

    def disable(self) -> Result:
        return self.runner.dispatch(self, "delete")

    def restore(self) -> Result:
        return self.add()

    def delete(self) -> Result:
        return self.runner.dispatch(self, "delete").then(self._cascade)
