"""Handlers for the web-domain family: domains, subdomains, aliases, subaliases.

All four build their data-provider map through ``build_site_data`` from a
normalized ``Site`` record, so services see the same keys whatever the
entity type:

- ``DOMAIN_TYPE``: ``dmn``, ``als``, ``sub`` or ``subals``
- ``HOME_DIR``: the root domain's home; ``WEB_DIR``: home + mount point
- ``SHARED_MOUNT_POINT``: another site of the same account lives at or
  below this mount point, so the web directory must be neither wiped nor
  have its permissions reset
- ``ZONE_NAME``: the DNS zone holding the site's records
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from hostpanel.cascade import apply_cascades
from hostpanel.db import SITE_KINDS, EntityType, get_php_ini
from hostpanel.modules_common import ActionRunner, EngineContext, RowLoader
from hostpanel.status import TODELETE, Result

log = logging.getLogger(__name__)

UNRESOLVED_IP = "0.0.0.0"

PHP_INI_DEFAULTS = {
    "disable_functions": "exec,passthru,phpinfo,popen,proc_open,show_source,shell_exec,system",
    "allow_url_fopen": "off",
    "display_errors": "off",
    "error_reporting": "E_ALL & ~E_DEPRECATED & ~E_STRICT",
    "post_max_size": 10,
    "upload_max_filesize": 10,
    "max_execution_time": 30,
    "max_input_time": 60,
    "memory_limit": 128,
}
_PHP_SIZE_KEYS = {"post_max_size", "upload_max_filesize", "memory_limit"}

# Mail type prefix and the column used as ``mail_users.sub_id`` per site kind.
_MAIL_PREFIX = {"dmn": "normal", "als": "alias", "sub": "subdom", "subals": "alssub"}


def to_unicode(name: str) -> str:
    try:
        return name.encode("ascii").decode("idna")
    except UnicodeError:
        return name


def _like_prefix(mount: str) -> str:
    escaped = mount.rstrip("/").replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}/%"


def shared_mount_point(
    conn: sqlite3.Connection, root_domain_id: int, kind: str, site_id: int, mount: str
) -> bool:
    """True if another live site of the domain is mounted at or below ``mount``."""
    if mount == "/":
        return True
    row = conn.execute(
        """
        SELECT COUNT(*) AS n FROM (
            SELECT 'sub' AS kind, subdomain_id AS id, subdomain_mount AS mount,
                   subdomain_status AS status
            FROM subdomain WHERE domain_id = :domain
            UNION ALL
            SELECT 'als', alias_id, alias_mount, alias_status
            FROM domain_aliases WHERE domain_id = :domain
            UNION ALL
            SELECT 'subals', sa.subdomain_alias_id, sa.subdomain_alias_mount,
                   sa.subdomain_alias_status
            FROM subdomain_alias sa JOIN domain_aliases al ON al.alias_id = sa.alias_id
            WHERE al.domain_id = :domain
        )
        WHERE NOT (kind = :kind AND id = :id)
          AND status != :deleting
          AND (mount = :mount OR mount LIKE :prefix ESCAPE '\\')
        """,
        {
            "domain": root_domain_id,
            "kind": kind,
            "id": site_id,
            "deleting": TODELETE,
            "mount": mount,
            "prefix": _like_prefix(mount),
        },
    ).fetchone()
    return row["n"] > 0


def pending_dependents(conn: sqlite3.Connection, checks: list[tuple[str, str, tuple]]) -> list[str]:
    """Describe child rows still attached to a parent about to be deleted.

    ``checks`` holds ``(label, sql, params)`` where ``sql`` is a COUNT query.
    """
    found = []
    for label, sql, params in checks:
        count = conn.execute(sql, params).fetchone()[0]
        if count:
            found.append(f"{count} {label}")
    return found


@dataclass
class Site:
    kind: str
    entity_id: int
    status: str
    admin_id: int
    root_domain_id: int
    root_domain_name: str
    domain_name: str
    parent_domain_name: str
    zone_name: str
    label: str | None
    mount: str
    document_root: str
    ip: str | None
    forward: str | None
    forward_type: str | None
    forward_host: str | None
    php: str
    cgi: str
    web_folder_protection: str
    external_mail: str
    mailacc_limit: int
    sys_uid: int
    sys_gid: int
    # Sites whose php.ini settings apply, per configuration level.
    php_owner_alias_id: int | None = None


def _php_ini_source(site: Site, level: str) -> tuple[tuple[int, str], str]:
    """(php_ini row key, ini file name) for ``site`` at config ``level``."""
    if level == "per_user":
        return (site.root_domain_id, "dmn"), ""
    if level == "per_domain":
        if site.kind in ("dmn", "sub"):
            return (site.root_domain_id, "dmn"), site.root_domain_name
        assert site.php_owner_alias_id is not None
        return (site.php_owner_alias_id, "als"), site.parent_domain_name
    return (site.entity_id, site.kind), site.domain_name


def build_site_data(ctx: EngineContext, site: Site) -> dict[str, Any]:
    config = ctx.config
    conn = ctx.conn
    user = config.system_user(site.admin_id)
    home_dir = config.user_web_dir / site.root_domain_name
    web_dir = home_dir / site.mount.strip("/") if site.kind != "dmn" else home_dir
    document_root = web_dir / site.document_root.strip("/")

    shared = site.kind != "dmn" and shared_mount_point(
        conn, site.root_domain_id, site.kind, site.entity_id, site.mount
    )

    cert = conn.execute(
        "SELECT allow_hsts, hsts_max_age, hsts_include_subdomains FROM ssl_certs "
        "WHERE domain_id = ? AND domain_type = ? AND status = 'ok'",
        (site.entity_id, site.kind),
    ).fetchone()
    cert_path = config.ssl_cert_dir / f"{site.domain_name}.pem"
    ssl_support = cert is not None and cert_path.is_file()
    hsts = ssl_support and cert["allow_hsts"] == "on"

    mail_prefix = _MAIL_PREFIX[site.kind]
    mail_count = conn.execute(
        "SELECT COUNT(*) FROM mail_users WHERE domain_id = ? AND sub_id = ? "
        "AND mail_type LIKE ? ESCAPE '\\'",
        (
            site.root_domain_id,
            0 if site.kind == "dmn" else site.entity_id,
            f"%{mail_prefix}\\_%",
        ),
    ).fetchone()[0]
    mail_enabled = site.external_mail == "off" and (mail_count > 0 or site.mailacc_limit >= 0)

    (php_id, php_kind), php_ini_name = _php_ini_source(site, config.php_config_level)
    php_ini = {**PHP_INI_DEFAULTS}
    php_ini.update(
        {k: v for k, v in get_php_ini(conn, php_id, php_kind).items()
         if k in PHP_INI_DEFAULTS and v is not None}
    )

    data: dict[str, Any] = {
        "STATUS": site.status,
        "BASE_SERVER_VHOST": config.base_server_vhost,
        "BASE_SERVER_IP": config.base_server_ip,
        "BASE_SERVER_PUBLIC_IP": config.base_server_public_ip,
        "DOMAIN_ADMIN_ID": site.admin_id,
        "DOMAIN_ID": site.entity_id,
        "DOMAIN_NAME": site.domain_name,
        "DOMAIN_NAME_UNICODE": to_unicode(site.domain_name),
        "DOMAIN_IP": site.ip or UNRESOLVED_IP,
        "DOMAIN_TYPE": site.kind,
        "PARENT_DOMAIN_NAME": site.parent_domain_name,
        "ROOT_DOMAIN_NAME": site.root_domain_name,
        "ZONE_NAME": site.zone_name,
        "SUBDOMAIN_LABEL": site.label,
        "HOME_DIR": home_dir,
        "WEB_DIR": web_dir,
        "MOUNT_POINT": site.mount,
        "DOCUMENT_ROOT": document_root,
        "SHARED_MOUNT_POINT": shared,
        "PEAR_DIR": config.php_pear_dir,
        "TIMEZONE": config.timezone,
        "USER": user,
        "GROUP": user,
        "USER_SYS_UID": site.sys_uid,
        "USER_SYS_GID": site.sys_gid,
        "PHP_SUPPORT": site.php == "yes",
        "CGI_SUPPORT": site.cgi == "yes",
        "WEB_FOLDER_PROTECTION": site.web_folder_protection,
        "SSL_SUPPORT": ssl_support,
        "CERTIFICATE": cert_path if ssl_support else None,
        "HSTS_SUPPORT": hsts,
        "HSTS_MAX_AGE": cert["hsts_max_age"] if hsts else 0,
        "HSTS_INCLUDE_SUBDOMAINS": (
            "; includeSubDomains" if hsts and cert["hsts_include_subdomains"] == "on" else ""
        ),
        "FORWARD": site.forward or "no",
        "FORWARD_TYPE": site.forward_type or "",
        "FORWARD_PRESERVE_HOST": "On" if site.forward_host == "on" else "Off",
        "EXTERNAL_MAIL": site.external_mail,
        "MAIL_ENABLED": mail_enabled,
        "PHP_INI_NAME": php_ini_name or user,
    }
    for key, value in php_ini.items():
        if key in _PHP_SIZE_KEYS:
            value = f"{value}M"
        data[f"PHP_INI_{key.upper()}"] = value
    return data


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class _SiteStrategy:
    """Verb implementations shared by the four site strategies.

    Subclasses provide ``entity_type``, ``load_sql`` and ``_site()``.
    """

    entity_type: EntityType
    load_sql: str

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.runner = ActionRunner(ctx)
        self.loaded = RowLoader(
            ctx, self.entity_type, self.load_sql, lambda: build_site_data(ctx, self._site())
        )

    def _site(self) -> Site:
        raise NotImplementedError

    def _dependents(self) -> list[tuple[str, str, tuple]]:
        return []

    def _cascade(self) -> Result:
        loaded = self.loaded
        return apply_cascades(self.ctx.conn, self.entity_type, loaded.status, loaded.row)

    def add(self) -> Result:
        return self.runner.dispatch(self, "add").then(self._cascade)

    def disable(self) -> Result:
        return self.runner.dispatch(self, "disable").then(self._cascade)

    def restore(self) -> Result:
        return self.runner.dispatch(self, "restore").then(self._cascade)

    def _certificates(self) -> tuple[str, str, tuple]:
        return (
            "certificate(s)",
            "SELECT COUNT(*) FROM ssl_certs WHERE domain_id = ? AND domain_type = ?",
            (self.loaded.entity_id, SITE_KINDS[self.entity_type]),
        )

    def delete(self) -> Result:
        remaining = pending_dependents(self.ctx.conn, [*self._dependents(), self._certificates()])
        if remaining:
            name = self.loaded.get("delete")["DOMAIN_NAME"]
            return Result.fail(f"Cannot delete {name}: {', '.join(remaining)} still attached")
        return self.runner.dispatch(self, "delete")


class DomainModule(_SiteStrategy):
    entity_type = EntityType.DOMAIN
    load_sql = """
        SELECT d.*, d.domain_id AS id, d.domain_status AS status,
               a.admin_sys_uid, a.admin_sys_gid, ip.ip_number
        FROM domain d
        JOIN admin a ON a.admin_id = d.domain_admin_id
        LEFT JOIN server_ips ip ON ip.ip_id = d.domain_ip_id
        WHERE d.domain_id = ?
    """

    def _site(self) -> Site:
        r = self.loaded.row
        return Site(
            kind="dmn",
            entity_id=r["domain_id"],
            status=r["status"],
            admin_id=r["domain_admin_id"],
            root_domain_id=r["domain_id"],
            root_domain_name=r["domain_name"],
            domain_name=r["domain_name"],
            parent_domain_name=r["domain_name"],
            zone_name=r["domain_name"],
            label=None,
            mount="/",
            document_root=r["document_root"],
            ip=r["ip_number"],
            forward=r["url_forward"],
            forward_type=r["type_forward"],
            forward_host=r["host_forward"],
            php=r["domain_php"],
            cgi=r["domain_cgi"],
            web_folder_protection=r["web_folder_protection"],
            external_mail=r["external_mail"],
            mailacc_limit=r["domain_mailacc_limit"],
            sys_uid=r["admin_sys_uid"],
            sys_gid=r["admin_sys_gid"],
        )

    def _dependents(self) -> list[tuple[str, str, tuple]]:
        domain_id = (self.loaded.entity_id,)
        return [
            ("subdomain(s)", "SELECT COUNT(*) FROM subdomain WHERE domain_id = ?", domain_id),
            ("alias(es)", "SELECT COUNT(*) FROM domain_aliases WHERE domain_id = ?", domain_id),
            ("mail account(s)", "SELECT COUNT(*) FROM mail_users WHERE domain_id = ?", domain_id),
            ("database(s)", "SELECT COUNT(*) FROM sql_database WHERE domain_id = ?", domain_id),
            ("DNS record(s)", "SELECT COUNT(*) FROM domain_dns WHERE domain_id = ?", domain_id),
        ]

    def resolve_ip(self) -> None:
        """Bind a domain without an address to the base server IP."""
        if self.loaded.row["domain_ip_id"] is not None:
            return
        conn = self.ctx.conn
        ip = self.ctx.config.base_server_ip
        found = conn.execute("SELECT ip_id FROM server_ips WHERE ip_number = ?", (ip,)).fetchone()
        if found is not None:
            ip_id = found["ip_id"]
        else:
            ip_id = conn.execute("INSERT INTO server_ips (ip_number) VALUES (?)", (ip,)).lastrowid
        conn.execute(
            "UPDATE domain SET domain_ip_id = ? WHERE domain_id = ?",
            (ip_id, self.loaded.entity_id),
        )
        conn.commit()
        log.info("Domain %s bound to %s", self.loaded.row["domain_name"], ip)
        self.loaded.update(domain_ip_id=ip_id, ip_number=ip)

    def add(self) -> Result:
        self.resolve_ip()
        return super().add()

    def restore(self) -> Result:
        self.resolve_ip()
        return super().restore()


class SubdomainModule(_SiteStrategy):
    entity_type = EntityType.SUBDOMAIN
    load_sql = """
        SELECT s.*, s.subdomain_id AS id, s.subdomain_status AS status,
               d.domain_name, d.domain_admin_id, d.domain_php, d.domain_cgi,
               d.web_folder_protection, d.external_mail, d.domain_mailacc_limit,
               a.admin_sys_uid, a.admin_sys_gid, ip.ip_number
        FROM subdomain s
        JOIN domain d ON d.domain_id = s.domain_id
        JOIN admin a ON a.admin_id = d.domain_admin_id
        LEFT JOIN server_ips ip ON ip.ip_id = d.domain_ip_id
        WHERE s.subdomain_id = ?
    """

    def _site(self) -> Site:
        r = self.loaded.row
        return Site(
            kind="sub",
            entity_id=r["subdomain_id"],
            status=r["status"],
            admin_id=r["domain_admin_id"],
            root_domain_id=r["domain_id"],
            root_domain_name=r["domain_name"],
            domain_name=f"{r['subdomain_name']}.{r['domain_name']}",
            parent_domain_name=r["domain_name"],
            zone_name=r["domain_name"],
            label=r["subdomain_name"],
            mount=r["subdomain_mount"],
            document_root=r["subdomain_document_root"],
            ip=r["ip_number"],
            forward=r["subdomain_url_forward"],
            forward_type=r["subdomain_type_forward"],
            forward_host=r["subdomain_host_forward"],
            php=r["domain_php"],
            cgi=r["domain_cgi"],
            web_folder_protection=r["web_folder_protection"],
            external_mail=r["external_mail"],
            mailacc_limit=r["domain_mailacc_limit"],
            sys_uid=r["admin_sys_uid"],
            sys_gid=r["admin_sys_gid"],
        )

    def _dependents(self) -> list[tuple[str, str, tuple]]:
        return [
            (
                "mail account(s)",
                "SELECT COUNT(*) FROM mail_users WHERE sub_id = ? AND mail_type LIKE '%subdom\\_%' "
                "ESCAPE '\\'",
                (self.loaded.entity_id,),
            )
        ]


class AliasModule(_SiteStrategy):
    entity_type = EntityType.ALIAS
    load_sql = """
        SELECT al.*, al.alias_id AS id, al.alias_status AS status,
               d.domain_name, d.domain_admin_id, d.domain_php, d.domain_cgi,
               d.web_folder_protection, d.domain_mailacc_limit,
               a.admin_sys_uid, a.admin_sys_gid,
               COALESCE(ip.ip_number, dip.ip_number) AS ip_number
        FROM domain_aliases al
        JOIN domain d ON d.domain_id = al.domain_id
        JOIN admin a ON a.admin_id = d.domain_admin_id
        LEFT JOIN server_ips ip ON ip.ip_id = al.alias_ip_id
        LEFT JOIN server_ips dip ON dip.ip_id = d.domain_ip_id
        WHERE al.alias_id = ?
    """

    def _site(self) -> Site:
        r = self.loaded.row
        return Site(
            kind="als",
            entity_id=r["alias_id"],
            status=r["status"],
            admin_id=r["domain_admin_id"],
            root_domain_id=r["domain_id"],
            root_domain_name=r["domain_name"],
            domain_name=r["alias_name"],
            parent_domain_name=r["alias_name"],
            zone_name=r["alias_name"],
            label=None,
            mount=r["alias_mount"],
            document_root=r["alias_document_root"],
            ip=r["ip_number"],
            forward=r["url_forward"],
            forward_type=r["type_forward"],
            forward_host=r["host_forward"],
            php=r["domain_php"],
            cgi=r["domain_cgi"],
            web_folder_protection=r["web_folder_protection"],
            external_mail=r["external_mail"],
            mailacc_limit=r["domain_mailacc_limit"],
            sys_uid=r["admin_sys_uid"],
            sys_gid=r["admin_sys_gid"],
            php_owner_alias_id=r["alias_id"],
        )

    def _dependents(self) -> list[tuple[str, str, tuple]]:
        alias_id = (self.loaded.entity_id,)
        return [
            ("subalias(es)", "SELECT COUNT(*) FROM subdomain_alias WHERE alias_id = ?", alias_id),
            ("DNS record(s)", "SELECT COUNT(*) FROM domain_dns WHERE alias_id = ?", alias_id),
            (
                "mail account(s)",
                "SELECT COUNT(*) FROM mail_users WHERE sub_id = ? AND mail_type LIKE '%alias\\_%' "
                "ESCAPE '\\'",
                alias_id,
            ),
        ]


class SubAliasModule(_SiteStrategy):
    entity_type = EntityType.SUBALIAS
    load_sql = """
        SELECT sa.*, sa.subdomain_alias_id AS id, sa.subdomain_alias_status AS status,
               al.alias_name, al.domain_id, al.external_mail,
               d.domain_name, d.domain_admin_id, d.domain_php, d.domain_cgi,
               d.web_folder_protection, d.domain_mailacc_limit,
               a.admin_sys_uid, a.admin_sys_gid,
               COALESCE(ip.ip_number, dip.ip_number) AS ip_number
        FROM subdomain_alias sa
        JOIN domain_aliases al ON al.alias_id = sa.alias_id
        JOIN domain d ON d.domain_id = al.domain_id
        JOIN admin a ON a.admin_id = d.domain_admin_id
        LEFT JOIN server_ips ip ON ip.ip_id = al.alias_ip_id
        LEFT JOIN server_ips dip ON dip.ip_id = d.domain_ip_id
        WHERE sa.subdomain_alias_id = ?
    """

    def _site(self) -> Site:
        r = self.loaded.row
        return Site(
            kind="subals",
            entity_id=r["subdomain_alias_id"],
            status=r["status"],
            admin_id=r["domain_admin_id"],
            root_domain_id=r["domain_id"],
            root_domain_name=r["domain_name"],
            domain_name=f"{r['subdomain_alias_name']}.{r['alias_name']}",
            parent_domain_name=r["alias_name"],
            zone_name=r["alias_name"],
            label=r["subdomain_alias_name"],
            mount=r["subdomain_alias_mount"],
            document_root=r["subdomain_alias_document_root"],
            ip=r["ip_number"],
            forward=r["subdomain_alias_url_forward"],
            forward_type=r["subdomain_alias_type_forward"],
            forward_host=r["subdomain_alias_host_forward"],
            php=r["domain_php"],
            cgi=r["domain_cgi"],
            web_folder_protection=r["web_folder_protection"],
            external_mail=r["external_mail"],
            mailacc_limit=r["domain_mailacc_limit"],
            sys_uid=r["admin_sys_uid"],
            sys_gid=r["admin_sys_gid"],
            php_owner_alias_id=r["alias_id"],
        )

    def _dependents(self) -> list[tuple[str, str, tuple]]:
        return [
            (
                "mail account(s)",
                "SELECT COUNT(*) FROM mail_users WHERE sub_id = ? AND mail_type LIKE '%alssub\\_%' "
                "ESCAPE '\\'",
                (self.loaded.entity_id,),
            )
        ]
