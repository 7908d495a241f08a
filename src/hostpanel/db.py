"""SQLite entity store for hostpanel.

One table per provisionable entity type.  Every table carries a status
column that doubles as the entity's task-queue slot (see
``hostpanel.status``).  The panel (administrative layer) creates rows and
sets pending keywords; only the task processor writes terminal/error
statuses and physically deletes rows.
"""

from __future__ import annotations

import contextlib
import enum
import sqlite3
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypedDict

from hostpanel.paths import DEFAULT_DB_PATH
from hostpanel.status import (
    PENDING_STATUSES,
    TOADD,
    TOCHANGE,
    TOCHANGEPWD,
    TODELETE,
    TODISABLE,
    TOENABLE,
    TORESTORE,
    Outcome,
    is_error,
)

# Bump when the schema changes.
SCHEMA_VERSION = 1

SCHEMA = """\
CREATE TABLE IF NOT EXISTS admin (
    admin_id INTEGER PRIMARY KEY AUTOINCREMENT,
    admin_name TEXT UNIQUE NOT NULL,
    admin_pass TEXT NOT NULL DEFAULT '',
    admin_type TEXT NOT NULL DEFAULT 'user',
    admin_sys_name TEXT,
    admin_sys_uid INTEGER NOT NULL DEFAULT 0,
    admin_sys_gname TEXT,
    admin_sys_gid INTEGER NOT NULL DEFAULT 0,
    admin_status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS server_ips (
    ip_id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip_number TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS domain (
    domain_id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_name TEXT UNIQUE NOT NULL,
    domain_admin_id INTEGER NOT NULL REFERENCES admin(admin_id),
    domain_ip_id INTEGER REFERENCES server_ips(ip_id),
    domain_mailacc_limit INTEGER NOT NULL DEFAULT 0,
    domain_disk_limit INTEGER NOT NULL DEFAULT 0,
    domain_disk_usage INTEGER NOT NULL DEFAULT 0,
    domain_php TEXT NOT NULL DEFAULT 'no',
    domain_cgi TEXT NOT NULL DEFAULT 'no',
    web_folder_protection TEXT NOT NULL DEFAULT 'yes',
    document_root TEXT NOT NULL DEFAULT '/htdocs',
    url_forward TEXT,
    type_forward TEXT,
    host_forward TEXT,
    external_mail TEXT NOT NULL DEFAULT 'off',
    domain_status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS subdomain (
    subdomain_id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id INTEGER NOT NULL REFERENCES domain(domain_id),
    subdomain_name TEXT NOT NULL,
    subdomain_mount TEXT NOT NULL,
    subdomain_document_root TEXT NOT NULL DEFAULT '/htdocs',
    subdomain_url_forward TEXT,
    subdomain_type_forward TEXT,
    subdomain_host_forward TEXT,
    subdomain_status TEXT NOT NULL DEFAULT 'toadd',
    UNIQUE (domain_id, subdomain_name)
);

CREATE TABLE IF NOT EXISTS domain_aliases (
    alias_id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id INTEGER NOT NULL REFERENCES domain(domain_id),
    alias_name TEXT UNIQUE NOT NULL,
    alias_mount TEXT NOT NULL,
    alias_document_root TEXT NOT NULL DEFAULT '/htdocs',
    alias_ip_id INTEGER REFERENCES server_ips(ip_id),
    url_forward TEXT,
    type_forward TEXT,
    host_forward TEXT,
    external_mail TEXT NOT NULL DEFAULT 'off',
    alias_status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS subdomain_alias (
    subdomain_alias_id INTEGER PRIMARY KEY AUTOINCREMENT,
    alias_id INTEGER NOT NULL REFERENCES domain_aliases(alias_id),
    subdomain_alias_name TEXT NOT NULL,
    subdomain_alias_mount TEXT NOT NULL,
    subdomain_alias_document_root TEXT NOT NULL DEFAULT '/htdocs',
    subdomain_alias_url_forward TEXT,
    subdomain_alias_type_forward TEXT,
    subdomain_alias_host_forward TEXT,
    subdomain_alias_status TEXT NOT NULL DEFAULT 'toadd',
    UNIQUE (alias_id, subdomain_alias_name)
);

CREATE TABLE IF NOT EXISTS domain_dns (
    domain_dns_id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id INTEGER NOT NULL REFERENCES domain(domain_id),
    alias_id INTEGER REFERENCES domain_aliases(alias_id),
    domain_dns TEXT NOT NULL,
    domain_class TEXT NOT NULL DEFAULT 'IN',
    domain_type TEXT NOT NULL,
    domain_text TEXT NOT NULL,
    owned_by TEXT NOT NULL DEFAULT 'custom_dns_feature',
    domain_dns_status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS ftp_users (
    ftp_id INTEGER PRIMARY KEY AUTOINCREMENT,
    admin_id INTEGER NOT NULL REFERENCES admin(admin_id),
    userid TEXT UNIQUE NOT NULL,
    passwd TEXT NOT NULL,
    homedir TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS mail_users (
    mail_id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id INTEGER NOT NULL REFERENCES domain(domain_id),
    sub_id INTEGER NOT NULL DEFAULT 0,
    mail_acc TEXT NOT NULL,
    mail_pass TEXT NOT NULL DEFAULT '_no_',
    mail_forward TEXT NOT NULL DEFAULT '_no_',
    mail_type TEXT NOT NULL DEFAULT 'normal_mail',
    mail_auto_respond INTEGER NOT NULL DEFAULT 0,
    mail_auto_respond_text TEXT,
    quota INTEGER NOT NULL DEFAULT 0,
    mail_addr TEXT UNIQUE NOT NULL,
    status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS ssl_certs (
    cert_id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id INTEGER NOT NULL,
    domain_type TEXT NOT NULL CHECK (domain_type IN ('dmn', 'als', 'sub', 'subals')),
    private_key TEXT NOT NULL,
    certificate TEXT NOT NULL,
    ca_bundle TEXT,
    allow_hsts TEXT NOT NULL DEFAULT 'off',
    hsts_max_age INTEGER NOT NULL DEFAULT 31536000,
    hsts_include_subdomains TEXT NOT NULL DEFAULT 'off',
    status TEXT NOT NULL DEFAULT 'toadd',
    UNIQUE (domain_id, domain_type)
);

CREATE TABLE IF NOT EXISTS sql_database (
    sqld_id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id INTEGER NOT NULL REFERENCES domain(domain_id),
    sqld_name TEXT UNIQUE NOT NULL,
    status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS sql_user (
    sqlu_id INTEGER PRIMARY KEY AUTOINCREMENT,
    sqld_id INTEGER NOT NULL REFERENCES sql_database(sqld_id),
    sqlu_name TEXT NOT NULL,
    sqlu_host TEXT NOT NULL DEFAULT '%',
    sqlu_pass TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'toadd',
    UNIQUE (sqld_id, sqlu_name, sqlu_host)
);

CREATE TABLE IF NOT EXISTS plugin (
    plugin_id INTEGER PRIMARY KEY AUTOINCREMENT,
    plugin_name TEXT UNIQUE NOT NULL,
    plugin_config TEXT NOT NULL DEFAULT '{}',
    plugin_status TEXT NOT NULL DEFAULT 'toadd'
);

CREATE TABLE IF NOT EXISTS php_ini (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    admin_id INTEGER NOT NULL REFERENCES admin(admin_id),
    domain_id INTEGER NOT NULL,
    domain_type TEXT NOT NULL CHECK (domain_type IN ('dmn', 'als', 'sub', 'subals')),
    disable_functions TEXT,
    allow_url_fopen TEXT,
    display_errors TEXT,
    error_reporting TEXT,
    post_max_size INTEGER,
    upload_max_filesize INTEGER,
    max_execution_time INTEGER,
    max_input_time INTEGER,
    memory_limit INTEGER,
    UNIQUE (domain_id, domain_type)
);

CREATE TABLE IF NOT EXISTS status_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id INTEGER NOT NULL,
    old_status TEXT,
    new_status TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""


class EntityType(enum.StrEnum):
    USER = "user"
    SSL = "ssl"
    DOMAIN = "domain"
    SUBDOMAIN = "subdomain"
    ALIAS = "alias"
    SUBALIAS = "subalias"
    CUSTOM_DNS = "custom_dns"
    FTP_USER = "ftp_user"
    MAIL = "mail"
    SQL_DATABASE = "sql_database"
    SQL_USER = "sql_user"
    PLUGIN = "plugin"


@dataclass(frozen=True)
class EntityTable:
    table: str
    id_column: str
    status_column: str
    pending: frozenset[str]


_WEB_PENDING = frozenset({TOADD, TOCHANGE, TOENABLE, TODISABLE, TORESTORE, TODELETE})
_SERVICE_PENDING = frozenset({TOADD, TOCHANGE, TOENABLE, TODISABLE, TODELETE})
_SIMPLE_PENDING = frozenset({TOADD, TOCHANGE, TODELETE})

ENTITY_TABLES: dict[EntityType, EntityTable] = {
    EntityType.USER: EntityTable(
        "admin", "admin_id", "admin_status", frozenset({TOADD, TOCHANGE, TOCHANGEPWD, TODELETE})
    ),
    EntityType.SSL: EntityTable("ssl_certs", "cert_id", "status", _SIMPLE_PENDING),
    EntityType.DOMAIN: EntityTable("domain", "domain_id", "domain_status", _WEB_PENDING),
    EntityType.SUBDOMAIN: EntityTable(
        "subdomain", "subdomain_id", "subdomain_status", _WEB_PENDING
    ),
    EntityType.ALIAS: EntityTable("domain_aliases", "alias_id", "alias_status", _WEB_PENDING),
    EntityType.SUBALIAS: EntityTable(
        "subdomain_alias", "subdomain_alias_id", "subdomain_alias_status", _WEB_PENDING
    ),
    EntityType.CUSTOM_DNS: EntityTable(
        "domain_dns", "domain_dns_id", "domain_dns_status", _SIMPLE_PENDING
    ),
    EntityType.FTP_USER: EntityTable("ftp_users", "ftp_id", "status", _SERVICE_PENDING),
    EntityType.MAIL: EntityTable("mail_users", "mail_id", "status", _SERVICE_PENDING),
    EntityType.SQL_DATABASE: EntityTable("sql_database", "sqld_id", "status", _SIMPLE_PENDING),
    EntityType.SQL_USER: EntityTable("sql_user", "sqlu_id", "status", _SIMPLE_PENDING),
    EntityType.PLUGIN: EntityTable("plugin", "plugin_id", "plugin_status", _SERVICE_PENDING),
}

# ``domain_type`` value of each site entity in polymorphic tables (ssl_certs, php_ini).
SITE_KINDS: dict[EntityType, str] = {
    EntityType.DOMAIN: "dmn",
    EntityType.ALIAS: "als",
    EntityType.SUBDOMAIN: "sub",
    EntityType.SUBALIAS: "subals",
}

# Rows owned by an entity without a foreign key; removed with it.
_OWNED_ROWS: dict[EntityType, list[tuple[str, str]]] = {
    entity_type: [("php_ini", f"domain_id = ? AND domain_type = '{kind}'")]
    for entity_type, kind in SITE_KINDS.items()
}
_OWNED_ROWS[EntityType.USER] = [("php_ini", "admin_id = ?")]


class PendingRow(TypedDict):
    entity_type: str
    id: int
    status: str


class StatusHistoryRow(TypedDict):
    id: int
    entity_type: str
    entity_id: int
    old_status: str | None
    new_status: str | None
    created_at: str


def get_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=10000")
    conn.executescript(SCHEMA)

    current_version = conn.execute("PRAGMA user_version").fetchone()[0]
    if current_version < SCHEMA_VERSION:
        _create_indexes(conn)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        conn.commit()
    return conn


@contextlib.contextmanager
def connect(db_path: Path = DEFAULT_DB_PATH):
    """Context manager wrapper for get_connection().

    Usage:
        with connect() as conn:
            do_stuff(conn)
    # conn.close() is guaranteed even on exceptions.
    """
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def _create_indexes(conn: sqlite3.Connection) -> None:
    """Create non-PK indexes for the status scans and parent lookups. Idempotent."""
    conn.executescript("""
        CREATE INDEX IF NOT EXISTS idx_admin_status ON admin(admin_status);
        CREATE INDEX IF NOT EXISTS idx_domain_status ON domain(domain_status);
        CREATE INDEX IF NOT EXISTS idx_domain_admin ON domain(domain_admin_id);
        CREATE INDEX IF NOT EXISTS idx_subdomain_status ON subdomain(subdomain_status);
        CREATE INDEX IF NOT EXISTS idx_subdomain_domain ON subdomain(domain_id);
        CREATE INDEX IF NOT EXISTS idx_alias_status ON domain_aliases(alias_status);
        CREATE INDEX IF NOT EXISTS idx_alias_domain ON domain_aliases(domain_id);
        CREATE INDEX IF NOT EXISTS idx_subalias_status
            ON subdomain_alias(subdomain_alias_status);
        CREATE INDEX IF NOT EXISTS idx_subalias_alias ON subdomain_alias(alias_id);
        CREATE INDEX IF NOT EXISTS idx_dns_status ON domain_dns(domain_dns_status);
        CREATE INDEX IF NOT EXISTS idx_dns_domain ON domain_dns(domain_id, alias_id);
        CREATE INDEX IF NOT EXISTS idx_mail_status ON mail_users(status);
        CREATE INDEX IF NOT EXISTS idx_mail_domain ON mail_users(domain_id, sub_id);
        CREATE INDEX IF NOT EXISTS idx_ftp_status ON ftp_users(status);
        CREATE INDEX IF NOT EXISTS idx_ssl_status ON ssl_certs(status);
        CREATE INDEX IF NOT EXISTS idx_sqld_status ON sql_database(status);
        CREATE INDEX IF NOT EXISTS idx_sqlu_status ON sql_user(status);
        CREATE INDEX IF NOT EXISTS idx_status_history_entity
            ON status_history(entity_type, entity_id, created_at, id);
    """)


def entity_table(entity_type: EntityType | str) -> EntityTable:
    try:
        return ENTITY_TABLES[EntityType(entity_type)]
    except ValueError:
        valid = ", ".join(t.value for t in EntityType)
        raise ValueError(f"Unknown entity type '{entity_type}'. Must be one of: {valid}") from None


# -- Queue scans --


def list_pending(
    conn: sqlite3.Connection,
    entity_type: EntityType,
    statuses: Iterable[str] | None = None,
) -> list[PendingRow]:
    """List rows of one entity type waiting on one of ``statuses``, by id ascending."""
    meta = entity_table(entity_type)
    wanted = sorted(meta.pending if statuses is None else set(statuses) & meta.pending)
    if not wanted:
        return []
    placeholders = ", ".join("?" for _ in wanted)
    rows = conn.execute(
        f"SELECT {meta.id_column} AS id, {meta.status_column} AS status FROM {meta.table} "
        f"WHERE {meta.status_column} IN ({placeholders}) ORDER BY {meta.id_column} ASC",
        wanted,
    ).fetchall()
    return [
        {"entity_type": entity_type.value, "id": row["id"], "status": row["status"]}
        for row in rows
    ]


def snapshot_pending(
    conn: sqlite3.Connection,
    stages: Sequence[tuple[EntityType, frozenset[str] | None]],
) -> list[PendingRow]:
    """Collect pending rows for every stage inside one read transaction.

    The returned list is the pass's work list: rows queued after this call
    are left for the next pass.
    """
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN")
    try:
        rows: list[PendingRow] = []
        for entity_type, statuses in stages:
            rows.extend(list_pending(conn, entity_type, statuses))
    finally:
        conn.commit()
    return rows


def get_status(
    conn: sqlite3.Connection, entity_type: EntityType | str, entity_id: int
) -> str | None:
    """Current status of a row, or None if the row does not exist."""
    meta = entity_table(entity_type)
    row = conn.execute(
        f"SELECT {meta.status_column} AS status FROM {meta.table} WHERE {meta.id_column} = ?",
        (entity_id,),
    ).fetchone()
    return row["status"] if row else None


def count_statuses(conn: sqlite3.Connection) -> dict[str, dict[str, int]]:
    """Per entity type: number of rows pending, stable, and in error."""
    result: dict[str, dict[str, int]] = {}
    for entity_type, meta in ENTITY_TABLES.items():
        counts = {"pending": 0, "ok": 0, "disabled": 0, "error": 0}
        rows = conn.execute(
            f"SELECT {meta.status_column} AS status, COUNT(*) AS n FROM {meta.table} "
            f"GROUP BY {meta.status_column}"
        ).fetchall()
        for row in rows:
            status = row["status"]
            if status in PENDING_STATUSES:
                counts["pending"] += row["n"]
            elif is_error(status):
                counts["error"] += row["n"]
            else:
                counts[status] += row["n"]
        result[entity_type.value] = counts
    return result


def list_error_rows(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """All rows whose status holds diagnostic text, across entity types."""
    stable = sorted(PENDING_STATUSES | {"ok", "disabled"})
    placeholders = ", ".join("?" for _ in stable)
    errors: list[dict[str, Any]] = []
    for entity_type, meta in ENTITY_TABLES.items():
        rows = conn.execute(
            f"SELECT {meta.id_column} AS id, {meta.status_column} AS status FROM {meta.table} "
            f"WHERE {meta.status_column} NOT IN ({placeholders}) ORDER BY {meta.id_column}",
            stable,
        ).fetchall()
        errors.extend(
            {"entity_type": entity_type.value, "id": row["id"], "error": row["status"]}
            for row in rows
        )
    return errors


# -- Status writes --


def record_status_change(
    conn: sqlite3.Connection,
    *,
    entity_type: str,
    entity_id: int,
    old_status: str | None,
    new_status: str | None,
) -> None:
    """Append a status transition.  ``new_status`` None means the row was removed.

    This helper does not commit so callers can keep the history insert in
    the same transaction as the status write.
    """
    if old_status == new_status:
        return
    conn.execute(
        "INSERT INTO status_history (entity_type, entity_id, old_status, new_status) "
        "VALUES (?, ?, ?, ?)",
        (entity_type, entity_id, old_status, new_status),
    )


def list_status_history(
    conn: sqlite3.Connection, *, entity_type: str, entity_id: int
) -> list[StatusHistoryRow]:
    """List status history oldest-first for one entity."""
    rows = conn.execute(
        "SELECT id, entity_type, entity_id, old_status, new_status, created_at "
        "FROM status_history WHERE entity_type = ? AND entity_id = ? "
        "ORDER BY created_at, id",
        (entity_type, entity_id),
    ).fetchall()
    return [dict(row) for row in rows]  # type: ignore[misc]


def commit_outcome(
    conn: sqlite3.Connection,
    entity_type: EntityType,
    entity_id: int,
    old_status: str,
    outcome: Outcome,
) -> None:
    """Persist the result of processing one row in a single transaction.

    A removed outcome deletes the row together with the rows it owns (see
    ``_OWNED_ROWS``); anything else overwrites the status.
    On failure the transaction is rolled back and the error re-raised.
    """
    meta = entity_table(entity_type)
    try:
        if outcome.removed:
            for table, where in _OWNED_ROWS.get(entity_type, []):
                conn.execute(f"DELETE FROM {table} WHERE {where}", (entity_id,))
            conn.execute(
                f"DELETE FROM {meta.table} WHERE {meta.id_column} = ?", (entity_id,)
            )
        else:
            conn.execute(
                f"UPDATE {meta.table} SET {meta.status_column} = ? WHERE {meta.id_column} = ?",
                (outcome.value, entity_id),
            )
        record_status_change(
            conn,
            entity_type=entity_type.value,
            entity_id=entity_id,
            old_status=old_status,
            new_status=outcome.value,
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise


def cascade_status(
    conn: sqlite3.Connection,
    entity_type: EntityType,
    *,
    where: str,
    params: Sequence[Any],
    from_statuses: Iterable[str],
    to_status: str,
) -> int:
    """Move matching child rows from one of ``from_statuses`` to ``to_status``.

    Rows in any other status (pending work, deletion, error text) are left
    untouched.  Commits and returns the number of rows moved.
    """
    meta = entity_table(entity_type)
    current = sorted(set(from_statuses))
    placeholders = ", ".join("?" for _ in current)
    try:
        rows = conn.execute(
            f"SELECT {meta.id_column} AS id, {meta.status_column} AS status FROM {meta.table} "
            f"WHERE ({where}) AND {meta.status_column} IN ({placeholders})",
            (*params, *current),
        ).fetchall()
        for row in rows:
            conn.execute(
                f"UPDATE {meta.table} SET {meta.status_column} = ? "
                f"WHERE {meta.id_column} = ? AND {meta.status_column} = ?",
                (to_status, row["id"], row["status"]),
            )
            record_status_change(
                conn,
                entity_type=entity_type.value,
                entity_id=row["id"],
                old_status=row["status"],
                new_status=to_status,
            )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    return len(rows)


# -- Administrative layer --


def schedule(
    conn: sqlite3.Connection, entity_type: EntityType | str, entity_id: int, status: str
) -> bool:
    """Queue work on a row by setting a pending keyword the type accepts.

    Returns False if the row does not exist.  Raises ValueError for a keyword
    the entity type does not process.
    """
    meta = entity_table(entity_type)
    if status not in meta.pending:
        raise ValueError(
            f"Invalid status '{status}' for {EntityType(entity_type).value}. "
            f"Must be one of: {', '.join(sorted(meta.pending))}"
        )
    old_status = get_status(conn, entity_type, entity_id)
    if old_status is None:
        return False
    conn.execute(
        f"UPDATE {meta.table} SET {meta.status_column} = ? WHERE {meta.id_column} = ?",
        (status, entity_id),
    )
    record_status_change(
        conn,
        entity_type=EntityType(entity_type).value,
        entity_id=entity_id,
        old_status=old_status,
        new_status=status,
    )
    conn.commit()
    return True


def requeue(
    conn: sqlite3.Connection,
    entity_type: EntityType | str,
    entity_id: int,
    status: str = TOCHANGE,
) -> bool:
    """Re-queue a row stuck in error text.  Rows not in error are left alone."""
    current = get_status(conn, entity_type, entity_id)
    if current is None or not is_error(current):
        return False
    return schedule(conn, entity_type, entity_id, status)


def _insert(conn: sqlite3.Connection, table: str, values: Mapping[str, Any]) -> int:
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    cursor = conn.execute(
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(values.values())
    )
    conn.commit()
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def add_user(
    conn: sqlite3.Connection, name: str, *, password_hash: str = "", status: str = TOADD
) -> int:
    return _insert(
        conn, "admin", {"admin_name": name, "admin_pass": password_hash, "admin_status": status}
    )


def add_server_ip(conn: sqlite3.Connection, ip_number: str) -> int:
    return _insert(conn, "server_ips", {"ip_number": ip_number})


def add_domain(
    conn: sqlite3.Connection,
    name: str,
    admin_id: int,
    *,
    ip_id: int | None = None,
    status: str = TOADD,
    **extra: Any,
) -> int:
    return _insert(
        conn,
        "domain",
        {
            "domain_name": name,
            "domain_admin_id": admin_id,
            "domain_ip_id": ip_id,
            "domain_status": status,
            **extra,
        },
    )


def add_subdomain(
    conn: sqlite3.Connection,
    domain_id: int,
    name: str,
    *,
    mount: str | None = None,
    status: str = TOADD,
    **extra: Any,
) -> int:
    return _insert(
        conn,
        "subdomain",
        {
            "domain_id": domain_id,
            "subdomain_name": name,
            "subdomain_mount": mount or f"/{name}",
            "subdomain_status": status,
            **extra,
        },
    )


def add_alias(
    conn: sqlite3.Connection,
    domain_id: int,
    name: str,
    *,
    mount: str | None = None,
    ip_id: int | None = None,
    status: str = TOADD,
    **extra: Any,
) -> int:
    return _insert(
        conn,
        "domain_aliases",
        {
            "domain_id": domain_id,
            "alias_name": name,
            "alias_mount": mount or f"/{name}",
            "alias_ip_id": ip_id,
            "alias_status": status,
            **extra,
        },
    )


def add_subalias(
    conn: sqlite3.Connection,
    alias_id: int,
    name: str,
    *,
    mount: str | None = None,
    status: str = TOADD,
    **extra: Any,
) -> int:
    return _insert(
        conn,
        "subdomain_alias",
        {
            "alias_id": alias_id,
            "subdomain_alias_name": name,
            "subdomain_alias_mount": mount or f"/{name}",
            "subdomain_alias_status": status,
            **extra,
        },
    )


def add_custom_dns(
    conn: sqlite3.Connection,
    domain_id: int,
    name: str,
    record_type: str,
    data: str,
    *,
    alias_id: int | None = None,
    status: str = TOADD,
) -> int:
    return _insert(
        conn,
        "domain_dns",
        {
            "domain_id": domain_id,
            "alias_id": alias_id,
            "domain_dns": name,
            "domain_type": record_type.upper(),
            "domain_text": data,
            "domain_dns_status": status,
        },
    )


def add_ftp_user(
    conn: sqlite3.Connection,
    admin_id: int,
    userid: str,
    password_hash: str,
    homedir: str,
    *,
    status: str = TOADD,
) -> int:
    return _insert(
        conn,
        "ftp_users",
        {
            "admin_id": admin_id,
            "userid": userid,
            "passwd": password_hash,
            "homedir": homedir,
            "status": status,
        },
    )


def add_mail(
    conn: sqlite3.Connection,
    domain_id: int,
    address: str,
    *,
    mail_type: str = "normal_mail",
    password_hash: str = "_no_",
    forward: str = "_no_",
    sub_id: int = 0,
    quota: int = 0,
    status: str = TOADD,
) -> int:
    account = address.split("@", 1)[0]
    return _insert(
        conn,
        "mail_users",
        {
            "domain_id": domain_id,
            "sub_id": sub_id,
            "mail_acc": account,
            "mail_pass": password_hash,
            "mail_forward": forward,
            "mail_type": mail_type,
            "quota": quota,
            "mail_addr": address,
            "status": status,
        },
    )


def add_ssl_cert(
    conn: sqlite3.Connection,
    domain_id: int,
    domain_type: str,
    private_key: str,
    certificate: str,
    *,
    ca_bundle: str | None = None,
    allow_hsts: bool = False,
    status: str = TOADD,
) -> int:
    return _insert(
        conn,
        "ssl_certs",
        {
            "domain_id": domain_id,
            "domain_type": domain_type,
            "private_key": private_key,
            "certificate": certificate,
            "ca_bundle": ca_bundle,
            "allow_hsts": "on" if allow_hsts else "off",
            "status": status,
        },
    )


def add_sql_database(
    conn: sqlite3.Connection, domain_id: int, name: str, *, status: str = TOADD
) -> int:
    return _insert(
        conn, "sql_database", {"domain_id": domain_id, "sqld_name": name, "status": status}
    )


def add_sql_user(
    conn: sqlite3.Connection,
    sqld_id: int,
    name: str,
    password_hash: str,
    *,
    host: str = "%",
    status: str = TOADD,
) -> int:
    return _insert(
        conn,
        "sql_user",
        {
            "sqld_id": sqld_id,
            "sqlu_name": name,
            "sqlu_host": host,
            "sqlu_pass": password_hash,
            "status": status,
        },
    )


def add_plugin(
    conn: sqlite3.Connection, name: str, *, config_json: str = "{}", status: str = TOADD
) -> int:
    return _insert(
        conn,
        "plugin",
        {"plugin_name": name, "plugin_config": config_json, "plugin_status": status},
    )


def set_php_ini(
    conn: sqlite3.Connection,
    admin_id: int,
    domain_id: int,
    domain_type: str,
    **settings: Any,
) -> int:
    conn.execute(
        "DELETE FROM php_ini WHERE domain_id = ? AND domain_type = ?", (domain_id, domain_type)
    )
    return _insert(
        conn,
        "php_ini",
        {"admin_id": admin_id, "domain_id": domain_id, "domain_type": domain_type, **settings},
    )


def get_php_ini(conn: sqlite3.Connection, domain_id: int, domain_type: str) -> dict[str, Any]:
    row = conn.execute(
        "SELECT * FROM php_ini WHERE domain_id = ? AND domain_type = ?", (domain_id, domain_type)
    ).fetchone()
    return dict(row) if row else {}


def inspect_sqlite_integrity(conn: sqlite3.Connection) -> dict:
    """Run PRAGMA integrity_check and normalize output for diagnostics."""
    rows = conn.execute("PRAGMA integrity_check").fetchall()
    normalized: list[str] = []
    for row in rows:
        text = str(row[0]).strip() if row and row[0] is not None else ""
        if text:
            normalized.append(text)

    if not normalized:
        return {
            "ok": False,
            "rows": [],
            "failures": ["integrity_check returned no rows"],
        }

    failures = [row for row in normalized if row.lower() != "ok"]
    return {"ok": not failures, "rows": normalized, "failures": failures}

