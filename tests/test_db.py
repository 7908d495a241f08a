"""Tests for the entity store."""

import sqlite3

import pytest

from hostpanel.db import (
    SCHEMA_VERSION,
    EntityType,
    add_alias,
    add_domain,
    add_subdomain,
    add_user,
    cascade_status,
    commit_outcome,
    connect,
    count_statuses,
    get_connection,
    get_status,
    inspect_sqlite_integrity,
    list_error_rows,
    list_pending,
    list_status_history,
    requeue,
    schedule,
    snapshot_pending,
)
from hostpanel.status import Outcome, StatusKind


def _user_and_domain(conn, *, domain_status="toadd"):
    admin_id = add_user(conn, "alice", status="ok")
    domain_id = add_domain(conn, "example.test", admin_id, status=domain_status)
    return admin_id, domain_id


def test_schema_version_is_set(db_conn):
    assert db_conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
    assert db_conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1


def test_connect_closes_connection(tmp_path):
    with connect(tmp_path / "x.db") as conn:
        conn.execute("SELECT 1")
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


def test_list_pending_orders_by_primary_key(db_conn):
    admin_id, domain_id = _user_and_domain(db_conn, domain_status="ok")
    second = add_subdomain(db_conn, domain_id, "b", status="tochange")
    first = add_subdomain(db_conn, domain_id, "a", status="toadd")
    add_subdomain(db_conn, domain_id, "c", status="ok")

    rows = list_pending(db_conn, EntityType.SUBDOMAIN)
    assert [r["id"] for r in rows] == sorted([first, second])
    assert {r["status"] for r in rows} == {"toadd", "tochange"}


def test_list_pending_ignores_keywords_the_type_does_not_accept(db_conn):
    add_user(db_conn, "bob", status="todisable")
    assert list_pending(db_conn, EntityType.USER) == []


def test_snapshot_follows_stage_order(db_conn):
    admin_id = add_user(db_conn, "alice", status="toadd")
    domain_id = add_domain(db_conn, "example.test", admin_id, status="toadd")
    add_subdomain(db_conn, domain_id, "www2", status="toadd")

    rows = snapshot_pending(
        db_conn,
        [
            (EntityType.SUBDOMAIN, None),
            (EntityType.USER, frozenset({"toadd"})),
            (EntityType.DOMAIN, None),
        ],
    )
    assert [r["entity_type"] for r in rows] == ["subdomain", "user", "domain"]
    assert not db_conn.in_transaction


def test_commit_outcome_updates_and_records_history(db_conn):
    _, domain_id = _user_and_domain(db_conn)
    ok = Outcome(StatusKind.TERMINAL, "ok")
    commit_outcome(db_conn, EntityType.DOMAIN, domain_id, "toadd", ok)

    assert get_status(db_conn, EntityType.DOMAIN, domain_id) == "ok"
    history = list_status_history(db_conn, entity_type="domain", entity_id=domain_id)
    assert [(h["old_status"], h["new_status"]) for h in history] == [("toadd", "ok")]


def test_commit_outcome_removes_row(db_conn):
    admin_id = add_user(db_conn, "alice", status="todelete")
    commit_outcome(db_conn, EntityType.USER, admin_id, "todelete", Outcome.removed_row())

    assert get_status(db_conn, EntityType.USER, admin_id) is None
    history = list_status_history(db_conn, entity_type="user", entity_id=admin_id)
    assert history[-1]["new_status"] is None


def test_commit_outcome_rolls_back_on_integrity_error(db_conn):
    _, domain_id = _user_and_domain(db_conn, domain_status="todelete")
    add_subdomain(db_conn, domain_id, "blog", status="ok")

    with pytest.raises(sqlite3.IntegrityError):
        commit_outcome(
            db_conn, EntityType.DOMAIN, domain_id, "todelete", Outcome.removed_row()
        )
    assert get_status(db_conn, EntityType.DOMAIN, domain_id) == "todelete"
    assert not db_conn.in_transaction


def test_cascade_status_only_moves_rows_in_from_statuses(db_conn):
    _, domain_id = _user_and_domain(db_conn, domain_status="ok")
    live = add_subdomain(db_conn, domain_id, "a", status="ok")
    deleting = add_subdomain(db_conn, domain_id, "b", status="todelete")
    pending = add_subdomain(db_conn, domain_id, "c", status="toadd")
    failed = add_subdomain(db_conn, domain_id, "d", status="httpd: boom")

    moved = cascade_status(
        db_conn,
        EntityType.SUBDOMAIN,
        where="domain_id = ?",
        params=(domain_id,),
        from_statuses={"ok"},
        to_status="todisable",
    )

    assert moved == 1
    assert get_status(db_conn, EntityType.SUBDOMAIN, live) == "todisable"
    assert get_status(db_conn, EntityType.SUBDOMAIN, deleting) == "todelete"
    assert get_status(db_conn, EntityType.SUBDOMAIN, pending) == "toadd"
    assert get_status(db_conn, EntityType.SUBDOMAIN, failed) == "httpd: boom"


def test_schedule_sets_keyword_and_history(db_conn):
    _, domain_id = _user_and_domain(db_conn, domain_status="ok")
    assert schedule(db_conn, EntityType.DOMAIN, domain_id, "todisable")
    assert get_status(db_conn, EntityType.DOMAIN, domain_id) == "todisable"
    history = list_status_history(db_conn, entity_type="domain", entity_id=domain_id)
    assert history[-1]["old_status"] == "ok"


def test_schedule_rejects_keyword_not_accepted_by_type(db_conn):
    admin_id = add_user(db_conn, "alice", status="ok")
    with pytest.raises(ValueError, match="Invalid status 'todisable' for user"):
        schedule(db_conn, EntityType.USER, admin_id, "todisable")


def test_schedule_missing_row(db_conn):
    assert schedule(db_conn, EntityType.DOMAIN, 999, "tochange") is False


def test_requeue_only_touches_error_rows(db_conn):
    admin_id, domain_id = _user_and_domain(db_conn, domain_status="named: zone missing")
    other = add_domain(db_conn, "other.test", admin_id, status="ok")

    assert requeue(db_conn, EntityType.DOMAIN, domain_id)
    assert get_status(db_conn, EntityType.DOMAIN, domain_id) == "tochange"
    assert requeue(db_conn, EntityType.DOMAIN, other) is False
    assert get_status(db_conn, EntityType.DOMAIN, other) == "ok"


def test_count_statuses_and_error_rows(db_conn):
    _, domain_id = _user_and_domain(db_conn, domain_status="ok")
    add_alias(db_conn, domain_id, "alias.test", status="toadd")
    broken = add_alias(db_conn, domain_id, "broken.test", status="httpd: denied")

    counts = count_statuses(db_conn)
    assert counts["alias"] == {"pending": 1, "ok": 0, "disabled": 0, "error": 1}
    assert counts["domain"]["ok"] == 1
    assert counts["user"]["ok"] == 1

    assert list_error_rows(db_conn) == [
        {"entity_type": "alias", "id": broken, "error": "httpd: denied"}
    ]


def test_inspect_sqlite_integrity_ok(tmp_path):
    conn = get_connection(tmp_path / "fresh.db")
    try:
        result = inspect_sqlite_integrity(conn)
    finally:
        conn.close()
    assert result["ok"] is True
    assert result["failures"] == []
