"""Tests for parent -> child status propagation."""

from __future__ import annotations

import pytest

from hostpanel import db
from hostpanel.cascade import CASCADE_RULES, apply_cascades, rules_for
from hostpanel.db import EntityType
from hostpanel.modules import EngineContext, Reconciler, get_module
from hostpanel.status import Result


@pytest.fixture()
def site(db_conn):
    user_id = db.add_user(db_conn, "alice", status="ok")
    domain_id = db.add_domain(db_conn, "example.test", user_id, status="ok")
    return user_id, domain_id


def _row(conn, entity_type, entity_id):
    meta = db.entity_table(entity_type)
    row = conn.execute(
        f"SELECT *, {meta.id_column} AS id FROM {meta.table} WHERE {meta.id_column} = ?",
        (entity_id,),
    ).fetchone()
    return dict(row)


def test_rules_are_selected_by_parent_and_status():
    targets = {r.child for r in rules_for(EntityType.DOMAIN, "todisable")}
    assert targets == {EntityType.SUBDOMAIN, EntityType.ALIAS}
    assert rules_for(EntityType.DOMAIN, "todelete") == []
    assert rules_for(EntityType.MAIL, "toadd") == []


def test_every_rule_only_moves_settled_children():
    for rule in CASCADE_RULES:
        assert rule.from_statuses, rule
        assert not (rule.from_statuses & {"toadd", "todelete"}), rule


def test_domain_disable_moves_ok_children_only(db_conn, site):
    _, domain_id = site
    sub_ok = db.add_subdomain(db_conn, domain_id, "blog", status="ok")
    sub_deleting = db.add_subdomain(db_conn, domain_id, "shop", status="todelete")
    sub_broken = db.add_subdomain(db_conn, domain_id, "wiki", status="vhost write failed")
    alias_ok = db.add_alias(db_conn, domain_id, "other.test", status="ok")

    result = apply_cascades(
        db_conn, EntityType.DOMAIN, "todisable", _row(db_conn, "domain", domain_id)
    )

    assert result
    assert db.get_status(db_conn, "subdomain", sub_ok) == "todisable"
    assert db.get_status(db_conn, "subdomain", sub_deleting) == "todelete"
    assert db.get_status(db_conn, "subdomain", sub_broken) == "vhost write failed"
    assert db.get_status(db_conn, "alias", alias_ok) == "todisable"
    history = db.list_status_history(db_conn, entity_type="subdomain", entity_id=sub_ok)
    assert [(h["old_status"], h["new_status"]) for h in history] == [("ok", "todisable")]


def test_domain_enable_wakes_disabled_children(db_conn, site):
    _, domain_id = site
    sub_id = db.add_subdomain(db_conn, domain_id, "blog", status="disabled")
    sub_ok = db.add_subdomain(db_conn, domain_id, "shop", status="ok")

    apply_cascades(db_conn, EntityType.DOMAIN, "toenable", _row(db_conn, "domain", domain_id))

    assert db.get_status(db_conn, "subdomain", sub_id) == "toenable"
    assert db.get_status(db_conn, "subdomain", sub_ok) == "ok"


def test_alias_change_refreshes_its_records_only(db_conn, site):
    _, domain_id = site
    alias_id = db.add_alias(db_conn, domain_id, "other.test", status="ok")
    alias_record = db.add_custom_dns(
        db_conn, domain_id, "txt", "TXT", '"v=spf1 -all"', alias_id=alias_id, status="ok"
    )
    domain_record = db.add_custom_dns(db_conn, domain_id, "mx2", "MX", "20 mx.test.", status="ok")

    apply_cascades(db_conn, EntityType.ALIAS, "tochange", _row(db_conn, "alias", alias_id))

    assert db.get_status(db_conn, "custom_dns", alias_record) == "tochange"
    assert db.get_status(db_conn, "custom_dns", domain_record) == "ok"


def test_certificate_rule_matches_site_kind(db_conn, site, pem_pair):
    _, domain_id = site
    alias_id = db.add_alias(db_conn, domain_id, "other.test", status="ok")
    key, cert = pem_pair
    cert_id = db.add_ssl_cert(db_conn, alias_id, "als", key, cert)

    apply_cascades(db_conn, EntityType.SSL, "toadd", _row(db_conn, "ssl", cert_id))

    assert db.get_status(db_conn, "alias", alias_id) == "tochange"
    # Same numeric id, different site kind.
    assert db.get_status(db_conn, "domain", domain_id) == "ok"


def test_certificate_install_queues_vhost_rewrite(
    db_conn, engine_config, services, site, pem_pair
):
    _, domain_id = site
    ctx = EngineContext(conn=db_conn, config=engine_config, services=services)
    db.schedule(db_conn, "domain", domain_id, "tochange")
    Reconciler(ctx, get_module("domain")).process(domain_id)
    key, cert = pem_pair
    cert_id = db.add_ssl_cert(db_conn, domain_id, "dmn", key, cert, allow_hsts=True)

    assert Reconciler(ctx, get_module("ssl")).process(cert_id).value == "ok"
    assert db.get_status(db_conn, "domain", domain_id) == "tochange"

    Reconciler(ctx, get_module("domain")).process(domain_id)

    vhost = (engine_config.httpd_vhost_dir / "example.test.conf").read_text()
    assert "<VirtualHost 192.0.2.10:443>" in vhost
    assert f"SSLCertificateFile {engine_config.ssl_cert_dir / 'example.test.pem'}" in vhost
    assert 'Strict-Transport-Security "max-age=31536000"' in vhost


def test_failed_parent_does_not_cascade(db_conn, engine_config, services, site):
    _, domain_id = site
    sub_id = db.add_subdomain(db_conn, domain_id, "blog", status="ok")
    ctx = EngineContext(conn=db_conn, config=engine_config, services=services)
    db.schedule(db_conn, "domain", domain_id, "todisable")
    ctx.events.register("before_disable_domain", lambda e: Result.fail("refused"))

    outcome = Reconciler(ctx, get_module("domain")).process(domain_id)

    assert outcome.value == "refused"
    assert db.get_status(db_conn, "subdomain", sub_id) == "ok"
