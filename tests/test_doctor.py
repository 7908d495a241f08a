"""Tests for doctor health-check orchestration."""

from __future__ import annotations

from unittest.mock import patch

from hostpanel import db
from hostpanel.doctor import run_doctor
from hostpanel.lock import HostLock

_QUEUES_OK = {
    "ok": True,
    "queues": {"hostpanel:passes": {"queued": 0, "running": 0, "failed": 0}},
    "error_type": None,
    "error": None,
}


def _make_roots(config) -> None:
    for path in (
        config.user_web_dir,
        config.httpd_vhost_dir,
        config.named_zone_dir,
        config.mail_root,
        config.mta_map_dir,
        config.ssl_cert_dir,
        config.php_ini_dir,
        config.ftpd_passwd_path.parent,
    ):
        path.mkdir(parents=True, exist_ok=True)


def _checks(report) -> dict:
    return {check["name"]: check for check in report["checks"]}


def test_run_doctor_all_pass(db_conn, engine_config):
    _make_roots(engine_config)

    with patch("hostpanel.doctor.get_queue_counts_safe", return_value=_QUEUES_OK):
        report = run_doctor(engine_config)

    assert report["status"] == "pass"
    assert report["summary"] == "5 checks passed, 0 warnings, 0 failed."
    checks = _checks(report)
    assert set(checks) == {"sqlite", "lock", "entity_errors", "service_roots", "redis"}
    for check in report["checks"]:
        assert check["summary"]
        assert isinstance(check["findings"], list)
    assert "fix_actions" not in report


def test_rows_in_error_are_reported(db_conn, engine_config):
    _make_roots(engine_config)
    user_id = db.add_user(db_conn, "alice", status="ok")
    domain_id = db.add_domain(db_conn, "example.test", user_id, status="zone write failed")
    db.add_domain(db_conn, "other.test", user_id)

    with patch("hostpanel.doctor.get_queue_counts_safe", return_value=_QUEUES_OK):
        report = run_doctor(engine_config)

    check = _checks(report)["entity_errors"]
    assert report["status"] == "warning"
    assert check["status"] == "warning"
    assert check["summary"] == (
        "1 row(s) in error need `hostpanel requeue`; 1 row(s) pending."
    )
    assert check["findings"][0]["message"] == f"domain {domain_id}: zone write failed"


def test_redis_unavailable_is_a_warning(db_conn, engine_config):
    _make_roots(engine_config)
    counts = {
        "ok": False,
        "queues": {},
        "error_type": "ConnectionError",
        "error": "Error 111 connecting to localhost:6379.",
    }

    with patch("hostpanel.doctor.get_queue_counts_safe", return_value=counts):
        report = run_doctor(engine_config)

    check = _checks(report)["redis"]
    assert check["status"] == "warning"
    assert check["findings"][0]["message"].startswith("ConnectionError: Error 111")
    assert report["status"] == "warning"


def test_failed_pass_jobs_are_a_warning(db_conn, engine_config):
    _make_roots(engine_config)
    counts = {
        **_QUEUES_OK,
        "queues": {"hostpanel:passes": {"queued": 0, "running": 0, "failed": 2}},
    }

    with patch("hostpanel.doctor.get_queue_counts_safe", return_value=counts):
        report = run_doctor(engine_config)

    assert _checks(report)["redis"]["status"] == "warning"


def test_held_lock_and_missing_roots(db_conn, engine_config):
    with (
        patch("hostpanel.doctor.get_queue_counts_safe", return_value=_QUEUES_OK),
        HostLock(engine_config.lock_path),
    ):
        report = run_doctor(engine_config)

    checks = _checks(report)
    assert checks["lock"]["status"] == "warning"
    assert checks["service_roots"]["status"] == "warning"
    assert len(checks["service_roots"]["findings"]) == 8
    assert report["summary"] == "3 checks passed, 2 warnings, 0 failed."


def test_unreadable_store_fails(engine_config):
    _make_roots(engine_config)
    engine_config.db_path.mkdir()

    with patch("hostpanel.doctor.get_queue_counts_safe", return_value=_QUEUES_OK):
        report = run_doctor(engine_config)

    checks = _checks(report)
    assert report["status"] == "fail"
    assert checks["sqlite"]["status"] == "fail"
    assert checks["entity_errors"]["status"] == "fail"


def test_fix_flushes_failed_jobs(db_conn, engine_config):
    _make_roots(engine_config)

    with (
        patch("hostpanel.doctor.get_queue_counts_safe", return_value=_QUEUES_OK),
        patch("hostpanel.doctor.flush_failed_jobs", return_value=3),
    ):
        report = run_doctor(engine_config, fix=True)

    assert report["fix_actions"] == {"failed_jobs_flushed": 3}


def test_fix_without_redis_reports_nothing_flushed(db_conn, engine_config):
    _make_roots(engine_config)

    with (
        patch("hostpanel.doctor.get_queue_counts_safe", return_value=_QUEUES_OK),
        patch("hostpanel.doctor.flush_failed_jobs", side_effect=ConnectionError("down")),
    ):
        report = run_doctor(engine_config, fix=True)

    assert report["fix_actions"] == {"failed_jobs_flushed": 0}
