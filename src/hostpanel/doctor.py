"""Health checks for a hostpanel installation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, TypedDict

from hostpanel.config import EngineConfig
from hostpanel.db import connect, count_statuses, inspect_sqlite_integrity, list_error_rows
from hostpanel.errors import InfrastructureError
from hostpanel.lock import lock_is_held
from hostpanel.queue import flush_failed_jobs, get_queue_counts_safe

Status = Literal["pass", "warning", "fail"]
_STATUS_RANK: dict[Status, int] = {"pass": 0, "warning": 1, "fail": 2}
_MAX_ERROR_FINDINGS = 20


class _CheckFindingRequired(TypedDict):
    status: Status
    message: str


class CheckFinding(_CheckFindingRequired, total=False):
    details: dict[str, object]


class CheckReport(TypedDict):
    name: str
    status: Status
    summary: str
    findings: list[CheckFinding]


class _DoctorReportRequired(TypedDict):
    status: Status
    summary: str
    checks: list[CheckReport]


class DoctorReport(_DoctorReportRequired, total=False):
    fix_actions: dict[str, int]


def run_doctor(config: EngineConfig, *, fix: bool = False) -> DoctorReport:
    """Run all health checks; with ``fix`` also clear failed pass jobs."""
    checks = [
        _check_sqlite_integrity(config.db_path),
        _check_lock(config.lock_path),
        _check_entity_errors(config.db_path),
        _check_service_roots(config),
        _check_redis(),
    ]
    report: DoctorReport = {
        "status": _worst_status([check["status"] for check in checks]),
        "summary": _report_summary(checks),
        "checks": checks,
    }
    if fix:
        try:
            flushed = flush_failed_jobs()
        except Exception:
            flushed = 0
        report["fix_actions"] = {"failed_jobs_flushed": flushed}
    return report


def _worst_status(statuses: list[Status]) -> Status:
    if not statuses:
        return "pass"
    return max(statuses, key=lambda s: _STATUS_RANK[s])


def _report_summary(checks: list[CheckReport]) -> str:
    counts: dict[Status, int] = {"pass": 0, "warning": 0, "fail": 0}
    for check in checks:
        counts[check["status"]] += 1
    return f"{counts['pass']} checks passed, {counts['warning']} warnings, {counts['fail']} failed."


def _check_sqlite_integrity(db_path: Path) -> CheckReport:
    try:
        with connect(db_path) as conn:
            result = inspect_sqlite_integrity(conn)
    except Exception as exc:
        return {
            "name": "sqlite",
            "status": "fail",
            "summary": "SQLite is unavailable.",
            "findings": [
                {"status": "fail", "message": f"Failed to open database {db_path}: {exc}"}
            ],
        }

    if result["ok"]:
        return {
            "name": "sqlite",
            "status": "pass",
            "summary": "SQLite integrity check passed.",
            "findings": [{"status": "pass", "message": f"Database integrity is OK: {db_path}"}],
        }
    return {
        "name": "sqlite",
        "status": "fail",
        "summary": f"SQLite integrity check failed with {len(result['failures'])} issue(s).",
        "findings": [
            {"status": "fail", "message": message, "details": {"database": str(db_path)}}
            for message in result["failures"]
        ],
    }


def _check_lock(lock_path: Path) -> CheckReport:
    try:
        held = lock_is_held(lock_path)
    except InfrastructureError as exc:
        return {
            "name": "lock",
            "status": "fail",
            "summary": "Host lock is unusable; passes cannot run.",
            "findings": [{"status": "fail", "message": str(exc)}],
        }
    if held:
        return {
            "name": "lock",
            "status": "warning",
            "summary": "A pass is running (host lock held).",
            "findings": [{"status": "warning", "message": f"{lock_path} is locked"}],
        }
    return {
        "name": "lock",
        "status": "pass",
        "summary": "Host lock is free.",
        "findings": [{"status": "pass", "message": f"{lock_path} can be locked"}],
    }


def _check_entity_errors(db_path: Path) -> CheckReport:
    try:
        with connect(db_path) as conn:
            errors = list_error_rows(conn)
            counts = count_statuses(conn)
    except Exception as exc:
        return {
            "name": "entity_errors",
            "status": "fail",
            "summary": "Entity status check could not run.",
            "findings": [{"status": "fail", "message": f"Failed to query {db_path}: {exc}"}],
        }

    pending = sum(c["pending"] for c in counts.values())
    if not errors:
        return {
            "name": "entity_errors",
            "status": "pass",
            "summary": f"No entity in error; {pending} row(s) pending.",
            "findings": [],
        }
    findings: list[CheckFinding] = [
        {
            "status": "warning",
            "message": f"{row['entity_type']} {row['id']}: {row['error']}",
            "details": dict(row),
        }
        for row in errors[:_MAX_ERROR_FINDINGS]
    ]
    if len(errors) > _MAX_ERROR_FINDINGS:
        findings.append(
            {"status": "warning", "message": f"... {len(errors) - _MAX_ERROR_FINDINGS} more"}
        )
    return {
        "name": "entity_errors",
        "status": "warning",
        "summary": (
            f"{len(errors)} row(s) in error need `hostpanel requeue`; {pending} row(s) pending."
        ),
        "findings": findings,
    }


def _check_service_roots(config: EngineConfig) -> CheckReport:
    roots = {
        "user_web_dir": config.user_web_dir,
        "httpd_vhost_dir": config.httpd_vhost_dir,
        "named_zone_dir": config.named_zone_dir,
        "mail_root": config.mail_root,
        "mta_map_dir": config.mta_map_dir,
        "ssl_cert_dir": config.ssl_cert_dir,
        "php_ini_dir": config.php_ini_dir,
        "ftpd_passwd_dir": config.ftpd_passwd_path.parent,
    }
    findings: list[CheckFinding] = []
    for key, path in roots.items():
        if not path.exists():
            findings.append(
                {"status": "warning", "message": f"{key}: {path} does not exist yet",
                 "details": {"path": str(path)}}
            )
        elif not os.access(path, os.W_OK):
            findings.append(
                {"status": "fail", "message": f"{key}: {path} is not writable",
                 "details": {"path": str(path)}}
            )
    status = _worst_status([f["status"] for f in findings])
    return {
        "name": "service_roots",
        "status": status,
        "summary": (
            "All service directories are writable."
            if status == "pass"
            else f"{len(findings)} service director(y/ies) need attention."
        ),
        "findings": findings,
    }


def _check_redis() -> CheckReport:
    counts = get_queue_counts_safe()
    if not counts["ok"]:
        # Passes still run from cron or the CLI without Redis.
        return {
            "name": "redis",
            "status": "warning",
            "summary": "Redis is unavailable; on-demand passes and events are disabled.",
            "findings": [
                {"status": "warning", "message": f"{counts['error_type']}: {counts['error']}"}
            ],
        }
    findings: list[CheckFinding] = []
    for queue_name, stats in sorted(counts["queues"].items()):
        findings.append(
            {
                "status": "warning" if stats["failed"] else "pass",
                "message": (
                    f"{queue_name}: queued={stats['queued']}, running={stats['running']}, "
                    f"failed={stats['failed']}"
                ),
                "details": {"queue": queue_name, **stats},
            }
        )
    return {
        "name": "redis",
        "status": _worst_status([f["status"] for f in findings]),
        "summary": f"Redis reachable; {len(findings)} queue(s).",
        "findings": findings,
    }
