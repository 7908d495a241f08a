"""Tests for the service registry and the simple service collaborators."""

from __future__ import annotations

import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from hostpanel.db import EntityType
from hostpanel.errors import CommandError
from hostpanel.services import Service, ServiceRegistry
from hostpanel.services_dns import NamedService, next_serial
from hostpanel.services_ftp import FtpdService
from hostpanel.services_mail import MtaService
from hostpanel.services_sql import SqldService, quote_identifier, quote_string
from hostpanel.services_ssl import SslService
from hostpanel.services_system import SystemAccountService, resolve_account_ids
from hostpanel.status import Result


class _Recorder(Service):
    """Service that logs which handlers ran."""

    def __init__(self, config, name: str, priority: int, log: list, fail_on: str | None = None):
        super().__init__(config)
        self.name = name  # type: ignore[misc]
        self.priority = priority  # type: ignore[misc]
        self.log = log
        self.fail_on = fail_on

    def _handler(self, action: str):
        def handle(data):
            self.log.append(f"{self.name}:{action}")
            if action == self.fail_on:
                return Result.fail(f"{action} refused")
            return None

        return handle

    def capabilities(self):
        return {
            (action, EntityType.DOMAIN): self._handler(action)
            for action in ("pre_add", "add", "post_add", "delete")
        }


# -- registry --


def test_registry_runs_phases_in_priority_order(engine_config):
    calls: list[str] = []
    registry = ServiceRegistry(
        [_Recorder(engine_config, "low", 1, calls), _Recorder(engine_config, "high", 9, calls)]
    )

    assert registry.dispatch("add", EntityType.DOMAIN, {})
    assert calls == [
        "high:pre_add", "low:pre_add",
        "high:add", "low:add",
        "high:post_add", "low:post_add",
    ]


def test_registry_reverses_order_for_delete(engine_config):
    calls: list[str] = []
    registry = ServiceRegistry(
        [_Recorder(engine_config, "low", 1, calls), _Recorder(engine_config, "high", 9, calls)]
    )

    registry.dispatch("delete", EntityType.DOMAIN, {})

    assert calls == ["low:delete", "high:delete"]


def test_registry_stops_at_first_failure(engine_config):
    calls: list[str] = []
    registry = ServiceRegistry(
        [
            _Recorder(engine_config, "high", 9, calls, fail_on="add"),
            _Recorder(engine_config, "low", 1, calls),
        ]
    )

    result = registry.dispatch("add", EntityType.DOMAIN, {})

    assert not result
    assert result.message == "high: add refused"
    assert calls == ["high:pre_add", "low:pre_add", "high:add"]


def test_registry_converts_oserror(engine_config):
    class Broken(Service):
        name = "broken"

        def capabilities(self):
            def handler(data):
                raise PermissionError(13, "Permission denied", "/var/www")

            return {("add", EntityType.DOMAIN): handler}

    result = ServiceRegistry([Broken(engine_config)]).dispatch("add", EntityType.DOMAIN, {})

    assert not result
    assert result.message.startswith("broken: ")
    assert "Permission denied" in result.message


def test_registry_rejects_duplicate_names(engine_config):
    registry = ServiceRegistry([NamedService(engine_config)])
    with pytest.raises(ValueError, match="already registered"):
        registry.add(NamedService(engine_config))


def test_flush_reloads_dirty_services_once(engine_config):
    config = engine_config.replace(mta_reload_command=["postfix", "reload"])
    mta = MtaService(config)
    registry = ServiceRegistry([mta])

    with patch("hostpanel.services.run_command") as mock_run:
        registry.flush()
        mock_run.assert_not_called()

        mta.dirty = True
        results = registry.flush()
        registry.flush()

    mock_run.assert_called_once_with(["postfix", "reload"], timeout=config.command_timeout)
    assert all(results)


def test_flush_reports_reload_failure(engine_config):
    config = engine_config.replace(named_reload_command=["rndc", "reload"])
    named = NamedService(config)
    named.dirty = True

    with patch(
        "hostpanel.services.run_command", side_effect=CommandError(["rndc"], "exit status 1")
    ):
        result = named.flush()

    assert not result
    assert "named reload failed" in result.message


# -- system accounts --


def test_system_account_noop_when_unmanaged(engine_config):
    service = SystemAccountService(engine_config)
    with patch("hostpanel.services_system.run_command") as mock_run:
        assert service.add_user({"USER": "vu2001", "HOME_DIR": Path("/x")})
        assert service.delete_user({"USER": "vu2001"})
    mock_run.assert_not_called()
    assert resolve_account_ids(engine_config, "vu2001", 1) == (2001, 2001)


def test_system_account_creates_missing_user(engine_config):
    config = engine_config.replace(manage_system_users=True)
    service = SystemAccountService(config)
    with (
        patch("hostpanel.services_system.account_exists", return_value=False),
        patch("hostpanel.services_system.run_command") as mock_run,
    ):
        service.add_user({"USER": "vu2001", "HOME_DIR": Path("/srv/www/example.test")})

    cmd = mock_run.call_args[0][0]
    assert cmd[0] == "useradd"
    assert cmd[-1] == "vu2001"
    assert "--no-create-home" in cmd


def test_system_account_updates_existing_user(engine_config):
    config = engine_config.replace(manage_system_users=True)
    with (
        patch("hostpanel.services_system.account_exists", return_value=True),
        patch("hostpanel.services_system.run_command") as mock_run,
    ):
        SystemAccountService(config).add_user({"USER": "vu2001", "HOME_DIR": Path("/h")})

    assert mock_run.call_args[0][0][0] == "usermod"


# -- DNS --


def test_next_serial():
    today = datetime.date(2026, 10, 16)
    assert next_serial(None, today) == 2026101600
    assert next_serial(2026101600, today) == 2026101601
    assert next_serial(2025010105, today) == 2026101600
    assert next_serial(2026101699, today) == 2026101700


def _zone_data(**extra):
    return {
        "DOMAIN_NAME": "example.test",
        "DOMAIN_IP": "192.0.2.10",
        "BASE_SERVER_PUBLIC_IP": "192.0.2.10",
        "MAIL_ENABLED": True,
        **extra,
    }


def test_zone_rebuild_is_idempotent(engine_config):
    named = NamedService(engine_config)

    assert named.add_zone(_zone_data())
    zone = named.zone_path("example.test")
    first = zone.read_text()
    assert "@ IN MX 10 mail.example.test." in first
    assert "@SERIAL@" not in first

    assert named.add_zone(_zone_data())
    assert zone.read_text() == first


def _serial(text: str) -> int:
    return next(int(line.split()[0]) for line in text.splitlines() if "; serial" in line)


def test_zone_serial_moves_on_change(engine_config):
    named = NamedService(engine_config)
    named.add_zone(_zone_data())
    zone = named.zone_path("example.test")
    serial_before = _serial(zone.read_text())

    named.add_record(
        {"ZONE_NAME": "example.test", "RECORD_ID": 4, "RECORD_NAME": "txt",
         "RECORD_CLASS": "IN", "RECORD_TYPE": "TXT", "RECORD_DATA": '"hello"'}
    )

    text = zone.read_text()
    serial_after = _serial(text)
    assert serial_after > serial_before
    assert text.count('txt IN TXT "hello"') == 1


def test_record_without_zone_fails(engine_config):
    result = NamedService(engine_config).add_record(
        {"ZONE_NAME": "nowhere.test", "RECORD_ID": 1, "RECORD_NAME": "a",
         "RECORD_CLASS": "IN", "RECORD_TYPE": "A", "RECORD_DATA": "192.0.2.1"}
    )
    assert not result
    assert "nowhere.test is not provisioned" in result.message


# -- FTP --


def test_ftp_passwd_lifecycle(engine_config):
    ftpd = FtpdService(engine_config)
    data = {
        "FTP_USER": "alice@example.test",
        "PASSWORD_HASH": "$6$hash",
        "USER_SYS_UID": 2001,
        "USER_SYS_GID": 2001,
        "FTP_HOME": Path("/srv/www/example.test"),
    }
    passwd = engine_config.ftpd_passwd_path

    ftpd.add_ftp_user(data)
    ftpd.add_ftp_user(data)
    assert passwd.read_text() == (
        "alice@example.test:$6$hash:2001:2001::/srv/www/example.test:/bin/false\n"
    )
    assert (passwd.stat().st_mode & 0o777) == 0o600

    ftpd.disable_ftp_user(data)
    assert ":!$6$hash:" in passwd.read_text()

    ftpd.delete_ftp_user(data)
    assert passwd.read_text() == ""


# -- MTA --


def _mail_data(**extra):
    return {
        "MAIL_ADDR": "bob@example.test",
        "MAIL_ACC": "bob",
        "MAIL_CATCHALL": None,
        "DOMAIN_NAME": "example.test",
        "MAIL_TYPE": "normal_mail,normal_forward",
        "MAIL_PASS": "{SHA512-CRYPT}x",
        "MAIL_FORWARD": "carol@example.org",
        **extra,
    }


def test_mail_account_with_forward(engine_config):
    mta = MtaService(engine_config)
    mta.add_mail(_mail_data())

    maps = engine_config.mta_map_dir
    assert "bob@example.test example.test/bob/" in (maps / "mailboxes").read_text()
    assert "bob@example.test carol@example.org" in (maps / "aliases").read_text()
    assert (engine_config.mail_root / "example.test" / "bob" / "new").is_dir()


def test_mail_catchall(engine_config):
    mta = MtaService(engine_config)
    mta.add_mail(
        _mail_data(MAIL_ADDR="@example.test", MAIL_ACC="", MAIL_TYPE="normal_catchall",
                   MAIL_CATCHALL="bob@example.test")
    )

    maps = engine_config.mta_map_dir
    assert "@example.test bob@example.test" in (maps / "aliases").read_text()
    assert (maps / "mailboxes").read_text() == ""


def test_mail_disable_keeps_maildir_delete_removes_it(engine_config):
    mta = MtaService(engine_config)
    mta.add_mail(_mail_data())
    maildir = engine_config.mail_root / "example.test" / "bob"

    mta.disable_mail(_mail_data())
    assert maildir.is_dir()
    assert "bob@example.test" not in (engine_config.mta_map_dir / "passwd").read_text()

    mta.delete_mail(_mail_data())
    assert not maildir.exists()


def test_mail_domain_follows_mail_enabled(engine_config):
    mta = MtaService(engine_config)
    domains = engine_config.mta_map_dir / "domains"

    mta.add_domain({"DOMAIN_NAME": "example.test", "MAIL_ENABLED": True})
    assert "example.test OK" in domains.read_text()

    mta.add_domain({"DOMAIN_NAME": "example.test", "MAIL_ENABLED": False})
    assert domains.read_text() == ""


# -- SQL --


def test_quoting():
    assert quote_identifier("we`ird") == "`we``ird`"
    assert quote_string("it's") == "'it\\'s'"


def test_sql_statements_are_replay_safe(engine_config, sql_executor):
    sqld = SqldService(engine_config, executor=sql_executor)
    data = {"SQL_USER": "app", "SQL_HOST": "%", "PASSWORD_HASH": "*ABC", "DATABASE_NAME": "shop"}

    sqld.add_database({"DATABASE_NAME": "shop"})
    sqld.add_user(data)
    sqld.add_user(data)

    statements = sql_executor.statements
    assert statements[0] == "CREATE DATABASE IF NOT EXISTS `shop` CHARACTER SET utf8mb4"
    assert "CREATE USER IF NOT EXISTS 'app'@'%' IDENTIFIED WITH mysql_native_password AS '*ABC'" \
        in statements
    assert statements.count("GRANT ALL PRIVILEGES ON `shop`.* TO 'app'@'%'") == 2
    assert sql_executor.batches[1] == sql_executor.batches[2]


def test_sql_client_failure_becomes_result(engine_config):
    config = engine_config.replace(sql_client_command=["mysql"])
    registry = ServiceRegistry([SqldService(config)])
    with patch(
        "hostpanel.services_sql.run_command",
        side_effect=CommandError(["mysql"], "Access denied"),
    ):
        result = registry.dispatch("add", EntityType.SQL_DATABASE, {"DATABASE_NAME": "shop"})

    assert not result
    assert result.message == "sqld: mysql: Access denied"


# -- SSL --


def test_ssl_writes_pem_bundle(engine_config, pem_pair):
    pem_key, pem_cert = pem_pair
    path = engine_config.ssl_cert_dir / "example.test.pem"
    data = {"DOMAIN_NAME": "example.test", "PRIVATE_KEY": pem_key, "CERTIFICATE": pem_cert,
            "CA_BUNDLE": None, "CERT_PATH": path}

    assert SslService(engine_config).add_certificate(data)
    assert path.read_text() == f"{pem_key}\n{pem_cert}\n"
    assert (path.stat().st_mode & 0o777) == 0o640

    SslService(engine_config).delete_certificate(data)
    assert not path.exists()


def test_ssl_rejects_non_pem(engine_config, pem_pair):
    data = {"DOMAIN_NAME": "example.test", "PRIVATE_KEY": "garbage", "CERTIFICATE": pem_pair[1],
            "CA_BUNDLE": None, "CERT_PATH": engine_config.ssl_cert_dir / "x.pem"}

    result = SslService(engine_config).add_certificate(data)

    assert not result
    assert "Invalid private key" in result.message
