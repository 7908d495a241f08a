"""Engine configuration.

A single ``EngineConfig`` is built once per invocation and handed to the
task processor, every handler and every service collaborator.  Values come
from a flat TOML file::

    system_user_prefix = "vu"
    system_user_min_uid = 2000
    user_web_dir = "/var/www/virtual"
    base_server_ip = "192.0.2.10"
    httpd_reload_command = ["systemctl", "reload", "apache2"]
    command_timeout = 120

Unknown keys are rejected so typos do not silently fall back to defaults.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostpanel.errors import ConfigError
from hostpanel.paths import DEFAULT_CONFIG_PATH, DEFAULT_DB_PATH, DEFAULT_LOCK_PATH

log = logging.getLogger(__name__)

VALID_PHP_CONFIG_LEVELS = {"per_user", "per_domain", "per_site"}


@dataclass(frozen=True)
class EngineConfig:
    system_user_prefix: str = "vu"
    system_user_min_uid: int = 2000
    user_web_dir: Path = Path("/var/www/virtual")
    base_server_ip: str = "0.0.0.0"
    base_server_public_ip: str = "0.0.0.0"
    base_server_vhost: str = "localhost"
    timezone: str = "UTC"
    php_config_level: str = "per_site"
    php_pear_dir: str = "/usr/share/php"

    httpd_vhost_dir: Path = Path("/etc/apache2/sites-available")
    httpd_reload_command: list[str] = field(default_factory=list)
    named_zone_dir: Path = Path("/var/cache/bind")
    named_reload_command: list[str] = field(default_factory=list)
    mail_root: Path = Path("/var/mail/virtual")
    mta_map_dir: Path = Path("/etc/postfix/hostpanel")
    mta_reload_command: list[str] = field(default_factory=list)
    ftpd_passwd_path: Path = Path("/etc/proftpd/hostpanel.passwd")
    ssl_cert_dir: Path = Path("/etc/hostpanel/certs")
    php_ini_dir: Path = Path("/etc/hostpanel/php")
    template_dir: Path = Path("/etc/hostpanel/templates")
    sql_client_command: list[str] = field(default_factory=lambda: ["mysql", "--batch"])
    useradd_command: list[str] = field(default_factory=lambda: ["useradd"])
    userdel_command: list[str] = field(default_factory=lambda: ["userdel"])
    usermod_command: list[str] = field(default_factory=lambda: ["usermod"])
    manage_system_users: bool = True
    apply_ownership: bool = True

    command_timeout: float = 300.0
    db_path: Path = DEFAULT_DB_PATH
    lock_path: Path = DEFAULT_LOCK_PATH

    def __post_init__(self) -> None:
        if self.php_config_level not in VALID_PHP_CONFIG_LEVELS:
            raise ConfigError(
                f"Invalid php_config_level '{self.php_config_level}'. "
                f"Must be one of: {', '.join(sorted(VALID_PHP_CONFIG_LEVELS))}"
            )
        if self.command_timeout <= 0:
            raise ConfigError("command_timeout must be positive")

    def system_user(self, admin_id: int) -> str:
        """Unix user (and group) name owning the files of a customer account."""
        return f"{self.system_user_prefix}{self.system_user_min_uid + admin_id}"

    def replace(self, **changes: Any) -> EngineConfig:
        return dataclasses.replace(self, **changes)


_FIELD_TYPES = {f.name: f for f in dataclasses.fields(EngineConfig)}
_PATH_FIELDS = {
    name for name, f in _FIELD_TYPES.items() if f.type in ("Path", Path)
}
_COMMAND_FIELDS = {name for name, f in _FIELD_TYPES.items() if f.type in ("list[str]",)}


def _coerce(key: str, value: Any) -> Any:
    if key in _PATH_FIELDS:
        if not isinstance(value, str):
            raise ConfigError(f"'{key}' must be a path string")
        return Path(value).expanduser()
    if key in _COMMAND_FIELDS:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"'{key}' must be a list of strings")
        return list(value)
    return value


def config_from_mapping(data: dict[str, Any]) -> EngineConfig:
    unknown = sorted(set(data) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    try:
        return EngineConfig(**{key: _coerce(key, value) for key, value in data.items()})
    except TypeError as exc:
        raise ConfigError(str(exc)) from None


def load_config(path: Path | None = None) -> EngineConfig:
    """Load configuration from TOML; a missing file yields the defaults."""
    import tomllib

    config_path = path or DEFAULT_CONFIG_PATH
    if not config_path.exists():
        log.debug("No configuration at %s, using defaults", config_path)
        return EngineConfig()
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Failed to read {config_path}: {exc}") from None
    return config_from_mapping(data)
