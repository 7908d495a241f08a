"""Service collaborators driven by entity handlers.

A service (httpd, DNS, MTA, ...) declares which ``(action, entity type)``
pairs it handles through ``capabilities()``.  Actions are a verb optionally
prefixed with ``pre_`` or ``post_``; for each verb the registry runs every
``pre_`` handler, then every main handler, then every ``post_`` handler,
walking services in priority order (reversed for ``delete`` so dependents
are torn down first).

Handlers receive the entity's data-provider map.  They may return a failed
``Result`` or raise ``OSError``/``CommandError``/``TemplateError``; both
become a failure of the verb.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, ClassVar

from hostpanel.config import EngineConfig
from hostpanel.db import EntityType
from hostpanel.errors import CommandError
from hostpanel.status import Result
from hostpanel.system import run_command
from hostpanel.templates import TemplateError, TemplateRenderer

log = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any]], "Result | None"]
Capabilities = Mapping[tuple[str, EntityType], Handler]

PHASES = ("pre_", "", "post_")


class Service:
    """Base class for a service collaborator."""

    name: ClassVar[str] = "service"
    priority: ClassVar[int] = 0
    reload_command_key: ClassVar[str | None] = None

    def __init__(self, config: EngineConfig, renderer: TemplateRenderer | None = None) -> None:
        self.config = config
        self.renderer = renderer or TemplateRenderer(config.template_dir)
        self.dirty = False

    def capabilities(self) -> Capabilities:
        raise NotImplementedError

    def reload_command(self) -> list[str]:
        if self.reload_command_key is None:
            return []
        return list(getattr(self.config, self.reload_command_key))

    def flush(self) -> Result:
        """Reload the underlying daemon once if anything changed this pass."""
        if not self.dirty:
            return Result.ok()
        self.dirty = False
        cmd = self.reload_command()
        if not cmd:
            return Result.ok()
        try:
            run_command(cmd, timeout=self.config.command_timeout)
        except CommandError as exc:
            return Result.fail(f"{self.name} reload failed: {exc}")
        log.info("Reloaded %s", self.name)
        return Result.ok()


class ServiceRegistry:
    def __init__(self, services: Iterable[Service] = ()) -> None:
        self._services: list[Service] = []
        for service in services:
            self.add(service)

    def add(self, service: Service) -> None:
        if any(s.name == service.name for s in self._services):
            raise ValueError(f"Service '{service.name}' is already registered")
        self._services.append(service)
        self._services.sort(key=lambda s: -s.priority)

    def get(self, name: str) -> Service | None:
        return next((s for s in self._services if s.name == name), None)

    def __iter__(self):
        return iter(self._services)

    def __len__(self) -> int:
        return len(self._services)

    def ordered(self, verb: str) -> list[Service]:
        return list(reversed(self._services)) if verb == "delete" else list(self._services)

    def dispatch(self, verb: str, entity_type: EntityType, data: Mapping[str, Any]) -> Result:
        """Run the pre/main/post handlers for ``verb`` on ``entity_type``."""
        services = self.ordered(verb)
        for phase in PHASES:
            action = f"{phase}{verb}"
            for service in services:
                handler = service.capabilities().get((action, entity_type))
                if handler is None:
                    continue
                try:
                    outcome = handler(data)
                except (OSError, CommandError, TemplateError) as exc:
                    log.error("%s %s %s failed: %s", service.name, action, entity_type, exc)
                    return Result.fail(f"{service.name}: {exc}")
                if outcome is not None and not outcome:
                    return Result.fail(f"{service.name}: {outcome.message}")
                service.dirty = True
        return Result.ok()

    def flush(self) -> list[Result]:
        results = []
        for service in self._services:
            result = service.flush()
            if not result:
                log.error("%s", result.message)
            results.append(result)
        return results


def default_services(
    config: EngineConfig, renderer: TemplateRenderer | None = None
) -> ServiceRegistry:
    """Registry with every built-in service collaborator."""
    from hostpanel.services_dns import NamedService
    from hostpanel.services_ftp import FtpdService
    from hostpanel.services_httpd import HttpdService
    from hostpanel.services_mail import MtaService
    from hostpanel.services_sql import SqldService
    from hostpanel.services_ssl import SslService
    from hostpanel.services_system import SystemAccountService

    renderer = renderer or TemplateRenderer(config.template_dir)
    return ServiceRegistry(
        [
            SystemAccountService(config, renderer),
            SslService(config, renderer),
            HttpdService(config, renderer),
            NamedService(config, renderer),
            SqldService(config, renderer),
            MtaService(config, renderer),
            FtpdService(config, renderer),
        ]
    )
