"""The task processor: one reconciliation pass over every entity table.

A pass takes a snapshot of all pending rows (one read transaction, ordered
by ``PROCESSING_ORDER`` then primary key) and runs each row through its
handler.  A failing row gets error text and the pass moves on; only store
or host failures abort the pass.  Rows that become pending during the pass
(cascades, the panel) are left for the next one.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path

from hostpanel.config import EngineConfig, load_config
from hostpanel.db import EntityType, PendingRow, commit_outcome, get_connection, snapshot_pending
from hostpanel.errors import EntityNotFound, InfrastructureError, LockHeld
from hostpanel.events import EventManager
from hostpanel.lock import HostLock
from hostpanel.modules import MODULE_REGISTRY, EngineContext, Reconciler, StrategyFactory
from hostpanel.plugins import PluginManager
from hostpanel.services import ServiceRegistry, default_services
from hostpanel.status import (
    TOADD,
    TOCHANGE,
    TOCHANGEPWD,
    TODELETE,
    TODISABLE,
    TOENABLE,
    TORESTORE,
    Outcome,
    StatusKind,
)

log = logging.getLogger(__name__)

_ALIVE = frozenset({TOADD, TOCHANGE, TOENABLE, TODISABLE, TORESTORE})
_DELETE = frozenset({TODELETE})

# Stage order of a pass.  ``None`` takes every pending keyword of the type.
# Parents are converged before their children; parent deletions run last,
# after the children they own were removed.
PROCESSING_ORDER: tuple[tuple[EntityType, frozenset[str] | None], ...] = (
    (EntityType.PLUGIN, None),
    (EntityType.USER, frozenset({TOADD, TOCHANGE, TOCHANGEPWD})),
    (EntityType.SSL, None),
    (EntityType.DOMAIN, _ALIVE),
    (EntityType.SUBDOMAIN, _ALIVE),
    (EntityType.ALIAS, _ALIVE),
    (EntityType.SUBALIAS, _ALIVE),
    (EntityType.CUSTOM_DNS, None),
    (EntityType.FTP_USER, None),
    (EntityType.MAIL, None),
    (EntityType.SQL_DATABASE, frozenset({TOADD, TOCHANGE})),
    (EntityType.SQL_USER, None),
    (EntityType.SQL_DATABASE, _DELETE),
    (EntityType.SUBALIAS, _DELETE),
    (EntityType.SUBDOMAIN, _DELETE),
    (EntityType.ALIAS, _DELETE),
    (EntityType.DOMAIN, _DELETE),
    (EntityType.USER, _DELETE),
)

Notifier = Callable[[str, int, str | None], None]


@dataclass
class PassSummary:
    attempted: int = 0
    ok: int = 0
    disabled: int = 0
    deleted: int = 0
    errors: int = 0
    not_found: int = 0
    skipped: int = 0
    locked: bool = False
    failed: list[dict] = field(default_factory=list)

    def record(self, entity_type: str, entity_id: int, outcome: Outcome | None) -> None:
        if outcome is None:
            self.skipped += 1
        elif outcome.removed:
            self.deleted += 1
        elif outcome.kind is StatusKind.ERROR:
            self.errors += 1
            self.failed.append(
                {"entity_type": entity_type, "id": entity_id, "error": outcome.value}
            )
        elif outcome.value == "disabled":
            self.disabled += 1
        else:
            self.ok += 1

    def as_dict(self) -> dict:
        return asdict(self)


class TaskProcessor:
    """Runs passes against one store connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: EngineConfig,
        *,
        services: ServiceRegistry | None = None,
        events: EventManager | None = None,
        plugins: PluginManager | None = None,
        registry: Mapping[EntityType, StrategyFactory] | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.ctx = EngineContext(
            conn=conn,
            config=config,
            services=services if services is not None else default_services(config),
            events=events if events is not None else EventManager(),
            plugins=plugins,
        )
        self.registry = registry if registry is not None else MODULE_REGISTRY
        self.notifier = notifier

    def snapshot(self) -> list[PendingRow]:
        try:
            return snapshot_pending(self.ctx.conn, PROCESSING_ORDER)
        except sqlite3.Error as exc:
            raise InfrastructureError(f"Could not read pending work: {exc}") from exc

    def _notify(self, entity_type: str, entity_id: int, outcome: Outcome | None) -> None:
        if self.notifier is None or outcome is None:
            return
        try:
            self.notifier(entity_type, entity_id, outcome.value)
        except Exception:
            log.warning("Status notification failed for %s %d", entity_type, entity_id)

    def process_row(self, row: PendingRow) -> Outcome | None:
        entity_type = EntityType(row["entity_type"])
        entity_id = row["id"]
        try:
            return Reconciler(self.ctx, self.registry[entity_type]).process(entity_id)
        except (EntityNotFound, InfrastructureError):
            raise
        except sqlite3.OperationalError as exc:
            raise InfrastructureError(f"Store unavailable: {exc}") from exc
        except Exception as exc:
            log.exception("%s %d: handler failed outside its verb", entity_type, entity_id)
            outcome = Outcome.error(f"{type(exc).__name__}: {exc}")
            try:
                commit_outcome(self.ctx.conn, entity_type, entity_id, row["status"], outcome)
            except sqlite3.Error as store_exc:
                raise InfrastructureError(f"Store unavailable: {store_exc}") from store_exc
            return outcome

    def run(self) -> PassSummary:
        summary = PassSummary()
        if self.ctx.plugins is not None:
            self.ctx.plugins.register_active(self.ctx.conn, self.ctx.events)
        rows = self.snapshot()
        log.info("Pass started: %d pending row(s)", len(rows))
        for row in rows:
            summary.attempted += 1
            try:
                outcome = self.process_row(row)
            except EntityNotFound as exc:
                log.warning("%s, skipping", exc)
                summary.not_found += 1
                continue
            summary.record(row["entity_type"], row["id"], outcome)
            self._notify(row["entity_type"], row["id"], outcome)
        self.ctx.services.flush()
        log.info(
            "Pass finished: %d ok, %d disabled, %d deleted, %d error(s), %d not found, %d skipped",
            summary.ok, summary.disabled, summary.deleted, summary.errors,
            summary.not_found, summary.skipped,
        )
        return summary


def run_pass(
    config: EngineConfig,
    *,
    services: ServiceRegistry | None = None,
    events: EventManager | None = None,
    plugins: PluginManager | None = None,
    notifier: Notifier | None = None,
) -> PassSummary:
    """Run one pass under the host lock.

    Returns a summary with ``locked`` set when another pass holds the lock.
    Raises InfrastructureError when the lock file or the store is unusable.
    """
    lock = HostLock(config.lock_path)
    try:
        lock.acquire()
    except LockHeld as exc:
        log.info("%s; skipping this pass", exc)
        return PassSummary(locked=True)
    try:
        try:
            conn = get_connection(config.db_path)
        except (sqlite3.Error, OSError) as exc:
            raise InfrastructureError(f"Cannot open store {config.db_path}: {exc}") from exc
        try:
            processor = TaskProcessor(
                conn,
                config,
                services=services,
                events=events,
                plugins=plugins if plugins is not None else PluginManager(config),
                notifier=notifier,
            )
            return processor.run()
        finally:
            conn.close()
    finally:
        lock.release()


def run_pass_job(config_path: str | None = None) -> dict:
    """rq entry point: load configuration and run one pass."""
    from hostpanel.queue import publish_event

    config = load_config(Path(config_path) if config_path else None)
    summary = run_pass(config, notifier=publish_event)
    return summary.as_dict()


def on_pass_failure(job, connection, exc_type, exc_value, traceback) -> None:
    """rq failure callback: a pass aborted on an infrastructure error."""
    log.error("Pass job %s failed: %s: %s", job.id, exc_type.__name__, exc_value)
