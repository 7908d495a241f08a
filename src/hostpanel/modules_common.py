"""Shared machinery for entity handlers.

A handler is split in two parts:

- a per-type *strategy* (``modules_*.py``) that knows how to load its row,
  build the data-provider map and implement the four verbs;
- the ``Reconciler`` driver that runs one row through its strategy, wraps
  the verb in event hooks and persists the outcome.

Strategies share behaviour through composed helpers (``RowLoader``,
``ActionRunner``) rather than a common base class.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

from hostpanel.config import EngineConfig
from hostpanel.db import EntityType, commit_outcome, entity_table
from hostpanel.errors import EntityNotFound, InfrastructureError
from hostpanel.events import SKIP, EventManager, HookEvent, event_name
from hostpanel.services import ServiceRegistry
from hostpanel.status import Outcome, Result, StatusKind, Verb, resolve_outcome, verb_for

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine context
# ---------------------------------------------------------------------------


@dataclass
class EngineContext:
    """Everything a strategy needs for one pass."""

    conn: sqlite3.Connection
    config: EngineConfig
    services: ServiceRegistry
    events: EventManager = field(default_factory=EventManager)
    plugins: Any = None


class ModuleStrategy(Protocol):
    entity_type: ClassVar[EntityType]
    loaded: RowLoader

    def add(self) -> Result: ...

    def disable(self) -> Result: ...

    def restore(self) -> Result: ...

    def delete(self) -> Result: ...


StrategyFactory = Callable[[EngineContext], ModuleStrategy]


# ---------------------------------------------------------------------------
# Composed helpers
# ---------------------------------------------------------------------------


class ContextCache:
    """Build a data-provider map once, then hand out copies tagged with ACTION."""

    def __init__(self, build: Callable[[], dict[str, Any]]) -> None:
        self._build = build
        self._data: dict[str, Any] | None = None

    def get(self, action: str) -> dict[str, Any]:
        if self._data is None:
            self._data = self._build()
        return {**self._data, "ACTION": action}

    def reset(self) -> None:
        self._data = None


class ActionRunner:
    """Run a verb on every service collaborator for one strategy."""

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    def dispatch(self, module: ModuleStrategy, action: str) -> Result:
        data = module.loaded.get(action)
        return self.ctx.services.dispatch(action, module.entity_type, data)


def fetch_row(
    conn: sqlite3.Connection, entity_type: EntityType, entity_id: int, sql: str
) -> dict[str, Any]:
    """Run a strategy's load query; raises EntityNotFound when it matches nothing."""
    row = conn.execute(sql, (entity_id,)).fetchone()
    if row is None:
        raise EntityNotFound(entity_type.value, entity_id)
    return dict(row)


class RowLoader:
    """One strategy's row, its id and status, and its data-provider map.

    ``build`` turns the loaded row into the map; it runs once per load.
    """

    def __init__(
        self,
        ctx: EngineContext,
        entity_type: EntityType,
        sql: str,
        build: Callable[[], dict[str, Any]],
    ) -> None:
        self.ctx = ctx
        self.entity_type = entity_type
        self.sql = sql
        self.cache = ContextCache(build)
        self.row: dict[str, Any] = {}
        self.entity_id = 0
        self.status = ""

    def load(self, entity_id: int) -> None:
        self.row = fetch_row(self.ctx.conn, self.entity_type, entity_id, self.sql)
        self.entity_id = entity_id
        self.status = self.row["status"]
        self.cache.reset()

    def update(self, **columns: Any) -> None:
        """Merge columns written back to the store and rebuild the map on next use."""
        self.row.update(columns)
        self.cache.reset()

    def get(self, action: str) -> dict[str, Any]:
        return self.cache.get(action)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

_VERBS: dict[Verb, Callable[[ModuleStrategy], Result]] = {
    Verb.ADD: lambda m: m.add(),
    Verb.DISABLE: lambda m: m.disable(),
    Verb.RESTORE: lambda m: m.restore(),
    Verb.DELETE: lambda m: m.delete(),
}


class Reconciler:
    """Converge one row and persist its new status."""

    def __init__(self, ctx: EngineContext, factory: StrategyFactory) -> None:
        self.ctx = ctx
        self.factory = factory

    def _run_verb(self, module: ModuleStrategy, verb: Verb) -> Result:
        entity_type = module.entity_type.value
        loaded = module.loaded
        data = loaded.get(verb.value)
        before = self.ctx.events.trigger(
            HookEvent(event_name("before", verb.value, entity_type), entity_type,
                      loaded.entity_id, data)
        )
        if before is SKIP:
            result = Result.ok()
        elif not before:
            result = before
        else:
            result = _VERBS[verb](module)

        after = self.ctx.events.trigger(
            HookEvent(event_name("after", verb.value, entity_type), entity_type,
                      loaded.entity_id, data, result)
        )
        if result and after is not SKIP and not after:
            result = after
        return result

    def process(self, entity_id: int) -> Outcome | None:
        """Load ``entity_id``, run the verb its status asks for, store the outcome.

        Returns None when the row no longer carries a pending status (it was
        changed since the pass snapshot).  Raises EntityNotFound if the row
        is gone and InfrastructureError when the store cannot be written.
        """
        module = self.factory(self.ctx)
        module.loaded.load(entity_id)
        status = module.loaded.status
        entity_type = module.entity_type
        if status not in entity_table(entity_type).pending:
            log.info("%s %d is no longer pending (%s), skipping", entity_type, entity_id, status)
            return None

        try:
            result = self._run_verb(module, verb_for(status))
        except InfrastructureError:
            raise
        except Exception as exc:
            log.exception("%s %d: %s failed", entity_type, entity_id, status)
            result = Result.fail(f"{type(exc).__name__}: {exc}")

        outcome = resolve_outcome(status, result)
        try:
            commit_outcome(self.ctx.conn, entity_type, entity_id, status, outcome)
        except sqlite3.IntegrityError as exc:
            # Still referenced by children; keep the row and say why.
            outcome = Outcome.error(f"Cannot remove {entity_type} {entity_id}: {exc}")
            commit_outcome(self.ctx.conn, entity_type, entity_id, status, outcome)
        except sqlite3.Error as exc:
            raise InfrastructureError(
                f"Could not store status of {entity_type} {entity_id}: {exc}"
            ) from exc

        if outcome.removed:
            log.info("%s %d removed", entity_type, entity_id)
        elif outcome.kind is StatusKind.ERROR:
            log.warning("%s %d failed: %s", entity_type, entity_id, outcome.value)
        else:
            log.info("%s %d -> %s", entity_type, entity_id, outcome.value)
        return outcome
