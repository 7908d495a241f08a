"""Extension hooks around handler verbs.

Listeners subscribe to ``before_<verb>_<entity type>`` and
``after_<verb>_<entity type>`` events (for example ``before_add_domain``).
A before-listener can veto the verb by returning a failed ``Result`` or
short-circuit the default behaviour by returning ``SKIP``; after-listeners
run once the verb finished, including when it failed, and see its result.

Listeners run in descending priority, then registration order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from hostpanel.status import Result

log = logging.getLogger(__name__)


class _Skip:
    """Sentinel returned by a listener to skip the default behaviour."""

    _instance: _Skip | None = None

    def __new__(cls) -> _Skip:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SKIP"


SKIP = _Skip()


@dataclass
class HookEvent:
    name: str
    entity_type: str
    entity_id: int
    data: Mapping[str, Any] = field(default_factory=dict)
    result: Result | None = None


Listener = Callable[[HookEvent], "Result | _Skip | None"]


def event_name(stage: str, verb: str, entity_type: str) -> str:
    return f"{stage}_{verb}_{entity_type}"


class EventManager:
    """Registry of hook listeners for one engine instance."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[int, int, Listener]]] = {}
        self._seq = 0

    def register(self, name: str, listener: Listener, *, priority: int = 0) -> None:
        self._seq += 1
        entries = self._listeners.setdefault(name, [])
        entries.append((priority, self._seq, listener))
        entries.sort(key=lambda entry: (-entry[0], entry[1]))

    def unregister(self, name: str, listener: Listener) -> None:
        entries = self._listeners.get(name, [])
        self._listeners[name] = [e for e in entries if e[2] is not listener]

    def has_listeners(self, name: str) -> bool:
        return bool(self._listeners.get(name))

    def trigger(self, event: HookEvent) -> Result | _Skip:
        """Run listeners for ``event.name``.

        Stops at the first listener that fails or asks to skip.  A listener
        that raises is reported as a failure of the event.
        """
        for _priority, _seq, listener in list(self._listeners.get(event.name, [])):
            try:
                outcome = listener(event)
            except Exception as exc:
                log.exception("Listener %r failed on %s", listener, event.name)
                return Result.fail(f"{event.name} listener error: {exc}")
            if outcome is SKIP:
                log.debug("Listener %r skipped default behaviour for %s", listener, event.name)
                return SKIP
            if isinstance(outcome, Result) and not outcome:
                return outcome
        return Result.ok()
