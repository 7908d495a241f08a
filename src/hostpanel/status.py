"""Status vocabulary shared by every entity table.

A row's status column is its task-queue slot.  Pending keywords request
work, ``ok``/``disabled`` are stable, and any other value is diagnostic
text left behind by a failed run.  Error rows are sticky: the processor
never selects them again until an operator re-queues the row.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass

TOADD = "toadd"
TOCHANGE = "tochange"
TOCHANGEPWD = "tochangepwd"
TOENABLE = "toenable"
TODISABLE = "todisable"
TORESTORE = "torestore"
TODELETE = "todelete"
OK = "ok"
DISABLED = "disabled"

PENDING_STATUSES = frozenset(
    {TOADD, TOCHANGE, TOCHANGEPWD, TOENABLE, TODISABLE, TORESTORE, TODELETE}
)
TERMINAL_STATUSES = frozenset({OK, DISABLED})
UNKNOWN_ERROR = "Unknown error"


class StatusKind(enum.Enum):
    PENDING = "pending"
    TERMINAL = "terminal"
    ERROR = "error"


class Verb(enum.Enum):
    """Convergence operation a pending keyword maps to."""

    ADD = "add"
    DISABLE = "disable"
    RESTORE = "restore"
    DELETE = "delete"


# Pending keyword -> (verb, status written on success).  None means the row
# is removed from the store on success.
TRANSITIONS: dict[str, tuple[Verb, str | None]] = {
    TOADD: (Verb.ADD, OK),
    TOCHANGE: (Verb.ADD, OK),
    TOENABLE: (Verb.ADD, OK),
    TOCHANGEPWD: (Verb.ADD, OK),
    TODISABLE: (Verb.DISABLE, DISABLED),
    TORESTORE: (Verb.RESTORE, OK),
    TODELETE: (Verb.DELETE, None),
}


def classify(value: str | None) -> StatusKind:
    if value in PENDING_STATUSES:
        return StatusKind.PENDING
    if value in TERMINAL_STATUSES:
        return StatusKind.TERMINAL
    return StatusKind.ERROR


def is_error(value: str | None) -> bool:
    return classify(value) is StatusKind.ERROR


def verb_for(status: str) -> Verb:
    try:
        return TRANSITIONS[status][0]
    except KeyError:
        raise ValueError(f"'{status}' is not a pending status") from None


@dataclass(frozen=True)
class Result:
    """Outcome of one convergence step: success, or failure with a message."""

    success: bool
    message: str = ""

    @classmethod
    def ok(cls) -> Result:
        return cls(True)

    @classmethod
    def fail(cls, message: str | None) -> Result:
        text = (message or "").strip()
        return cls(False, text or UNKNOWN_ERROR)

    def __bool__(self) -> bool:
        return self.success

    def then(self, step: Callable[[], Result]) -> Result:
        """Run ``step()`` only if this result succeeded."""
        return step() if self.success else self


@dataclass(frozen=True)
class Outcome:
    """What the store must look like for a row after processing.

    ``kind`` is ``TERMINAL`` (status set to ``ok``/``disabled``), ``ERROR``
    (status set to diagnostic text) or ``None`` for a removed row.
    """

    kind: StatusKind | None
    value: str | None

    @property
    def removed(self) -> bool:
        return self.kind is None

    @classmethod
    def removed_row(cls) -> Outcome:
        return cls(None, None)

    @classmethod
    def error(cls, message: str | None) -> Outcome:
        text = (message or "").strip()
        return cls(StatusKind.ERROR, text or UNKNOWN_ERROR)


def resolve_outcome(status: str, result: Result) -> Outcome:
    """Apply the transition table for ``status`` given the verb's result."""
    if status not in TRANSITIONS:
        raise ValueError(f"'{status}' is not a pending status")
    if not result:
        return Outcome.error(result.message)
    target = TRANSITIONS[status][1]
    if target is None:
        return Outcome.removed_row()
    return Outcome(StatusKind.TERMINAL, target)
