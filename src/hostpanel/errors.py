"""Exception types shared by the engine, its handlers and the CLI.

Entity-level failures travel as ``Result`` values (see ``hostpanel.status``).
Exceptions are reserved for conditions that end the processing of one entity
without a status write (``EntityNotFound``) or that abort a whole pass.
"""

from __future__ import annotations


class HostpanelError(Exception):
    """Base class for hostpanel errors."""


class ConfigError(HostpanelError):
    """Configuration file is unreadable or contains unknown/invalid keys."""


class EntityNotFound(HostpanelError):
    """Entity row vanished between discovery and load."""

    def __init__(self, entity_type: str, entity_id: int):
        super().__init__(f"Data not found for {entity_type} (ID {entity_id})")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InfrastructureError(HostpanelError):
    """Store or host-level failure that must abort the whole pass."""


class LockHeld(HostpanelError):
    """Another pass holds the host lock."""


class CommandError(HostpanelError):
    """External command failed, could not be started, or timed out."""

    def __init__(self, cmd: list[str], message: str):
        super().__init__(f"{' '.join(cmd)}: {message}")
        self.cmd = cmd
