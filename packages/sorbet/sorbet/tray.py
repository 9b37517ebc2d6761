"""Pause/resume snapshot."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sorbet.errors import TrayConsumedError


@dataclass
class Tray:
    """Partition of a machine's entities taken at pause time.

    ``active_when_paused`` holds the entities that were being updated and
    will be updated again on resume. ``inactive_when_paused`` is
    informational. Both are insertion-ordered. A tray is consumed exactly
    once; after ``consume`` it rejects further use.
    """

    active_when_paused: dict[Any, None] = field(default_factory=dict)
    inactive_when_paused: dict[Any, None] = field(default_factory=dict)
    consumed: bool = False

    def hold(self, entity: Any) -> None:
        """Mark ``entity`` to be updated again on resume."""
        self._check()
        self.inactive_when_paused.pop(entity, None)
        self.active_when_paused[entity] = None

    def release(self, entity: Any) -> None:
        """Keep ``entity`` out of the updateable set on resume."""
        self._check()
        self.active_when_paused.pop(entity, None)

    def park(self, entity: Any) -> None:
        """Record ``entity`` as inactive."""
        self._check()
        self.active_when_paused.pop(entity, None)
        self.inactive_when_paused[entity] = None

    def forget(self, entity: Any) -> None:
        self._check()
        self.active_when_paused.pop(entity, None)
        self.inactive_when_paused.pop(entity, None)

    def holds(self, entity: Any) -> bool:
        return entity in self.active_when_paused

    def consume(self) -> tuple[Any, ...]:
        """Return the entities to resume, in pause order, and close the tray."""
        self._check()
        self.consumed = True
        entities = tuple(self.active_when_paused)
        self.active_when_paused = {}
        self.inactive_when_paused = {}
        return entities

    def _check(self) -> None:
        if self.consumed:
            raise TrayConsumedError("Tray was already consumed by a resume")
