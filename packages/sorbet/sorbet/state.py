"""State values shared between machines."""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from sorbet_signal import Signal

if TYPE_CHECKING:
    from sorbet.machine import FSM

LifecycleCallback = Callable[[Any, "FSM"], None]
UpdateCallback = Callable[[Any, "FSM", float], None]

_unnamed = itertools.count(1)


def _nop(*args: Any) -> None:
    return None


@dataclass(frozen=True, eq=False)
class State:
    """Named bundle of enter/update/exit behavior.

    States compare and hash by identity, so the same object can sit in the
    catalog of several machines. ``entered`` and ``exited`` fire with
    ``(entity, fsm)`` right after the matching callback.
    """

    name: str
    on_enter: LifecycleCallback = _nop
    on_update: UpdateCallback = _nop
    on_exit: LifecycleCallback = _nop
    entered: Signal = field(default_factory=Signal, repr=False)
    exited: Signal = field(default_factory=Signal, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise TypeError(f"State name must be a str, got {type(self.name).__name__}")

    def enter(self, entity: Any, fsm: FSM) -> None:
        self.on_enter(entity, fsm)
        self.entered.fire(entity, fsm)

    def update(self, entity: Any, fsm: FSM, dt: float) -> None:
        self.on_update(entity, fsm, dt)

    def exit(self, entity: Any, fsm: FSM) -> None:
        self.on_exit(entity, fsm)
        self.exited.fire(entity, fsm)


def create_state(
    name: str | None = None,
    on_enter: LifecycleCallback | None = None,
    on_update: UpdateCallback | None = None,
    on_exit: LifecycleCallback | None = None,
) -> State:
    """Build a State, filling in a ``State<N>`` name and no-op callbacks."""
    if name is None:
        name = f"State{next(_unnamed)}"
    return State(
        name=name,
        on_enter=on_enter or _nop,
        on_update=on_update or _nop,
        on_exit=on_exit or _nop,
    )
