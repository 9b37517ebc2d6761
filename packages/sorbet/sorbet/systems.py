"""System factory binding an FSM to a Ticker."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sorbet.clock import System, TickContext
    from sorbet.machine import FSM


def make_machine_system(fsm: FSM) -> System:
    """Return a system that advances ``fsm`` by the tick's ``dt``."""

    def machine_system(ctx: TickContext) -> None:
        fsm.update(ctx.dt)

    return machine_system
