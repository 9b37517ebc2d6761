"""Fixed-timestep clock and a minimal loop that feeds machines their dt."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True, slots=True)
class TickContext:
    tick_number: int
    dt: float
    elapsed: float
    request_stop: Callable[[], None]


System = Callable[[TickContext], None]


class Clock:
    """Counts ticks of a fixed length of 1/tps seconds."""

    def __init__(self, tps: int) -> None:
        if tps <= 0:
            raise ValueError(f"tps must be positive, got {tps}")
        self.tps = tps
        self.dt = 1.0 / tps
        self.tick_number = 0

    @property
    def elapsed(self) -> float:
        return self.tick_number * self.dt

    def advance(self) -> int:
        self.tick_number += 1
        return self.tick_number

    def context(self, stop_fn: Callable[[], None]) -> TickContext:
        return TickContext(self.tick_number, self.dt, self.elapsed, stop_fn)


class Ticker:
    """Feeds a fixed ``dt`` to a list of systems, one call each per tick.

    Any system may call ``ctx.request_stop()``; the systems after it are
    skipped for that tick and the run ends.
    """

    def __init__(self, tps: int = 20) -> None:
        self.clock = Clock(tps)
        self.systems: list[System] = []
        self._halted = False

    def add_system(self, system: System) -> None:
        self.systems.append(system)

    def _halt(self) -> None:
        self._halted = True

    def step(self) -> bool:
        """Run one tick. Returns False if a system asked to stop."""
        self._halted = False
        self.clock.advance()
        ctx = self.clock.context(self._halt)
        for system in self.systems:
            system(ctx)
            if self._halted:
                return False
        return True

    def run(self, n: int) -> int:
        """Run up to ``n`` ticks back to back and return how many ran."""
        for ran in range(1, n + 1):
            if not self.step():
                return ran
        return n

    def run_forever(self) -> None:
        """Tick in real time, one tick every ``dt`` seconds, until stopped."""
        due = time.monotonic()
        while self.step():
            due += self.clock.dt
            time.sleep(max(0.0, due - time.monotonic()))
