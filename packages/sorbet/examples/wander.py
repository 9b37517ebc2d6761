"""Idle/wander loop -- knights rest, stroll somewhere random, rest again.

Demonstrates:
- States built with create_state and shared by every knight
- Transitions requested from on_update
- Pausing the whole machine mid-simulation and resuming it exactly
- Reacting to machine signals (freeze walkers on pause)

Run: python -m examples.wander
"""

import math
import random
from dataclasses import dataclass

from sorbet import FSM, Ticker, configure_logging, create_state, make_machine_system


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Knight:
    name: str
    x: float = 0.0
    y: float = 0.0
    target: tuple[float, float] | None = None
    rested: float = 0.0


IDLE_SECONDS = 1.0
WANDER_DISTANCE = 5.0
SPEED = 4.0


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

def idle_enter(knight: Knight, fsm: FSM) -> None:
    knight.rested = 0.0
    print(f"  {knight.name} idles at ({knight.x:.1f}, {knight.y:.1f})")


def idle_update(knight: Knight, fsm: FSM, dt: float) -> None:
    knight.rested += dt
    if knight.rested >= IDLE_SECONDS:
        fsm.change_state(knight, "Wandering")


def wander_enter(knight: Knight, fsm: FSM) -> None:
    angle = random.random() * math.tau
    knight.target = (
        knight.x + math.cos(angle) * WANDER_DISTANCE,
        knight.y + math.sin(angle) * WANDER_DISTANCE,
    )
    print(f"  {knight.name} wanders toward ({knight.target[0]:.1f}, {knight.target[1]:.1f})")


def wander_update(knight: Knight, fsm: FSM, dt: float) -> None:
    tx, ty = knight.target
    dx, dy = tx - knight.x, ty - knight.y
    dist = math.hypot(dx, dy)
    step = SPEED * dt
    if dist <= step:
        knight.x, knight.y = tx, ty
        fsm.change_state(knight, "Idle")
        return
    knight.x += dx / dist * step
    knight.y += dy / dist * step


def wander_exit(knight: Knight, fsm: FSM) -> None:
    knight.target = None


idle = create_state("Idle", on_enter=idle_enter, on_update=idle_update)
wandering = create_state(
    "Wandering", on_enter=wander_enter, on_update=wander_update, on_exit=wander_exit,
)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    configure_logging(level="INFO")
    random.seed(7)

    knights = [Knight("Arthur"), Knight("Gawain", x=10.0)]
    fsm = FSM(idle, [wandering], knights, name="knights")
    fsm.machine_paused.subscribe(
        lambda m: print(f"  -- paused, walking: {[k.name for k in m.get_entities_in_state('Wandering')]}")
    )
    fsm.machine_resumed.subscribe(lambda m: print("  -- resumed"))

    ticker = Ticker(tps=10)
    ticker.add_system(make_machine_system(fsm))

    def pause_switch(ctx) -> None:
        if ctx.tick_number == 25:
            fsm.pause_machine()
        elif ctx.tick_number == 35:
            fsm.resume_machine()

    ticker.add_system(pause_switch)

    fsm.start()
    ticker.run(60)

    for knight in knights:
        state = fsm.get_current_state(knight)
        print(f"{knight.name}: {state.name} at ({knight.x:.1f}, {knight.y:.1f})")


if __name__ == "__main__":
    main()
