"""Person lifecycle -- born, aging, legal, dead.

Demonstrates:
- A state that moves on from its own on_enter (queued until the enter commits)
- Per-entity pause: the dead stay in their state but stop updating
- Entity signals (changed state, paused)
- Transition tracing through MachineConfig

Run: python -m examples.lifecycle
"""

from sorbet import FSM, MachineConfig, configure_logging, create_state


class Person:

    def __init__(self, name: str, lifespan: int) -> None:
        self.name = name
        self.age = 0
        self.lifespan = lifespan

    def __repr__(self) -> str:
        return self.name


LEGAL_AGE = 21


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

def born_enter(person: Person, fsm: FSM) -> None:
    print(f"  {person.name} was born")
    fsm.change_state(person, "Aging")


def born_exit(person: Person, fsm: FSM) -> None:
    print(f"  {person.name}'s journey begins")


def grow(person: Person, fsm: FSM, dt: float) -> None:
    person.age += 1
    if person.age >= person.lifespan:
        fsm.change_state(person, "Dead")
    elif person.age >= LEGAL_AGE and fsm.get_current_state(person).name == "Aging":
        fsm.change_state(person, "Legal")


def dead_enter(person: Person, fsm: FSM) -> None:
    print(f"  {person.name} died at {person.age}")
    fsm.pause_entity(person)


born = create_state("Born", on_enter=born_enter, on_exit=born_exit)
aging = create_state("Aging", on_update=grow)
legal = create_state(
    "Legal",
    on_enter=lambda p, fsm: print(f"  {p.name} is now legal"),
    on_update=grow,
)
dead = create_state("Dead", on_enter=dead_enter)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    configure_logging(level="INFO", include_timestamp=False)

    people = [Person("Keykay", lifespan=18), Person("Morgan", lifespan=70)]
    fsm = FSM(
        born, [aging, legal, dead],
        name="people",
        config=MachineConfig(trace_transitions=True),
    )
    fsm.entity_paused.subscribe(
        lambda p: print(f"  {p.name} died too young") if p.age <= LEGAL_AGE else None
    )

    for person in people:
        fsm.register_and_activate_entity(person)

    year = 0
    while fsm.updateable_entities:
        year += 1
        fsm.update(1.0)

    print(f"Everyone rests after {year} years:")
    for state in fsm.states.values():
        print(f"  {state.name}: {fsm.get_entities_in_state(state)}")


if __name__ == "__main__":
    main()
