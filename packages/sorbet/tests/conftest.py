"""Shared fixtures for sorbet tests."""
from __future__ import annotations

import pytest
import structlog

from sorbet import FSM, create_state


class Npc:
    """Hashable stand-in for a game object."""

    def __init__(self, label: str) -> None:
        self.label = label

    def __repr__(self) -> str:
        return f"Npc({self.label!r})"


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def calls():
    """Ordered record of every callback invocation."""
    return []


@pytest.fixture
def make_state(calls):
    """Build a state that records enter/update/exit into ``calls``.

    Keyword overrides replace the recording callbacks.
    """

    def _make(name, **overrides):
        def on_enter(entity, fsm):
            calls.append(("enter", name, entity))

        def on_update(entity, fsm, dt):
            calls.append(("update", name, entity, dt))

        def on_exit(entity, fsm):
            calls.append(("exit", name, entity))

        callbacks = {"on_enter": on_enter, "on_update": on_update, "on_exit": on_exit}
        callbacks.update(overrides)
        return create_state(name, **callbacks)

    return _make


@pytest.fixture
def idle(make_state):
    return make_state("Idle")


@pytest.fixture
def wandering(make_state):
    return make_state("Wandering")


@pytest.fixture
def fsm(idle, wandering):
    return FSM(idle, [wandering], name="npcs")


@pytest.fixture
def npc():
    return Npc("knight")


@pytest.fixture
def npcs():
    return [Npc("a"), Npc("b"), Npc("c")]


def assert_partition(machine: FSM) -> None:
    """Check the set invariants that hold outside a transition."""
    registered = set(machine.entities)
    active = set(machine.active_entities)
    inactive = set(machine.inactive_entities)
    updateable = set(machine.updateable_entities)

    assert active <= registered
    assert updateable <= active
    assert active.isdisjoint(inactive)
    assert active | inactive == registered
    for state in machine.states.values():
        for entity in machine.get_entities_in_state(state):
            assert machine.get_current_state(entity) is state
    for entity in registered:
        state = machine.get_current_state(entity)
        assert entity in machine.get_entities_in_state(state)


@pytest.fixture
def check_partition():
    return assert_partition
