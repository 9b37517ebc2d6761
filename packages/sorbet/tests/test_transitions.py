"""Tests for change_state: protocol, reverse index and reentrancy."""
from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from sorbet import FSM, MachineConfig, NotRegisteredError, TransitionLoopError, UnknownStateError


class TestChangeState:

    def test_idle_to_wandering(self, fsm, idle, wandering, npc, calls, check_partition):
        """One exit, one enter, one notification, new current state."""
        fsm.register_and_activate_entity(npc)
        calls.clear()
        changes = []
        fsm.entity_changed_state.subscribe(lambda e, new, old: changes.append((e, new, old)))

        assert fsm.change_state(npc, wandering) is True

        assert calls == [("exit", "Idle", npc), ("enter", "Wandering", npc)]
        assert changes == [(npc, wandering, idle)]
        assert fsm.get_current_state(npc) is wandering
        check_partition(fsm)

    def test_change_by_name(self, fsm, wandering, npc):
        fsm.register_and_activate_entity(npc)
        assert fsm.change_state(npc, "Wandering") is True
        assert fsm.get_current_state(npc) is wandering

    def test_reverse_index_follows_entity(self, fsm, idle, wandering, npcs):
        a, b, c = npcs
        for entity in npcs:
            fsm.register_and_activate_entity(entity)

        fsm.change_state(b, wandering)

        assert fsm.get_entities_in_state(idle) == [a, c]
        assert fsm.get_entities_in_state("Wandering") == [b]

    def test_unknown_state_leaves_entity_unchanged(self, fsm, idle, npc, calls, make_state):
        fsm.register_and_activate_entity(npc)
        calls.clear()

        with capture_logs() as logs:
            assert fsm.change_state(npc, make_state("Sleeping")) is False

        assert fsm.get_current_state(npc) is idle
        assert calls == []
        assert [entry["event"] for entry in logs] == ["state_not_registered"]

    def test_unknown_state_name(self, fsm, idle, npc):
        fsm.register_and_activate_entity(npc)
        with capture_logs():
            assert fsm.change_state(npc, "Sleeping") is False
        assert fsm.get_current_state(npc) is idle

    def test_same_name_different_object_is_unknown(self, fsm, idle, npc, make_state):
        """States are matched by identity, not by name."""
        fsm.register_and_activate_entity(npc)
        with capture_logs():
            assert fsm.change_state(npc, make_state("Wandering")) is False
        assert fsm.get_current_state(npc) is idle

    def test_unknown_state_strict_raises(self, idle, wandering, npc):
        machine = FSM(idle, [wandering], config=MachineConfig(strict=True))
        machine.register_and_activate_entity(npc)
        with pytest.raises(UnknownStateError):
            machine.change_state(npc, "Sleeping")
        assert machine.get_current_state(npc) is idle

    def test_unregistered_entity(self, fsm, wandering, npc):
        with capture_logs() as logs:
            assert fsm.change_state(npc, wandering) is False
        assert logs[0]["event"] == "entity_not_registered"

    def test_unregistered_entity_strict_raises(self, idle, wandering, npc):
        machine = FSM(idle, [wandering], config=MachineConfig(strict=True))
        with pytest.raises(NotRegisteredError):
            machine.change_state(npc, wandering)

    def test_bad_state_type_raises(self, fsm, npc):
        fsm.register_and_activate_entity(npc)
        with pytest.raises(TypeError):
            fsm.change_state(npc, 3)

    def test_suppressed_while_paused(self, fsm, idle, wandering, npc, calls):
        fsm.register_and_activate_entity(npc)
        fsm.pause_machine()
        calls.clear()

        with capture_logs() as logs:
            assert fsm.change_state(npc, wandering) is False

        assert fsm.get_current_state(npc) is idle
        assert calls == []
        assert logs[0]["event"] == "transition_suppressed"

    def test_suppressed_while_stopped(self, fsm, idle, wandering, npc):
        fsm.register_entity(npc)
        fsm.stop()
        with capture_logs():
            assert fsm.change_state(npc, wandering) is False
        assert fsm.get_current_state(npc) is idle

    def test_inactive_entity_is_activated_without_exit(self, fsm, wandering, npc, calls, check_partition):
        """An entity that never entered its state does not exit it."""
        fsm.register_entity(npc)
        activated = []
        fsm.entity_activated.subscribe(lambda e, s: activated.append((e, s)))

        assert fsm.change_state(npc, wandering) is True

        assert calls == [("enter", "Wandering", npc)]
        assert fsm.is_active(npc)
        assert fsm.is_updateable(npc)
        assert activated == [(npc, wandering)]
        check_partition(fsm)

    def test_change_state_resumes_paused_entity(self, fsm, wandering, npc):
        fsm.register_and_activate_entity(npc)
        fsm.pause_entity(npc)

        fsm.change_state(npc, wandering)

        assert fsm.is_updateable(npc)

    def test_entity_not_updateable_during_callbacks(self, make_state, npc):
        seen = []

        def on_exit(entity, fsm):
            seen.append(("exit", fsm.is_updateable(entity), fsm.get_entities_in_state("Source")))

        def on_enter(entity, fsm):
            seen.append(("enter", fsm.is_updateable(entity), fsm.get_current_state(entity).name))

        source = make_state("Source", on_exit=on_exit)
        target = make_state("Target", on_enter=on_enter)
        machine = FSM(source, [target])
        machine.register_and_activate_entity(npc)

        machine.change_state(npc, target)

        assert seen == [("exit", False, []), ("enter", True, "Target")]

    def test_transition_to_same_state(self, fsm, idle, npc, calls):
        """Re-entering the current state runs exit then enter."""
        fsm.register_and_activate_entity(npc)
        calls.clear()

        assert fsm.change_state(npc, idle) is True

        assert calls == [("exit", "Idle", npc), ("enter", "Idle", npc)]
        assert fsm.get_entities_in_state(idle) == [npc]

    def test_unregister_during_exit_aborts(self, make_state, npc, calls):
        source = make_state("Source", on_exit=lambda e, f: f.unregister_entity(e))
        target = make_state("Target")
        machine = FSM(source, [target])
        machine.register_and_activate_entity(npc)
        calls.clear()
        changes = []
        machine.entity_changed_state.subscribe(lambda *args: changes.append(args))

        assert machine.change_state(npc, target) is False

        assert calls == []
        assert changes == []
        assert not machine.is_registered(npc)
        assert machine.get_entities_in_state(target) == []
        assert machine.updateable_entities == ()

    def test_callback_error_propagates_and_releases_guard(self, make_state, npc, calls):
        def on_enter(entity, fsm):
            raise RuntimeError("bad enter")

        source = make_state("Source")
        broken = make_state("Broken", on_enter=on_enter)
        machine = FSM(source, [broken])
        machine.register_and_activate_entity(npc)

        with pytest.raises(RuntimeError, match="bad enter"):
            machine.change_state(npc, broken)

        calls.clear()
        assert machine.change_state(npc, source) is True
        assert calls == [("exit", "Broken", npc), ("enter", "Source", npc)]

    def test_exit_error_leaves_entity_in_old_state(self, make_state, npcs, check_partition):
        first, second, _ = npcs

        def on_exit(entity, fsm):
            raise RuntimeError("bad exit")

        source = make_state("Source", on_exit=on_exit)
        target = make_state("Target")
        machine = FSM(source, [target])
        machine.register_and_activate_entity(first)
        machine.register_and_activate_entity(second)

        with pytest.raises(RuntimeError, match="bad exit"):
            machine.change_state(first, target)

        check_partition(machine)
        assert machine.get_current_state(first) is source
        assert set(machine.get_entities_in_state(source)) == {first, second}
        assert machine.get_entities_in_state(target) == []
        assert machine.is_active(first)
        assert machine.is_updateable(first)

    def test_exit_error_keeps_paused_entity_paused(self, make_state, npc, check_partition):
        def on_exit(entity, fsm):
            raise RuntimeError("bad exit")

        source = make_state("Source", on_exit=on_exit)
        target = make_state("Target")
        machine = FSM(source, [target])
        machine.register_and_activate_entity(npc)
        machine.pause_entity(npc)

        with pytest.raises(RuntimeError):
            machine.change_state(npc, target)

        check_partition(machine)
        assert machine.is_active(npc)
        assert not machine.is_updateable(npc)

    def test_pause_from_exit_parks_entity_in_tray(self, make_state, npc, check_partition):
        source = make_state("Source", on_exit=lambda e, f: f.pause_machine())
        target = make_state("Target")
        machine = FSM(source, [target])
        machine.register_and_activate_entity(npc)

        assert machine.change_state(npc, target) is True

        assert machine.paused
        assert machine.get_current_state(npc) is target
        assert machine.updateable_entities == ()
        assert machine.tray.holds(npc)
        check_partition(machine)

        machine.resume_machine()

        assert machine.updateable_entities == (npc,)


class TestReentrancy:

    def test_change_from_on_enter_runs_after_commit(self, make_state, npc, calls):
        """Born enters Aging from its own on_enter; the change is replayed."""
        events = []

        def born_enter(entity, fsm):
            calls.append(("enter", "Born", entity))
            assert fsm.change_state(entity, "Aging") is True
            # Still committed to Born while its enter is running.
            events.append(("in_enter", fsm.get_current_state(entity).name))

        born = make_state("Born", on_enter=born_enter)
        aging = make_state("Aging")
        machine = FSM(born, [aging])
        machine.entity_activated.subscribe(lambda e, s: events.append(("activated", s.name)))
        machine.entity_changed_state.subscribe(
            lambda e, new, old: events.append(("changed", old.name, new.name))
        )

        machine.register_and_activate_entity(npc)

        assert calls == [
            ("enter", "Born", npc),
            ("exit", "Born", npc),
            ("enter", "Aging", npc),
        ]
        assert events == [
            ("in_enter", "Born"),
            ("activated", "Born"),
            ("changed", "Born", "Aging"),
        ]
        assert machine.get_current_state(npc) is aging

    def test_change_from_on_exit_runs_after_commit(self, make_state, npc, calls):
        def a_exit(entity, fsm):
            calls.append(("exit", "A", entity))
            fsm.change_state(entity, "C")

        a = make_state("A", on_exit=a_exit)
        b = make_state("B")
        c = make_state("C")
        machine = FSM(a, [b, c])
        machine.register_and_activate_entity(npc)
        calls.clear()

        machine.change_state(npc, b)

        assert calls == [
            ("exit", "A", npc),
            ("enter", "B", npc),
            ("exit", "B", npc),
            ("enter", "C", npc),
        ]
        assert machine.get_current_state(npc) is c

    def test_deferred_operations_keep_order(self, make_state, npc, calls):
        def go_enter(entity, fsm):
            calls.append(("enter", "Go", entity))
            fsm.change_state(entity, "Stop")
            fsm.pause_entity(entity)

        start = make_state("Start")
        go = make_state("Go", on_enter=go_enter)
        stop = make_state("Stop")
        machine = FSM(start, [go, stop])
        machine.register_and_activate_entity(npc)

        machine.change_state(npc, go)

        assert machine.get_current_state(npc) is stop
        assert machine.is_active(npc)
        assert not machine.is_updateable(npc)

    def test_other_entity_changes_synchronously(self, make_state, npcs, calls):
        leader, follower, _ = npcs

        def rally_enter(entity, fsm):
            calls.append(("enter", "Rally", entity))
            if entity is leader:
                fsm.change_state(follower, "Rally")
                calls.append(("after_follower", fsm.get_current_state(follower).name))

        idle = make_state("Idle")
        rally = make_state("Rally", on_enter=rally_enter)
        machine = FSM(idle, [rally], entities=[leader, follower])
        machine.start()
        calls.clear()

        machine.change_state(leader, rally)

        assert calls == [
            ("exit", "Idle", leader),
            ("enter", "Rally", leader),
            ("exit", "Idle", follower),
            ("enter", "Rally", follower),
            ("after_follower", "Rally"),
        ]

    def test_ping_pong_states_raise_loop_error(self, make_state, npc):
        """Two states entering each other forever are cut off."""
        s1 = make_state("S1", on_enter=lambda e, f: f.change_state(e, "S2"))
        s2 = make_state("S2", on_enter=lambda e, f: f.change_state(e, "S1"))
        machine = FSM(s1, [s2], config=MachineConfig(max_chained_transitions=10))
        machine.register_entity(npc)

        with pytest.raises(TransitionLoopError):
            machine.activate_entity(npc)

        # Queue is dropped; the machine keeps working afterwards.
        assert machine.is_registered(npc)
        assert machine.unregister_entity(npc) is True

    def test_loop_limit_counts_each_replayed_operation(self, make_state, npc):
        """One callback queueing a large batch still hits the limit."""
        replayed = []

        def burst_enter(entity, fsm):
            for _ in range(3):
                fsm.pause_entity(entity)
                fsm.resume_entity(entity)

        burst = make_state("Burst", on_enter=burst_enter)
        machine = FSM(burst, config=MachineConfig(max_chained_transitions=4))
        machine.entity_paused.subscribe(lambda e: replayed.append("paused"))
        machine.entity_resumed.subscribe(lambda e: replayed.append("resumed"))

        with pytest.raises(TransitionLoopError):
            machine.register_and_activate_entity(npc)

        assert replayed == ["paused", "resumed"] * 2

    def test_finite_chain_within_limit(self, make_state, npc):
        steps = []

        def counting_enter(entity, fsm):
            steps.append(fsm.get_current_state(entity).name)
            if len(steps) < 5:
                fsm.change_state(entity, "Count")

        count = make_state("Count", on_enter=counting_enter)
        machine = FSM(count, config=MachineConfig(max_chained_transitions=5))

        machine.register_and_activate_entity(npc)

        assert steps == ["Count"] * 5

    def test_deactivate_from_on_enter_is_deferred(self, make_state, npc, calls):
        def brief_enter(entity, fsm):
            calls.append(("enter", "Brief", entity))
            fsm.deactivate_entity(entity)

        brief = make_state("Brief", on_enter=brief_enter)
        machine = FSM(brief)

        machine.register_and_activate_entity(npc)

        assert calls == [("enter", "Brief", npc), ("exit", "Brief", npc)]
        assert not machine.is_active(npc)

    def test_deferred_change_is_logged(self, make_state, npc):
        born = make_state("Born", on_enter=lambda e, f: f.change_state(e, "Aging"))
        aging = make_state("Aging")
        machine = FSM(born, [aging])

        with capture_logs() as logs:
            machine.register_and_activate_entity(npc)

        deferred = [entry for entry in logs if entry["event"] == "operation_deferred"]
        assert len(deferred) == 1
        assert deferred[0]["operation"] == "change_state"
