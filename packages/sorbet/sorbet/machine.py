"""FSM - entity directory, transitions, machine control and the update loop."""
from __future__ import annotations

from contextlib import contextmanager
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping

from sorbet_signal import DeferredQueue, Signal

from sorbet.config import MachineConfig
from sorbet.errors import NotRegisteredError, TransitionLoopError, UnknownStateError
from sorbet.log import get_logger
from sorbet.state import State
from sorbet.tray import Tray

logger = get_logger(__name__)

StateRef = State | str


class FSM:
    """Finite state machine driving many independent entities.

    Entities are opaque hashable handles. Each registered entity is paired
    with one catalogued State; active entities have received that state's
    ``on_enter``; updateable entities get ``on_update`` on every ``update``.

    Lifecycle operations issued for an entity while its own transition is
    running (from inside ``on_enter``/``on_exit``) are queued and replayed
    in order once the outermost transition has committed.
    """

    def __init__(
        self,
        initial_state: State,
        states: Iterable[State] = (),
        entities: Iterable[Any] = (),
        *,
        name: str | None = None,
        config: MachineConfig | None = None,
    ) -> None:
        if not isinstance(initial_state, State):
            raise TypeError(
                f"initial_state must be a State, got {type(initial_state).__name__}"
            )
        self._name = name if name is not None else f"fsm-{id(self):x}"
        self._config = config if config is not None else MachineConfig()
        self._initial_state = initial_state

        self._states: dict[str, State] = {}
        self._entity_state: dict[Any, State] = {}
        self._index: dict[State, dict[Any, None]] = {}
        self._active: dict[Any, None] = {}
        self._updateable: dict[Any, None] = {}
        self._running = True

        self._tray: Tray | None = None
        self._pause_pending = False
        self._updating = False

        self._transitioning: set[Any] = set()
        self._deferred = DeferredQueue()
        self._draining = False

        self.entity_registered = Signal()
        self.entity_unregistered = Signal()
        self.entity_activated = Signal()
        self.entity_deactivated = Signal()
        self.entity_paused = Signal()
        self.entity_resumed = Signal()
        self.entity_changed_state = Signal()
        self.machine_activated = Signal()
        self.machine_deactivated = Signal()
        self.machine_paused = Signal()
        self.machine_resumed = Signal()

        self.add_state(initial_state)
        for state in states:
            self.add_state(state)
        for entity in entities:
            self.register_entity(entity)

    # --- Properties ---

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> MachineConfig:
        return self._config

    @property
    def initial_state(self) -> State:
        return self._initial_state

    @property
    def states(self) -> Mapping[str, State]:
        return MappingProxyType(self._states)

    @property
    def entities(self) -> tuple[Any, ...]:
        return tuple(self._entity_state)

    @property
    def active_entities(self) -> tuple[Any, ...]:
        return tuple(self._active)

    @property
    def inactive_entities(self) -> tuple[Any, ...]:
        return tuple(e for e in self._entity_state if e not in self._active)

    @property
    def updateable_entities(self) -> tuple[Any, ...]:
        return tuple(self._updateable)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._tray is not None or self._pause_pending

    @property
    def tray(self) -> Tray | None:
        return self._tray

    # --- State catalog ---

    def add_state(self, state: State) -> bool:
        """Add ``state`` to the catalog. First registration of a name wins."""
        if not isinstance(state, State):
            raise TypeError(f"Expected a State, got {type(state).__name__}")
        existing = self._states.get(state.name)
        if existing is state:
            return False
        if existing is not None:
            logger.warning(
                "duplicate_state_name", machine=self._name, state=state.name,
            )
            return False
        self._states[state.name] = state
        self._index[state] = {}
        return True

    def get_state(self, name: str) -> State | None:
        state = self._states.get(name)
        if state is None:
            logger.warning("state_not_registered", machine=self._name, state=name)
        return state

    def _resolve(self, state: StateRef) -> State | None:
        if isinstance(state, str):
            return self._states.get(state)
        if isinstance(state, State):
            return state if self._states.get(state.name) is state else None
        raise TypeError(f"Expected a State or state name, got {type(state).__name__}")

    # --- Queries ---

    def is_registered(self, entity: Any) -> bool:
        return entity in self._entity_state

    def is_active(self, entity: Any) -> bool:
        return entity in self._active

    def is_updateable(self, entity: Any) -> bool:
        return entity in self._updateable

    def get_current_state(self, entity: Any) -> State | None:
        state = self._entity_state.get(entity)
        if state is None:
            logger.warning("entity_not_registered", machine=self._name, entity=entity)
        return state

    def get_entities_in_state(self, state: StateRef) -> list[Any]:
        """Entities currently paired with ``state``, in the order they arrived."""
        resolved = self._resolve(state)
        if resolved is None:
            logger.warning(
                "state_not_registered", machine=self._name, state=_state_name(state),
            )
            return []
        return list(self._index[resolved])

    # --- Entity directory ---

    def register_entity(self, entity: Any, initial_state: StateRef | None = None) -> bool:
        """Pair ``entity`` with a state without entering it.

        Raises UnknownStateError if ``initial_state`` is not catalogued.
        """
        if initial_state is None:
            state: State | None = self._initial_state
        else:
            state = self._resolve(initial_state)
        if state is None:
            raise UnknownStateError(
                initial_state,
                f"Cannot register {entity!r}: state "
                f"{_state_name(initial_state)!r} is not registered in {self._name}",
            )
        if entity in self._entity_state:
            logger.warning("entity_already_registered", machine=self._name, entity=entity)
            return False

        self._entity_state[entity] = state
        self._index[state][entity] = None
        if self._tray is not None:
            self._tray.park(entity)
        self.entity_registered.fire(entity, state)
        return True

    def unregister_entity(self, entity: Any) -> bool:
        """Drop ``entity`` from every collection. No exit callback runs."""
        state = self._entity_state.pop(entity, None)
        if state is None:
            return self._not_registered(entity, "unregister")

        self._index[state].pop(entity, None)
        self._active.pop(entity, None)
        self._updateable.pop(entity, None)
        if self._tray is not None:
            self._tray.forget(entity)
        self.entity_unregistered.fire(entity)
        return True

    def activate_entity(self, entity: Any, in_state: StateRef | None = None) -> bool:
        if entity in self._transitioning:
            return self._defer(self.activate_entity, entity, in_state)
        if entity not in self._entity_state:
            return self._not_registered(entity, "activate")
        target = None
        if in_state is not None:
            target = self._resolve(in_state)
            if target is None:
                return self._unknown_state(entity, in_state, "activate")
        if entity in self._active:
            logger.warning("entity_already_active", machine=self._name, entity=entity)
            return False

        with self._in_transition(entity):
            if target is not None:
                self._reassign(entity, target)
            state = self._entity_state[entity]
            state.enter(entity, self)
            committed = entity in self._entity_state
            if committed:
                self._active[entity] = None
                self._set_live(entity)

        if committed:
            self.entity_activated.fire(entity, state)
        self._drain()
        return committed

    def deactivate_entity(self, entity: Any, in_state: StateRef | None = None) -> bool:
        """Run ``on_exit`` and stop updating ``entity``.

        If ``in_state`` is given the entity is parked there afterwards and
        enters it on its next activation.
        """
        if entity in self._transitioning:
            return self._defer(self.deactivate_entity, entity, in_state)
        if entity not in self._entity_state:
            return self._not_registered(entity, "deactivate")
        target = None
        if in_state is not None:
            target = self._resolve(in_state)
            if target is None:
                return self._unknown_state(entity, in_state, "deactivate")
        if entity not in self._active:
            logger.warning("entity_already_inactive", machine=self._name, entity=entity)
            return False

        with self._in_transition(entity):
            self._clear_live(entity)
            state = self._entity_state[entity]
            state.exit(entity, self)
            committed = entity in self._entity_state
            if committed:
                self._active.pop(entity, None)
                if self._tray is not None:
                    self._tray.park(entity)
                if target is not None:
                    self._reassign(entity, target)

        if committed:
            self.entity_deactivated.fire(entity, self._entity_state[entity])
        self._drain()
        return committed

    def pause_entity(self, entity: Any) -> bool:
        """Stop updating ``entity`` while it stays active in its state."""
        if entity in self._transitioning:
            return self._defer(self.pause_entity, entity)
        if entity not in self._entity_state:
            return self._not_registered(entity, "pause")
        if entity not in self._active:
            logger.warning("entity_not_active", machine=self._name, entity=entity)
            return False
        if not self._is_live(entity):
            logger.warning("entity_already_paused", machine=self._name, entity=entity)
            return False

        self._clear_live(entity)
        self.entity_paused.fire(entity)
        return True

    def resume_entity(self, entity: Any) -> bool:
        if entity in self._transitioning:
            return self._defer(self.resume_entity, entity)
        if entity not in self._entity_state:
            return self._not_registered(entity, "resume")
        if entity not in self._active:
            logger.warning("entity_not_active", machine=self._name, entity=entity)
            return False
        if self._is_live(entity):
            logger.warning("entity_not_paused", machine=self._name, entity=entity)
            return False

        self._set_live(entity)
        self.entity_resumed.fire(entity)
        return True

    def register_and_activate_entity(
        self, entity: Any, initial_state: StateRef | None = None,
    ) -> bool:
        if not self.register_entity(entity, initial_state):
            return False
        return self.activate_entity(entity)

    def unregister_and_deactivate_entity(self, entity: Any) -> bool:
        if entity not in self._entity_state:
            return self._not_registered(entity, "unregister")
        if entity in self._active:
            self.deactivate_entity(entity)
        return self.unregister_entity(entity)

    # --- Transitions ---

    def change_state(self, entity: Any, new_state: StateRef) -> bool:
        """Exit the entity's current state and enter ``new_state``.

        Suppressed (returns False) while the machine is not running. The
        entity always ends up active. Called for an entity whose own
        transition is in flight, the change is queued and True is returned.
        """
        if not self._running:
            logger.warning(
                "transition_suppressed", machine=self._name, entity=entity,
                state=_state_name(new_state),
            )
            return False
        if entity not in self._entity_state:
            return self._not_registered(entity, "change state of")
        target = self._resolve(new_state)
        if target is None:
            return self._unknown_state(entity, new_state, "change state of")
        if entity in self._transitioning:
            return self._defer(self.change_state, entity, target)

        old = self._entity_state[entity]
        was_active = entity in self._active
        was_live = was_active and self._is_live(entity)

        with self._in_transition(entity):
            self._active[entity] = None
            self._updateable.pop(entity, None)
            self._index[old].pop(entity, None)
            # An inactive entity has no pending enter to pair an exit with.
            if was_active:
                try:
                    old.exit(entity, self)
                except BaseException:
                    self._undo_exit(entity, old, was_live)
                    raise
            if entity in self._entity_state:
                self._entity_state[entity] = target
                self._index[target][entity] = None
                # on_exit may have paused the machine; the tray then holds it.
                self._set_live(entity)
                target.enter(entity, self)
            committed = entity in self._entity_state

        if committed:
            self._log_transition(entity, old, target)
            self.entity_changed_state.fire(entity, target, old)
            if not was_active:
                self.entity_activated.fire(entity, target)
        self._drain()
        return committed

    @contextmanager
    def _in_transition(self, entity: Any) -> Iterator[None]:
        self._transitioning.add(entity)
        try:
            yield
        except BaseException:
            if len(self._transitioning) == 1 and not self._draining:
                self._deferred.clear()
            raise
        finally:
            self._transitioning.discard(entity)

    def _undo_exit(self, entity: Any, old: State, was_live: bool) -> None:
        """Put ``entity`` back where it was before a raising ``on_exit``."""
        if self._entity_state.get(entity) is not old:
            return
        self._index[old][entity] = None
        if was_live:
            self._set_live(entity)

    def _reassign(self, entity: Any, state: State) -> None:
        old = self._entity_state[entity]
        self._index[old].pop(entity, None)
        self._entity_state[entity] = state
        self._index[state][entity] = None

    def _defer(self, fn: Callable[..., bool], *args: Any) -> bool:
        logger.debug(
            "operation_deferred", machine=self._name, operation=fn.__name__,
            entity=args[0],
        )
        self._deferred.push(fn, *args)
        return True

    def _drain(self) -> None:
        if self._transitioning or self._draining or not self._deferred:
            return
        limit = self._config.max_chained_transitions
        self._draining = True
        try:
            replayed = 0
            while self._deferred:
                if replayed >= limit:
                    self._deferred.clear()
                    raise TransitionLoopError(
                        f"{self._name}: more than {limit} chained transitions; "
                        f"states are likely re-entering each other"
                    )
                replayed += self._deferred.flush(limit - replayed)
        except BaseException:
            self._deferred.clear()
            raise
        finally:
            self._draining = False

    def _log_transition(self, entity: Any, old: State, new: State) -> None:
        log = logger.info if self._config.trace_transitions else logger.debug
        log(
            "state_changed", machine=self._name, entity=entity,
            from_state=old.name, to_state=new.name,
        )

    # --- Machine control ---

    def turn_on(self, in_state: StateRef | None = None) -> int:
        """Activate every registered but inactive entity. Returns the count."""
        inactive = [e for e in self._entity_state if e not in self._active]
        return sum(1 for entity in inactive if self.activate_entity(entity, in_state))

    def turn_off(self) -> int:
        """Deactivate every active entity. Returns the count."""
        active = [e for e in self._entity_state if e in self._active]
        return sum(1 for entity in active if self.deactivate_entity(entity))

    def start(self, in_state: StateRef | None = None) -> bool:
        """Run the machine and activate every inactive entity.

        A paused machine is resumed first.
        """
        was_running = self._running
        if self.paused:
            self.resume_machine()
        has_inactive = any(e not in self._active for e in self._entity_state)
        if was_running and not has_inactive:
            logger.warning("machine_already_started", machine=self._name)
            return False

        self._running = True
        self.turn_on(in_state)
        self.machine_activated.fire(self)
        return True

    def stop(self) -> bool:
        """Stop the machine and deactivate every active entity.

        A pending pause snapshot is discarded; its entities exit normally.
        """
        if not self._running and not self.paused and not self._active:
            logger.warning("machine_already_stopped", machine=self._name)
            return False

        self._running = False
        self._pause_pending = False
        self._tray = None
        self.turn_off()
        self.machine_deactivated.fire(self)
        return True

    def pause_machine(self) -> bool:
        """Freeze every entity in place. No exit callbacks run.

        Called during ``update`` the snapshot is taken once the pass ends.
        """
        if not self._running:
            logger.warning("machine_not_running", machine=self._name, action="pause")
            return False

        self._running = False
        if self._updating:
            self._pause_pending = True
        else:
            self._take_snapshot()
        self.machine_paused.fire(self)
        return True

    def resume_machine(self) -> bool:
        """Restore exactly the entities that were updateable at pause time."""
        if not self.paused:
            logger.warning("machine_not_paused", machine=self._name)
            return False

        if self._pause_pending:
            self._pause_pending = False
        else:
            tray = self._tray
            self._tray = None
            for entity in tray.consume():
                if entity in self._active:
                    self._updateable[entity] = None
        self._running = True
        self.machine_resumed.fire(self)
        return True

    def _take_snapshot(self) -> None:
        self._pause_pending = False
        self._tray = Tray(
            active_when_paused=dict(self._updateable),
            inactive_when_paused={
                e: None for e in self._entity_state if e not in self._active
            },
        )
        self._updateable.clear()

    def _is_live(self, entity: Any) -> bool:
        if self._tray is not None:
            return self._tray.holds(entity)
        return entity in self._updateable

    def _set_live(self, entity: Any) -> None:
        if self._tray is not None:
            self._tray.hold(entity)
        else:
            self._updateable[entity] = None

    def _clear_live(self, entity: Any) -> None:
        if self._tray is not None:
            self._tray.release(entity)
        self._updateable.pop(entity, None)

    # --- Update loop ---

    def update(self, dt: float) -> None:
        """Call ``on_update`` for every updateable entity, in activation order.

        Stops early if the machine stops running mid-pass. Entities removed
        from the updateable set earlier in the pass are skipped.
        """
        if not self._running:
            return
        self._updating = True
        try:
            for entity in list(self._updateable):
                if not self._running:
                    break
                if entity not in self._updateable:
                    continue
                self._entity_state[entity].update(entity, self, dt)
        finally:
            self._updating = False
            if self._pause_pending:
                self._take_snapshot()

    # --- Diagnostics ---

    def _not_registered(self, entity: Any, action: str) -> bool:
        if self._config.strict:
            raise NotRegisteredError(
                entity, f"Cannot {action} {entity!r}: not registered in {self._name}",
            )
        logger.warning(
            "entity_not_registered", machine=self._name, entity=entity, action=action,
        )
        return False

    def _unknown_state(self, entity: Any, state: Any, action: str) -> bool:
        if self._config.strict:
            raise UnknownStateError(
                state,
                f"Cannot {action} {entity!r}: state {_state_name(state)!r} "
                f"is not registered in {self._name}",
            )
        logger.warning(
            "state_not_registered", machine=self._name, entity=entity,
            state=_state_name(state), action=action,
        )
        return False

    def __repr__(self) -> str:
        return (
            f"FSM(name={self._name!r}, states={list(self._states)!r}, "
            f"entities={len(self._entity_state)}, running={self._running})"
        )


def _state_name(state: Any) -> str:
    return state.name if isinstance(state, State) else str(state)
