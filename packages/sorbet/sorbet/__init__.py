"""sorbet - Finite state machine runtime for tick-driven entities."""
from __future__ import annotations

from sorbet.clock import Clock, TickContext, Ticker
from sorbet.config import MachineConfig, load_config
from sorbet.errors import (
    ConfigError,
    NotRegisteredError,
    SorbetError,
    TransitionLoopError,
    TrayConsumedError,
    UnknownStateError,
)
from sorbet.log import configure_logging, get_logger
from sorbet.machine import FSM
from sorbet.state import State, create_state
from sorbet.systems import make_machine_system
from sorbet.tray import Tray

__all__ = [
    "FSM",
    "State",
    "create_state",
    "Tray",
    "MachineConfig",
    "load_config",
    "Clock",
    "Ticker",
    "TickContext",
    "make_machine_system",
    "configure_logging",
    "get_logger",
    "SorbetError",
    "UnknownStateError",
    "NotRegisteredError",
    "TransitionLoopError",
    "TrayConsumedError",
    "ConfigError",
]
