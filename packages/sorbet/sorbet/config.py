"""Machine configuration."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from sorbet.errors import ConfigError

_SECTION = "sorbet"


@dataclass(frozen=True)
class MachineConfig:
    """Behavior switches for an FSM.

    ``strict`` turns precondition warnings (unknown entity, unknown state)
    into raised errors. ``trace_transitions`` logs every state change at
    info level instead of debug. ``max_chained_transitions`` bounds how many
    deferred operations one outer transition may replay.
    """

    strict: bool = False
    trace_transitions: bool = False
    max_chained_transitions: int = 64

    def __post_init__(self) -> None:
        if not isinstance(self.max_chained_transitions, int) or isinstance(
            self.max_chained_transitions, bool
        ):
            raise ConfigError(
                f"max_chained_transitions must be an int, got "
                f"{type(self.max_chained_transitions).__name__}"
            )
        if self.max_chained_transitions < 1:
            raise ConfigError(
                f"max_chained_transitions must be >= 1, got {self.max_chained_transitions}"
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> MachineConfig:
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**dict(data))


def load_config(path: str | Path) -> MachineConfig:
    """Read a YAML file into a MachineConfig.

    Keys may sit at the top level or under a ``sorbet:`` section. An empty
    file yields the defaults.
    """
    with open(path) as f:
        data = yaml.safe_load(f)

    if data is None:
        return MachineConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")
    if _SECTION in data:
        data = data[_SECTION] or {}
        if not isinstance(data, dict):
            raise ConfigError(f"'{_SECTION}' section must be a mapping")
    return MachineConfig.from_mapping(data)
