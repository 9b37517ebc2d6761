"""Exception types raised by the sorbet runtime."""
from __future__ import annotations

from typing import Any


class SorbetError(Exception):
    """Base class for every error raised by sorbet."""


class UnknownStateError(SorbetError, KeyError):
    """Raised when a state is not part of a machine's catalog."""

    def __init__(self, state: Any, message: str) -> None:
        self.state = state
        super().__init__(message)


class NotRegisteredError(SorbetError, KeyError):
    """Raised when operating on an entity the machine does not track."""

    def __init__(self, entity: Any, message: str) -> None:
        self.entity = entity
        super().__init__(message)


class TransitionLoopError(SorbetError, RuntimeError):
    """Raised when deferred transitions keep re-queueing each other."""


class TrayConsumedError(SorbetError, RuntimeError):
    """Raised when a pause tray is consumed twice."""


class ConfigError(SorbetError, ValueError):
    """Raised on invalid machine configuration."""
