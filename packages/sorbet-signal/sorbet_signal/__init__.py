"""sorbet-signal - Observer lists and deferred task queues for sorbet."""
from __future__ import annotations

from sorbet_signal.queue import DeferredQueue
from sorbet_signal.signal import Signal

__all__ = ["DeferredQueue", "Signal"]
