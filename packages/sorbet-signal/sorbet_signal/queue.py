"""FIFO of deferred calls with per-flush snapshot semantics."""
from __future__ import annotations

from typing import Any, Callable

_Task = tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]


class DeferredQueue:

    def __init__(self) -> None:
        self._queue: list[_Task] = []

    def push(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._queue.append((fn, args, kwargs))

    def flush(self, limit: int | None = None) -> int:
        """Run every task queued so far and return how many ran.

        Tasks pushed while flushing are kept for the next flush. With
        ``limit`` at most that many tasks run; the rest stay at the front of
        the queue. If a task raises, the rest of its batch is dropped and the
        error propagates.
        """
        snapshot = self._queue
        if limit is not None and limit < len(snapshot):
            snapshot, self._queue = snapshot[:limit], snapshot[limit:]
        else:
            self._queue = []
        for fn, args, kwargs in snapshot:
            fn(*args, **kwargs)
        return len(snapshot)

    def clear(self) -> None:
        self._queue.clear()

    def __len__(self) -> int:
        return len(self._queue)
