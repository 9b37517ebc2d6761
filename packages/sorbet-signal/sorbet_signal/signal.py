"""Plain observer list with immediate, token-based dispatch."""
from __future__ import annotations

import itertools
from typing import Any, Callable

_Handler = Callable[..., None]


class Signal:
    """Ordered list of handlers called synchronously by ``fire``.

    ``subscribe`` and ``once`` hand back integer tokens; keep the token to
    ``unsubscribe`` later. Handlers run in subscription order.
    """

    def __init__(self) -> None:
        self._handlers: dict[int, tuple[_Handler, bool]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, handler: _Handler) -> int:
        token = next(self._tokens)
        self._handlers[token] = (handler, False)
        return token

    def once(self, handler: _Handler) -> int:
        """Subscribe for a single delivery. Dropped before it is called."""
        token = next(self._tokens)
        self._handlers[token] = (handler, True)
        return token

    def unsubscribe(self, token: int) -> bool:
        return self._handlers.pop(token, None) is not None

    def fire(self, *args: Any, **kwargs: Any) -> None:
        snapshot = list(self._handlers.items())
        for token, (handler, one_shot) in snapshot:
            if token not in self._handlers:
                # Unsubscribed by an earlier handler in this dispatch.
                continue
            if one_shot:
                del self._handlers[token]
            handler(*args, **kwargs)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)
