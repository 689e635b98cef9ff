"""Synchronous pub/sub for authentication events.

Listeners run in registration order at emit time.  A listener that raises is
logged and skipped; the remaining listeners for that emit still run.
Removal is by identity: callers must keep the exact handler they registered.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

_LOG = logging.getLogger("easyauth.core.events")

Listener = Callable[..., Any]


class EventEmitter:
    def __init__(self) -> None:
        self._events: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        listeners = self._events.setdefault(event, [])
        if not any(existing is listener for existing in listeners):
            listeners.append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._events.get(event)
        if not listeners:
            return
        self._events[event] = [existing for existing in listeners if existing is not listener]
        if not self._events[event]:
            del self._events[event]

    def once(self, event: str, listener: Listener) -> Listener:
        """Register *listener* for a single emit.

        Returns the wrapper actually registered so it can be passed to
        :meth:`off` before it fires.
        """

        def _once(*args: Any, **kwargs: Any) -> Any:
            self.off(event, _once)
            return listener(*args, **kwargs)

        self.on(event, _once)
        return _once

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        # snapshot: listeners added or removed during dispatch apply next emit
        for listener in list(self._events.get(event, ())):
            try:
                listener(*args, **kwargs)
            except Exception:  # noqa: BLE001 – one bad listener must not stop the rest
                _LOG.error("Error in %r listener %r", event, listener, exc_info=True)

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._events.clear()
        else:
            self._events.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._events.get(event, ()))

    def event_names(self) -> list[str]:
        return list(self._events)
