"""Typed on/off event emitter shared by the transport and the connection."""

from __future__ import annotations

import enum
from typing import Any, Callable, Generic, TypeVar

import structlog

log = structlog.get_logger()

K = TypeVar("K", bound=enum.Enum)

Handler = Callable[..., Any]


class EventEmitter(Generic[K]):
    """Holds handlers per event kind and dispatches to them in registration order."""

    def __init__(self) -> None:
        self._handlers: dict[K, list[Handler]] = {}

    def on(self, kind: K, handler: Handler) -> None:
        handlers = self._handlers.setdefault(kind, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, kind: K, handler: Handler | None = None) -> None:
        """Remove one handler, or every handler of ``kind`` when none is given."""
        if handler is None:
            self._handlers.pop(kind, None)
            return
        handlers = self._handlers.get(kind, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def emit(self, kind: K, *args: Any) -> None:
        # Copy: handlers may unregister themselves (or others) while running.
        for handler in list(self._handlers.get(kind, ())):
            try:
                handler(*args)
            except Exception:
                log.exception("event_handler_error", kind=kind.value)

    def handler_count(self, kind: K) -> int:
        return len(self._handlers.get(kind, ()))
