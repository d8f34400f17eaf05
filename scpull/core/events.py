"""
Lifecycle event registry shared by the receiver and the pull orchestrator
"""
from typing import Callable

DOWNLOAD = "download"   # (path, size)
MKDIR = "mkdir"         # (path,)
PROGRESS = "progress"   # (path, written, total)
DONE = "done"           # (path,)
FINISH = "finish"       # ()
ERROR = "error"         # (exc,)

RECEIVER_EVENTS = (DOWNLOAD, MKDIR, PROGRESS, DONE)
ALL_EVENTS = RECEIVER_EVENTS + (FINISH, ERROR)


class EventEmitter:
    """Minimal observer list keyed by event name."""

    def __init__(self):
        self._handlers: dict[str, list[Callable]] = {name: [] for name in ALL_EVENTS}

    def on(self, name: str, handler: Callable) -> "EventEmitter":
        if name not in self._handlers:
            raise ValueError(f"unknown event {name!r}")
        self._handlers[name].append(handler)
        return self

    def off(self, name: str, handler: Callable):
        try:
            self._handlers[name].remove(handler)
        except (KeyError, ValueError):
            pass

    def emit(self, name: str, *args):
        for handler in list(self._handlers.get(name, ())):
            handler(*args)
