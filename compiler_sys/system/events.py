"""Publish/subscribe bus for filesystem change notifications."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, Dict, List

from compiler_sys.logging import get_logger

LOGGER = get_logger("EventBus")


class WatchEvent(str, Enum):
    """Normalized vocabulary of filesystem change events."""

    FILE_ADD = "fileAdd"
    FILE_UPDATE = "fileUpdate"
    FILE_DELETE = "fileDelete"
    DIR_ADD = "dirAdd"
    DIR_DELETE = "dirDelete"


EventListener = Callable[[str], None]
"""Receives the normalized path of the changed entry."""


class EventBus:
    """Event emitter owned by one CompilerSystem.

    Listeners may be registered from any thread. A listener that raises is logged and does
    not stop delivery to the remaining listeners.
    """

    def __init__(self) -> None:
        self._listeners: Dict[WatchEvent, List[EventListener]] = {}
        self._lock = threading.Lock()

    def on(self, event: WatchEvent, listener: EventListener) -> Callable[[], None]:
        """Subscribe ``listener`` to ``event``.

        Returns
        -------
        Callable[[], None]
            A function that removes the subscription.
        """
        event = WatchEvent(event)
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

        def off() -> None:
            self.off(event, listener)

        return off

    def off(self, event: WatchEvent, listener: EventListener) -> None:
        with self._lock:
            listeners = self._listeners.get(WatchEvent(event), [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, event: WatchEvent, path: str) -> None:
        event = WatchEvent(event)
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(path)
            except Exception as e:
                LOGGER.error(f"listener for '{event.value}' failed on {path}: {e}")

    def listener_count(self, event: WatchEvent) -> int:
        with self._lock:
            return len(self._listeners.get(WatchEvent(event), []))

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()
