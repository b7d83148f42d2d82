"""Filesystem watch handles and native event normalization.

A watcher owns one change subscription. Every native event it receives is mapped onto
the ``WatchEvent`` vocabulary, handed to the caller's callback and published on the
system's ``EventBus``.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from compiler_sys.data import Diagnostic, catch_error
from compiler_sys.logging import get_logger

from .events import EventBus, WatchEvent
from .path import normalize_path

LOGGER = get_logger("Watcher")

WatchCallback = Callable[[str, WatchEvent], None]
"""Receives ``(normalized_path, event_kind)``."""


class NativeChange(str, Enum):
    """Raw change kinds reported by a backend before normalization."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


def normalize_event(
    change: NativeChange, is_directory: bool, directory_watch: bool
) -> Optional[WatchEvent]:
    """Map a native change onto the watch vocabulary.

    File watches only ever report ``fileAdd``, ``fileUpdate`` and ``fileDelete``.
    Directory watches report ``dirAdd``/``dirDelete`` for directories and
    ``fileAdd``/``fileDelete`` for files. A modification of a directory entry is noise
    produced by changes to its children and maps to None.
    """
    if change is NativeChange.MODIFIED:
        return None if is_directory else WatchEvent.FILE_UPDATE
    if not directory_watch:
        if is_directory:
            return None
        return WatchEvent.FILE_ADD if change is NativeChange.CREATED else WatchEvent.FILE_DELETE
    if change is NativeChange.CREATED:
        return WatchEvent.DIR_ADD if is_directory else WatchEvent.FILE_ADD
    return WatchEvent.DIR_DELETE if is_directory else WatchEvent.FILE_DELETE


class Watcher(ABC):
    """One active filesystem subscription.

    ``close`` is idempotent. Once it has been requested no further callbacks fire, and
    errors raised by the backend while tearing down are treated as an expected race.
    """

    def __init__(
        self,
        path: str,
        callback: WatchCallback,
        events: EventBus,
        recursive: bool = False,
        directory_watch: bool = False,
        diagnostics: Optional[List[Diagnostic]] = None,
    ) -> None:
        self.path = normalize_path(path)
        self.recursive = recursive
        self.directory_watch = directory_watch
        self.error: Optional[str] = None
        self._callback = callback
        self._events = events
        self._diagnostics = diagnostics
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._close_native()
        except Exception as e:
            # Shutdown race: the backend may still be delivering an event.
            LOGGER.debug(f"ignored error while closing watcher for {self.path}: {e}")

    async def close_async(self) -> None:
        """``close`` without blocking the event loop: backend teardown runs in an executor."""
        if self._closed:
            return
        await asyncio.get_running_loop().run_in_executor(None, self.close)

    @abstractmethod
    def _close_native(self) -> None:
        """Stop the backend subscription."""
        ...

    def _matches(self, path: str) -> bool:
        if not self.directory_watch:
            return path == self.path
        if path == self.path or not path.startswith(self.path.rstrip("/") + "/"):
            return False
        if self.recursive:
            return True
        return "/" not in path[len(self.path.rstrip("/")) + 1 :]

    def dispatch(self, change: NativeChange, path: str, is_directory: bool) -> None:
        """Deliver one native change to the callback and the event bus."""
        if self._closed:
            return
        path = normalize_path(path)
        if not self._matches(path):
            return
        kind = normalize_event(change, is_directory, self.directory_watch)
        if kind is None:
            return
        try:
            self._callback(path, kind)
        except Exception as e:
            if self._closed:
                return
            LOGGER.warning(f"watch callback for {self.path} failed on {path}: {e}")
            catch_error(self._diagnostics, e, header="Watch callback error")
        self._events.emit(kind, path)

    def fail(self, exc: BaseException) -> None:
        """Record a subscription that could not be opened; the handle ends up closed."""
        self.error = f"{type(exc).__name__}: {exc}"
        self._closed = True
        LOGGER.warning(f"could not watch {self.path}: {exc}")
        catch_error(self._diagnostics, exc, header="Watch error")


class InactiveWatcher(Watcher):
    """Handle that is closed from the start and never delivers an event."""

    def __init__(self, *args, reason: str, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.error = reason
        self._closed = True

    def _close_native(self) -> None:
        pass


class _ObserverHandler(FileSystemEventHandler):
    def __init__(self, watcher: "NativeWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._watcher.consume(event)


class NativeWatcher(Watcher):
    """Watcher backed by a ``watchdog`` observer thread.

    A file watch subscribes to the parent directory and filters for the file itself, so a
    file that does not exist yet can be watched for creation.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._observer: Optional[Observer] = None

    def start(self) -> "NativeWatcher":
        target = self.path
        if not self.directory_watch:
            target = self.path.rsplit("/", 1)[0] or "/"
        observer = Observer()
        try:
            observer.schedule(
                _ObserverHandler(self), target, recursive=self.directory_watch and self.recursive
            )
            observer.start()
        except Exception as e:
            self.fail(e)
            return self
        self._observer = observer
        LOGGER.debug(f"watching {self.path} (recursive={self.recursive})")
        return self

    def consume(self, event: FileSystemEvent) -> None:
        try:
            if event.event_type == "created":
                self.dispatch(NativeChange.CREATED, _decode(event.src_path), event.is_directory)
            elif event.event_type == "modified":
                self.dispatch(NativeChange.MODIFIED, _decode(event.src_path), event.is_directory)
            elif event.event_type == "deleted":
                self.dispatch(NativeChange.DELETED, _decode(event.src_path), event.is_directory)
            elif event.event_type == "moved":
                self.dispatch(NativeChange.DELETED, _decode(event.src_path), event.is_directory)
                self.dispatch(NativeChange.CREATED, _decode(event.dest_path), event.is_directory)
        except Exception as e:
            if self._closed:
                LOGGER.debug(f"ignored event error during shutdown of {self.path}: {e}")
                return
            LOGGER.warning(f"failed to process event for {self.path}: {e}")
            catch_error(self._diagnostics, e, header="Watch error")

    def _close_native(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if threading.current_thread() is not observer:
            observer.join(timeout=5)


def _decode(path) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="surrogateescape")
    return str(path)
