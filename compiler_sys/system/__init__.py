from .destroy import DestroyCallback, DestroyRegistry
from .events import EventBus, EventListener, WatchEvent
from .path import PathUtils, normalize_path
from .hashing import generate_content_hash
from .watcher import InactiveWatcher, NativeChange, NativeWatcher, WatchCallback, Watcher, normalize_event
from .fs import FileContent, FileSystem, NativeFileSystem
from .memory_fs import MemoryFileSystem
from .compiler_system import CompilerSystem, collect_system_details, create_system

__all__ = [
    "DestroyRegistry",
    "DestroyCallback",
    "EventBus",
    "EventListener",
    "WatchEvent",
    "PathUtils",
    "normalize_path",
    "generate_content_hash",
    "Watcher",
    "NativeWatcher",
    "InactiveWatcher",
    "NativeChange",
    "WatchCallback",
    "normalize_event",
    "FileSystem",
    "FileContent",
    "NativeFileSystem",
    "MemoryFileSystem",
    "CompilerSystem",
    "collect_system_details",
    "create_system",
]
