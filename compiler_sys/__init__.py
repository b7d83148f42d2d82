from compiler_sys.data import (
    CompilerDependency,
    CopyFileResults,
    CopyResults,
    CopyTask,
    Diagnostic,
    DiagnosticLevel,
    MakeDirectoryResults,
    RemoveDirectoryResults,
    RenameResults,
    Stat,
    SystemDetails,
    UnlinkResults,
    WriteFileResults,
)
from compiler_sys.errors import (
    CompilerSysError,
    ModuleLoadError,
    SystemDestroyedError,
    WorkerCancelledError,
    WorkerCrashedError,
    WorkerError,
    WorkerTaskError,
)
from compiler_sys.host import HostKind, detect_host_kind
from compiler_sys.loader import LoadedModule, LoadSource, ModuleLoader, ModuleRequest
from compiler_sys.logging import configure_logging, get_logger
from compiler_sys.system import (
    CompilerSystem,
    DestroyRegistry,
    EventBus,
    PathUtils,
    WatchEvent,
    Watcher,
    create_system,
    generate_content_hash,
    normalize_path,
)
from compiler_sys.worker import WorkerContext, WorkerPoolController, WorkerPoolStats

__all__ = [
    # Main entry points
    "CompilerSystem",
    "create_system",
    "HostKind",
    "detect_host_kind",
    # Components
    "DestroyRegistry",
    "EventBus",
    "WatchEvent",
    "Watcher",
    "PathUtils",
    "normalize_path",
    "generate_content_hash",
    "ModuleLoader",
    "ModuleRequest",
    "LoadedModule",
    "LoadSource",
    "WorkerContext",
    "WorkerPoolController",
    "WorkerPoolStats",
    # Value objects
    "Stat",
    "MakeDirectoryResults",
    "RemoveDirectoryResults",
    "RenameResults",
    "UnlinkResults",
    "WriteFileResults",
    "CopyFileResults",
    "CopyTask",
    "CopyResults",
    "SystemDetails",
    "Diagnostic",
    "DiagnosticLevel",
    "CompilerDependency",
    # Errors
    "CompilerSysError",
    "WorkerError",
    "WorkerTaskError",
    "WorkerCrashedError",
    "WorkerCancelledError",
    "ModuleLoadError",
    "SystemDestroyedError",
    # Logging
    "configure_logging",
    "get_logger",
]
