"""The CompilerSystem facade: the only object the compiler core talks to."""

from __future__ import annotations

import asyncio
import atexit
import base64
import importlib
import os
import platform
import sys
import threading
import types
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

import psutil

from compiler_sys.data import (
    CopyFileResults,
    CopyResults,
    CopyTask,
    Diagnostic,
    MakeDirectoryResults,
    RemoveDirectoryResults,
    RenameResults,
    Stat,
    SystemDetails,
    UnlinkResults,
    WriteFileResults,
)
from compiler_sys.env import get_compiler_sys_max_workers, get_compiler_sys_tmp_prefix
from compiler_sys.errors import SystemDestroyedError
from compiler_sys.host import HostKind, detect_host_kind
from compiler_sys.loader import HttpFetcher, LoadedModule, ModuleLoader, ModuleRequest, import_file
from compiler_sys.logging import get_logger
from compiler_sys.worker import WorkerContext, WorkerPoolController, create_worker_controller

from .destroy import DestroyCallback, DestroyRegistry
from .events import EventBus, EventListener, WatchEvent
from .fs import FileContent, FileSystem, NativeFileSystem
from .hashing import generate_content_hash
from .memory_fs import MemoryFileSystem
from .path import PathUtils, normalize_path
from .watcher import WatchCallback, Watcher

LOGGER = get_logger("CompilerSystem")

_DESTROYED = "SystemDestroyedError: the compiler system has been destroyed"


def _platform_name() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def collect_system_details(host_kind: HostKind) -> SystemDetails:
    """Best-effort host metadata. Hosts without a filesystem report zeros."""
    details = SystemDetails(
        platform=_platform_name(),
        runtime=sys.implementation.name,
        runtime_version=platform.python_version(),
    )
    if not host_kind.has_filesystem:
        return details
    details.cpus = os.cpu_count() or 0
    details.cpu_model = platform.processor()
    details.release = platform.release()
    try:
        memory = psutil.virtual_memory()
        details.totalmem = int(memory.total)
        details.freemem = int(memory.available)
    except (psutil.Error, OSError) as e:
        LOGGER.debug(f"memory statistics unavailable: {e}")
    return details


class CompilerSystem:
    """Capability bundle over filesystem, workers, module loading and host metadata.

    One instance exists per compiler session. It owns every watcher, worker pool and
    temporary directory it creates; ``destroy`` releases all of them.

    Parameters
    ----------
    host_kind : HostKind
        Selected once; decides the filesystem backend, the worker backend and the valid
        module load strategies.
    cwd : Optional[str]
        Working directory. Default is the process cwd, or ``/`` on hosts without a
        filesystem.
    worker_context : Optional[WorkerContext]
        Function table for worker pools. Default is ``WorkerContext.default()``.
    fetcher : Optional[HttpFetcher]
        Network access for the module loader.
    host_globals : Optional[Mapping[str, Any]]
        Host-injected module slots for the module loader.
    register_atexit : bool
        Destroy the system at interpreter exit if the caller has not.
    """

    def __init__(
        self,
        host_kind: HostKind,
        cwd: Optional[str] = None,
        worker_context: Optional[WorkerContext] = None,
        fetcher: Optional[HttpFetcher] = None,
        host_globals: Optional[Mapping[str, Any]] = None,
        register_atexit: bool = True,
    ) -> None:
        self.host_kind = host_kind
        self.diagnostics: List[Diagnostic] = []
        self.destroy_registry = DestroyRegistry()
        self.events = EventBus()

        if cwd is None:
            cwd = os.getcwd() if host_kind.has_filesystem else "/"
        self.path = PathUtils(is_windows=host_kind.has_filesystem and os.name == "nt", cwd=cwd)

        fs_cls = NativeFileSystem if host_kind.has_filesystem else MemoryFileSystem
        self.fs: FileSystem = fs_cls(self.path, self.events, self.destroy_registry, self.diagnostics)
        self.loader = ModuleLoader(host_kind, path=self.path, fetcher=fetcher, host_globals=host_globals)
        self.worker_context = worker_context if worker_context is not None else WorkerContext.default()
        self.details = collect_system_details(host_kind)

        self._tmpdir: Optional[str] = None
        self._lock = threading.Lock()
        self._destroyed = False
        self._atexit_registered = register_atexit
        if register_atexit:
            atexit.register(self._exit_handler)
        LOGGER.debug(f"Created {host_kind.value} system rooted at {self.path.cwd}")

    def __repr__(self) -> str:
        return f"CompilerSystem(host_kind={self.host_kind.value!r}, cwd={self.path.cwd!r})"

    # Paths and host

    @property
    def platform_path(self) -> PathUtils:
        return self.path

    def get_current_directory(self) -> str:
        return self.path.cwd

    def resolve_path(self, p: str) -> str:
        return self.path.resolve(p)

    def normalize_path(self, p: str) -> str:
        return normalize_path(p)

    def get_env_var(self, name: str) -> Optional[str]:
        if not self.host_kind.has_filesystem:
            return None
        return os.environ.get(name)

    def generate_content_hash(self, content: str) -> str:
        return generate_content_hash(content)

    def encode_to_base64(self, text: str) -> str:
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    def next_tick(self, callback: Callable[[], Any]) -> asyncio.Handle:
        """Schedule ``callback`` on the running event loop."""
        return asyncio.get_running_loop().call_soon(callback)

    def exit(self, code: int) -> None:
        """Terminate the process. Only the CLI layer is expected to call this."""
        LOGGER.debug(f"exit({code})")
        sys.exit(code)

    def get_compiler_executing_path(self) -> str:
        """Normalized path of the installed ``compiler_sys`` package."""
        return normalize_path(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

    def tmpdir(self) -> str:
        """Temporary directory of this system, created on first call and removed on destroy.

        Raises
        ------
        SystemDestroyedError
            If the system has been destroyed.
        OSError
            If the directory cannot be created.
        """
        with self._lock:
            if self._destroyed:
                raise SystemDestroyedError("cannot create a temporary directory after destroy()")
            if self._tmpdir is None:
                self._tmpdir = self.fs.make_temp_dir(get_compiler_sys_tmp_prefix())
                self.destroy_registry.add(self._remove_tmpdir)
            return self._tmpdir

    def _remove_tmpdir(self) -> None:
        with self._lock:
            path, self._tmpdir = self._tmpdir, None
        if path is not None:
            self.fs.remove_tree_sync(path)

    # Filesystem

    async def access(self, p: str) -> bool:
        return await self.fs.access(p)

    def access_sync(self, p: str) -> bool:
        return self.fs.access_sync(p)

    async def stat(self, p: str) -> Optional[Stat]:
        return await self.fs.stat(p)

    def stat_sync(self, p: str) -> Optional[Stat]:
        return self.fs.stat_sync(p)

    async def read_file(self, p: str, encoding: str = "utf-8") -> Optional[str]:
        return await self.fs.read_file(p, encoding)

    def read_file_sync(self, p: str, encoding: str = "utf-8") -> Optional[str]:
        return self.fs.read_file_sync(p, encoding)

    async def readdir(self, p: str) -> List[str]:
        return await self.fs.readdir(p)

    def readdir_sync(self, p: str) -> List[str]:
        return self.fs.readdir_sync(p)

    async def realpath(self, p: str) -> Optional[str]:
        return await self.fs.realpath(p)

    def realpath_sync(self, p: str) -> Optional[str]:
        return self.fs.realpath_sync(p)

    async def is_symbolic_link(self, p: str) -> bool:
        return await self.fs.is_symbolic_link(p)

    def is_symbolic_link_sync(self, p: str) -> bool:
        return self.fs.is_symbolic_link_sync(p)

    async def mkdir(self, p: str, recursive: bool = True) -> MakeDirectoryResults:
        return await self.fs.mkdir(p, recursive)

    def mkdir_sync(self, p: str, recursive: bool = True) -> MakeDirectoryResults:
        return self.fs.mkdir_sync(p, recursive)

    async def rmdir(self, p: str, recursive: bool = False) -> RemoveDirectoryResults:
        return await self.fs.rmdir(p, recursive)

    def rmdir_sync(self, p: str, recursive: bool = False) -> RemoveDirectoryResults:
        return self.fs.rmdir_sync(p, recursive)

    async def rename(self, old_path: str, new_path: str) -> RenameResults:
        return await self.fs.rename(old_path, new_path)

    def rename_sync(self, old_path: str, new_path: str) -> RenameResults:
        return self.fs.rename_sync(old_path, new_path)

    async def unlink(self, p: str) -> UnlinkResults:
        return await self.fs.unlink(p)

    def unlink_sync(self, p: str) -> UnlinkResults:
        return self.fs.unlink_sync(p)

    async def write_file(self, p: str, content: FileContent) -> WriteFileResults:
        return await self.fs.write_file(p, content)

    def write_file_sync(self, p: str, content: FileContent) -> WriteFileResults:
        return self.fs.write_file_sync(p, content)

    async def copy_file(self, src: str, dest: str) -> CopyFileResults:
        return await self.fs.copy_file(src, dest)

    def copy_file_sync(self, src: str, dest: str) -> CopyFileResults:
        return self.fs.copy_file_sync(src, dest)

    async def copy(self, tasks: Sequence[CopyTask], src_dir: str) -> CopyResults:
        return await self.fs.copy(tasks, src_dir)

    def copy_sync(self, tasks: Sequence[CopyTask], src_dir: str) -> CopyResults:
        return self.fs.copy_sync(tasks, src_dir)

    def watch_file(self, p: str, callback: WatchCallback) -> Watcher:
        """Watch one file. After ``destroy`` the returned handle is already closed."""
        if self._destroyed:
            return self.fs.inactive_watcher(p, callback, False, False, reason=_DESTROYED)
        return self.fs.watch_file(p, callback)

    def watch_directory(self, p: str, callback: WatchCallback, recursive: bool = False) -> Watcher:
        if self._destroyed:
            return self.fs.inactive_watcher(p, callback, recursive, True, reason=_DESTROYED)
        return self.fs.watch_directory(p, callback, recursive)

    def on(self, event: Union[WatchEvent, str], listener: EventListener) -> Callable[[], None]:
        """Subscribe to filesystem change events published by every watcher."""
        return self.events.on(WatchEvent(event), listener)

    # Workers

    def create_worker_controller(
        self, max_concurrent_workers: Optional[int] = None
    ) -> WorkerPoolController:
        """Create a worker pool owned by this system.

        Parameters
        ----------
        max_concurrent_workers : Optional[int]
            Worker ceiling. Default is COMPILER_SYS_MAX_WORKERS, or the CPU count minus one.

        After ``destroy`` the pool comes back already destroyed, so every dispatch is
        cancelled.

        Raises
        ------
        ValueError
            If the ceiling is smaller than 1.
        """
        if max_concurrent_workers is None:
            max_concurrent_workers = get_compiler_sys_max_workers()
        pool = create_worker_controller(
            max_concurrent_workers,
            self.worker_context,
            host_kind=self.host_kind,
            destroy_registry=None if self._destroyed else self.destroy_registry,
        )
        if self._destroyed:
            LOGGER.warning("create_worker_controller() called after destroy()")
            pool.destroy_sync()
        return pool

    # Module loading

    async def load_module(
        self, request: Union[str, ModuleRequest], diagnostics: Optional[List[Diagnostic]] = None
    ) -> Optional[LoadedModule]:
        return await self.loader.load_module(
            request, self.diagnostics if diagnostics is None else diagnostics
        )

    def load_module_sync(
        self, request: Union[str, ModuleRequest], diagnostics: Optional[List[Diagnostic]] = None
    ) -> Optional[LoadedModule]:
        return self.loader.load_module_sync(
            request, self.diagnostics if diagnostics is None else diagnostics
        )

    def dynamic_import_sync(self, p: str) -> types.ModuleType:
        """Import a module by dotted name, or execute a ``.py`` file as a module.

        Files are registered in ``sys.modules`` under a name derived from their resolved
        path, so importing one file twice returns the same module. On hosts without a real
        filesystem the file is read from the in-memory filesystem.

        Raises
        ------
        ImportError
            As an ``import`` statement would.
        """
        if not p.endswith(".py"):
            return importlib.import_module(p)
        location = self.resolve_path(p)
        name = f"{self.path.basename(location, '.py')}_{generate_content_hash(location)}"
        module = sys.modules.get(name)
        if module is not None:
            return module
        if self.host_kind.has_filesystem:
            return import_file(name, location)
        source = self.fs.read_file_sync(location)
        if source is None:
            raise ModuleNotFoundError(f"No module file at {location}", name=name, path=location)
        module = types.ModuleType(name)
        module.__file__ = location
        sys.modules[name] = module
        try:
            exec(compile(source, location, "exec"), module.__dict__)
        except BaseException:
            sys.modules.pop(name, None)
            raise
        return module

    async def dynamic_import(self, p: str) -> types.ModuleType:
        return self.dynamic_import_sync(p)

    # Lifecycle

    def add_destroy(self, callback: DestroyCallback) -> None:
        self.destroy_registry.add(callback)

    def remove_destroy(self, callback: DestroyCallback) -> None:
        self.destroy_registry.remove(callback)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    async def destroy(self) -> None:
        """Run every cleanup callback and release the system's resources.

        Failures of individual callbacks are logged and discarded. Calling this again is a
        no-op. Afterwards the system hands out only closed watchers and destroyed pools,
        and ``tmpdir`` refuses.
        """
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
        failures = await self.destroy_registry.drain_all()
        if failures:
            LOGGER.warning(f"{len(failures)} destroy callback(s) failed")
        self.loader.close()
        self.events.clear()
        if self._atexit_registered:
            atexit.unregister(self._exit_handler)
            self._atexit_registered = False

    def destroy_sync(self) -> None:
        asyncio.run(self.destroy())

    def _exit_handler(self) -> None:
        if self._destroyed:
            return
        LOGGER.debug("Destroying compiler system at interpreter exit")
        try:
            self.destroy_sync()
        except RuntimeError as e:
            LOGGER.warning(f"Failed to destroy compiler system at exit: {e}")


def create_system(
    host_kind: Optional[Union[HostKind, str]] = None,
    cwd: Optional[str] = None,
    **kwargs: Any,
) -> CompilerSystem:
    """Create the CompilerSystem for this session.

    Parameters
    ----------
    host_kind : Optional[Union[HostKind, str]]
        Default is COMPILER_SYS_HOST_KIND if it is set, otherwise detected from the
        interpreter.
    cwd : Optional[str]
        Working directory of the system.
    **kwargs
        Forwarded to ``CompilerSystem``.
    """
    kind = host_kind if isinstance(host_kind, HostKind) else detect_host_kind(host_kind)
    return CompilerSystem(kind, cwd=cwd, **kwargs)
