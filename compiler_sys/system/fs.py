"""Filesystem port and its native implementation.

Read and query operations never raise: a missing or unreadable target yields a sentinel
(``False``, ``None`` or ``[]``). Mutating operations never raise either: failures are
captured in the ``error`` field of the returned result. Every operation comes as an
async method and a ``*_sync`` twin with identical semantics.
"""

from __future__ import annotations

import os
import shutil
import stat as stat_module
import tempfile
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple, Union

import aiofiles
import aiofiles.os

from compiler_sys.data import (
    CopyFileResults,
    CopyResults,
    CopyTask,
    Diagnostic,
    MakeDirectoryResults,
    RemoveDirectoryResults,
    RenameResults,
    Stat,
    UnlinkResults,
    WriteFileResults,
    build_error,
    build_warn,
    format_error,
)
from compiler_sys.logging import get_logger

from .destroy import DestroyRegistry
from .events import EventBus
from .path import PathUtils, normalize_path
from .watcher import InactiveWatcher, NativeWatcher, WatchCallback, Watcher

LOGGER = get_logger("FileSystem")

FileContent = Union[str, bytes]


def _existing_realpath(path: str) -> Optional[str]:
    # os.path.realpath only grew ``strict=`` in 3.10
    resolved = os.path.realpath(path)
    if not os.path.exists(resolved):
        return None
    return normalize_path(resolved)


_realpath = aiofiles.os.wrap(_existing_realpath)
_copyfile = aiofiles.os.wrap(shutil.copyfile)


class FileSystem(ABC):
    """Abstract filesystem port used by the CompilerSystem facade.

    Implementations normalize every input path with the system's ``PathUtils`` and report
    forward-slash absolute paths. Watchers they create publish on ``events`` and register
    their ``close_async`` with ``destroy_registry``.
    """

    def __init__(
        self,
        path: PathUtils,
        events: EventBus,
        destroy_registry: DestroyRegistry,
        diagnostics: Optional[List[Diagnostic]] = None,
    ) -> None:
        self.path = path
        self.events = events
        self.destroy_registry = destroy_registry
        self.diagnostics = diagnostics if diagnostics is not None else []

    def resolve(self, p: str) -> str:
        return self.path.resolve(p)

    # Queries

    @abstractmethod
    def access_sync(self, p: str) -> bool:
        """Return True if ``p`` exists."""
        ...

    @abstractmethod
    async def access(self, p: str) -> bool: ...

    @abstractmethod
    def stat_sync(self, p: str) -> Optional[Stat]:
        """Return the status of ``p``, or None if it cannot be determined."""
        ...

    @abstractmethod
    async def stat(self, p: str) -> Optional[Stat]: ...

    @abstractmethod
    def read_file_sync(self, p: str, encoding: str = "utf-8") -> Optional[str]:
        """Return the decoded content of ``p``, or None if it cannot be read."""
        ...

    @abstractmethod
    async def read_file(self, p: str, encoding: str = "utf-8") -> Optional[str]: ...

    @abstractmethod
    def readdir_sync(self, p: str) -> List[str]:
        """Return the normalized absolute paths of the entries of ``p``, sorted."""
        ...

    @abstractmethod
    async def readdir(self, p: str) -> List[str]: ...

    @abstractmethod
    def realpath_sync(self, p: str) -> Optional[str]: ...

    @abstractmethod
    async def realpath(self, p: str) -> Optional[str]: ...

    @abstractmethod
    def is_symbolic_link_sync(self, p: str) -> bool: ...

    @abstractmethod
    async def is_symbolic_link(self, p: str) -> bool: ...

    # Mutations

    @abstractmethod
    def mkdir_sync(self, p: str, recursive: bool = True) -> MakeDirectoryResults:
        """Create ``p``. When ``recursive`` is set, missing ancestors are created too and
        reported in ``new_dirs``; on failure the directories created so far are removed."""
        ...

    @abstractmethod
    async def mkdir(self, p: str, recursive: bool = True) -> MakeDirectoryResults: ...

    @abstractmethod
    def rmdir_sync(self, p: str, recursive: bool = False) -> RemoveDirectoryResults: ...

    @abstractmethod
    async def rmdir(self, p: str, recursive: bool = False) -> RemoveDirectoryResults: ...

    @abstractmethod
    def rename_sync(self, old_path: str, new_path: str) -> RenameResults: ...

    @abstractmethod
    async def rename(self, old_path: str, new_path: str) -> RenameResults: ...

    @abstractmethod
    def unlink_sync(self, p: str) -> UnlinkResults: ...

    @abstractmethod
    async def unlink(self, p: str) -> UnlinkResults: ...

    @abstractmethod
    def write_file_sync(self, p: str, content: FileContent) -> WriteFileResults: ...

    @abstractmethod
    async def write_file(self, p: str, content: FileContent) -> WriteFileResults: ...

    @abstractmethod
    def copy_file_sync(self, src: str, dest: str) -> CopyFileResults: ...

    @abstractmethod
    async def copy_file(self, src: str, dest: str) -> CopyFileResults: ...

    # Temp directory

    @abstractmethod
    def make_temp_dir(self, prefix: str) -> str:
        """Create a fresh temporary directory and return its normalized path."""
        ...

    def remove_tree_sync(self, p: str) -> None:
        result = self.rmdir_sync(p, recursive=True)
        if result.error:
            LOGGER.warning(f"failed to remove {p}: {result.error}")

    # Batch copy

    def copy_sync(self, tasks: Sequence[CopyTask], src_dir: str) -> CopyResults:
        """Copy files and directory trees. Problems become diagnostics in the results."""
        results = CopyResults()
        for task in tasks:
            pair = self._copy_endpoints(task, src_dir, results)
            if pair is None:
                continue
            src, dest = pair
            st = self.stat_sync(src)
            if st is None:
                self._missing_copy_source(task, src, results)
            elif st.is_directory:
                self._copy_tree_sync(src, dest, results)
            else:
                self._copy_one_sync(src, dest, results)
        return results

    async def copy(self, tasks: Sequence[CopyTask], src_dir: str) -> CopyResults:
        results = CopyResults()
        for task in tasks:
            pair = self._copy_endpoints(task, src_dir, results)
            if pair is None:
                continue
            src, dest = pair
            st = await self.stat(src)
            if st is None:
                self._missing_copy_source(task, src, results)
            elif st.is_directory:
                await self._copy_tree(src, dest, results)
            else:
                await self._copy_one(src, dest, results)
        return results

    def _copy_endpoints(
        self, task: CopyTask, src_dir: str, results: CopyResults
    ) -> Optional[Tuple[str, str]]:
        src = task.src if self.path.is_absolute(task.src) else self.path.join(self.resolve(src_dir), task.src)
        src, dest = self.resolve(src), self.resolve(task.dest)
        if dest == src or dest.startswith(src.rstrip("/") + "/"):
            build_error(
                results.diagnostics,
                header="Copy error",
                message_text=f"cannot copy {src} into itself ({dest})",
            )
            return None
        return src, dest

    @staticmethod
    def _missing_copy_source(task: CopyTask, src: str, results: CopyResults) -> None:
        build = build_warn if task.warn else build_error
        build(results.diagnostics, header="Copy error", message_text=f"copy source does not exist: {src}")

    def _record_copy(self, dest: str, copied: CopyFileResults, results: CopyResults) -> None:
        if copied.error:
            build_error(results.diagnostics, header="Copy error", message_text=copied.error)
        else:
            results.file_paths.append(dest)

    def _record_mkdir(self, made: MakeDirectoryResults, results: CopyResults) -> bool:
        results.dir_paths.extend(made.new_dirs)
        if made.error:
            build_error(results.diagnostics, header="Copy error", message_text=made.error)
            return False
        return True

    def _copy_one_sync(self, src: str, dest: str, results: CopyResults) -> None:
        if self._record_mkdir(self.mkdir_sync(self.path.dirname(dest)), results):
            self._record_copy(dest, self.copy_file_sync(src, dest), results)

    async def _copy_one(self, src: str, dest: str, results: CopyResults) -> None:
        if self._record_mkdir(await self.mkdir(self.path.dirname(dest)), results):
            self._record_copy(dest, await self.copy_file(src, dest), results)

    def _copy_tree_sync(self, src: str, dest: str, results: CopyResults) -> None:
        if not self._record_mkdir(self.mkdir_sync(dest), results):
            return
        for child in self.readdir_sync(src):
            target = self.path.join(dest, self.path.basename(child))
            st = self.stat_sync(child)
            if st is None:
                continue
            if st.is_directory:
                self._copy_tree_sync(child, target, results)
            else:
                self._record_copy(target, self.copy_file_sync(child, target), results)

    async def _copy_tree(self, src: str, dest: str, results: CopyResults) -> None:
        if not self._record_mkdir(await self.mkdir(dest), results):
            return
        for child in await self.readdir(src):
            target = self.path.join(dest, self.path.basename(child))
            st = await self.stat(child)
            if st is None:
                continue
            if st.is_directory:
                await self._copy_tree(child, target, results)
            else:
                self._record_copy(target, await self.copy_file(child, target), results)

    # Watching

    @abstractmethod
    def _create_watcher(
        self, p: str, callback: WatchCallback, recursive: bool, directory_watch: bool
    ) -> Watcher: ...

    def watch_file(self, p: str, callback: WatchCallback) -> Watcher:
        """Watch a single file. The callback receives ``fileAdd``, ``fileUpdate`` and
        ``fileDelete`` events."""
        return self._register_watcher(
            self._create_watcher(self.resolve(p), callback, False, False)
        )

    def watch_directory(self, p: str, callback: WatchCallback, recursive: bool = False) -> Watcher:
        """Watch the entries of a directory, optionally recursively."""
        return self._register_watcher(
            self._create_watcher(self.resolve(p), callback, recursive, True)
        )

    def _register_watcher(self, watcher: Watcher) -> Watcher:
        if not watcher.closed:
            self.destroy_registry.add(watcher.close_async)
        return watcher

    def inactive_watcher(
        self, p: str, callback: WatchCallback, recursive: bool, directory_watch: bool, reason: str
    ) -> Watcher:
        """A closed handle for a subscription that is refused; nothing is registered."""
        return InactiveWatcher(
            self.resolve(p),
            callback,
            self.events,
            recursive=recursive,
            directory_watch=directory_watch,
            diagnostics=self.diagnostics,
            reason=reason,
        )

    # Shared helpers

    def _mkdir_results(self, path: str) -> MakeDirectoryResults:
        return MakeDirectoryResults(
            path=path, basename=self.path.basename(path), dirname=self.path.dirname(path)
        )

    def _rmdir_results(self, path: str) -> RemoveDirectoryResults:
        return RemoveDirectoryResults(
            path=path, basename=self.path.basename(path), dirname=self.path.dirname(path)
        )

    def _unlink_results(self, path: str) -> UnlinkResults:
        return UnlinkResults(
            path=path, basename=self.path.basename(path), dirname=self.path.dirname(path)
        )


def _to_stat(st: os.stat_result, is_link: bool) -> Stat:
    return Stat(
        is_file=stat_module.S_ISREG(st.st_mode),
        is_directory=stat_module.S_ISDIR(st.st_mode),
        is_symbolic_link=is_link,
        size=st.st_size,
    )


class NativeFileSystem(FileSystem):
    """Filesystem backed by the host OS.

    Sync variants use ``os``/``shutil``; async variants use ``aiofiles`` so they suspend
    the caller instead of blocking the event loop. Change notification uses ``watchdog``.
    """

    # Queries

    def access_sync(self, p: str) -> bool:
        try:
            os.stat(self.resolve(p))
            return True
        except (OSError, ValueError):
            return False

    async def access(self, p: str) -> bool:
        try:
            await aiofiles.os.stat(self.resolve(p))
            return True
        except (OSError, ValueError):
            return False

    def stat_sync(self, p: str) -> Optional[Stat]:
        path = self.resolve(p)
        try:
            return _to_stat(os.stat(path), os.path.islink(path))
        except (OSError, ValueError):
            return None

    async def stat(self, p: str) -> Optional[Stat]:
        path = self.resolve(p)
        try:
            st = await aiofiles.os.stat(path)
            return _to_stat(st, await aiofiles.os.path.islink(path))
        except (OSError, ValueError):
            return None

    def read_file_sync(self, p: str, encoding: str = "utf-8") -> Optional[str]:
        try:
            with open(self.resolve(p), "r", encoding=encoding) as f:
                return f.read()
        except (OSError, ValueError):
            return None

    async def read_file(self, p: str, encoding: str = "utf-8") -> Optional[str]:
        try:
            async with aiofiles.open(self.resolve(p), "r", encoding=encoding) as f:
                return await f.read()
        except (OSError, ValueError):
            return None

    def readdir_sync(self, p: str) -> List[str]:
        path = self.resolve(p)
        try:
            names = os.listdir(path)
        except (OSError, ValueError):
            return []
        return sorted(self.path.join(path, name) for name in names)

    async def readdir(self, p: str) -> List[str]:
        path = self.resolve(p)
        try:
            names = await aiofiles.os.listdir(path)
        except (OSError, ValueError):
            return []
        return sorted(self.path.join(path, name) for name in names)

    def realpath_sync(self, p: str) -> Optional[str]:
        try:
            return _existing_realpath(self.resolve(p))
        except (OSError, ValueError):
            return None

    async def realpath(self, p: str) -> Optional[str]:
        try:
            return await _realpath(self.resolve(p))
        except (OSError, ValueError):
            return None

    def is_symbolic_link_sync(self, p: str) -> bool:
        try:
            return os.path.islink(self.resolve(p))
        except ValueError:
            return False

    async def is_symbolic_link(self, p: str) -> bool:
        try:
            return await aiofiles.os.path.islink(self.resolve(p))
        except ValueError:
            return False

    # Mutations

    def _missing_dirs(self, path: str) -> List[str]:
        missing: List[str] = []
        current = path
        while not os.path.exists(current):
            missing.append(current)
            parent = self.path.dirname(current)
            if parent == current:
                break
            current = parent
        if not missing and not os.path.isdir(path):
            raise FileExistsError(f"not a directory: {path}")
        return list(reversed(missing))

    def mkdir_sync(self, p: str, recursive: bool = True) -> MakeDirectoryResults:
        path = self.resolve(p)
        results = self._mkdir_results(path)
        created: List[str] = []
        try:
            for d in self._missing_dirs(path) if recursive else [path]:
                os.mkdir(d)
                created.append(d)
            results.new_dirs = created
        except OSError as e:
            self._rollback_dirs(created)
            results.error = format_error(e)
        return results

    async def mkdir(self, p: str, recursive: bool = True) -> MakeDirectoryResults:
        path = self.resolve(p)
        results = self._mkdir_results(path)
        created: List[str] = []
        try:
            for d in self._missing_dirs(path) if recursive else [path]:
                await aiofiles.os.mkdir(d)
                created.append(d)
            results.new_dirs = created
        except OSError as e:
            self._rollback_dirs(created)
            results.error = format_error(e)
        return results

    def _rollback_dirs(self, created: List[str]) -> None:
        for d in reversed(created):
            try:
                os.rmdir(d)
            except OSError as e:
                LOGGER.warning(f"could not roll back directory {d}: {e}")

    def _collect_tree(self, path: str) -> Tuple[List[str], List[str]]:
        """Return (dirs, files) under ``path``, deepest first, ``path`` itself last."""
        if os.path.islink(path) or not os.path.isdir(path):
            raise NotADirectoryError(f"not a directory: {path}")

        def _raise(err: OSError) -> None:
            raise err

        dirs: List[str] = []
        files: List[str] = []
        for root, dirnames, filenames in os.walk(path, topdown=False, onerror=_raise):
            root = normalize_path(root)
            for name in filenames:
                files.append(self.path.join(root, name))
            for name in dirnames:
                child = self.path.join(root, name)
                if os.path.islink(child):
                    files.append(child)
            dirs.append(root)
        return dirs, files

    def _remove_tree(self, dirs: List[str], files: List[str]) -> None:
        for f in files:
            os.unlink(f)
        for d in dirs:
            os.rmdir(d)

    def rmdir_sync(self, p: str, recursive: bool = False) -> RemoveDirectoryResults:
        path = self.resolve(p)
        results = self._rmdir_results(path)
        try:
            if recursive:
                dirs, files = self._collect_tree(path)
                self._remove_tree(dirs, files)
                results.removed_dirs, results.removed_files = dirs, files
            else:
                os.rmdir(path)
                results.removed_dirs = [path]
        except OSError as e:
            results.error = format_error(e)
        return results

    async def rmdir(self, p: str, recursive: bool = False) -> RemoveDirectoryResults:
        path = self.resolve(p)
        results = self._rmdir_results(path)
        try:
            if recursive:
                dirs, files = await aiofiles.os.wrap(self._collect_tree)(path)
                for f in files:
                    await aiofiles.os.unlink(f)
                for d in dirs:
                    await aiofiles.os.rmdir(d)
                results.removed_dirs, results.removed_files = dirs, files
            else:
                await aiofiles.os.rmdir(path)
                results.removed_dirs = [path]
        except OSError as e:
            results.error = format_error(e)
        return results

    def _plan_rename(self, old: str, new: str, results: RenameResults) -> None:
        if os.path.isdir(old) and not os.path.islink(old):
            dirs, files = self._collect_tree(old)
            results.is_directory = True
            results.old_dirs = list(reversed(dirs))
            results.old_files = sorted(files)
        else:
            if not os.path.lexists(old):
                raise FileNotFoundError(f"no such file or directory: {old}")
            results.is_file = True
            results.old_files = [old]
        prefix = len(old)
        results.new_dirs = [new + d[prefix:] for d in results.old_dirs]
        results.new_files = [new + f[prefix:] for f in results.old_files]
        results.renamed = list(zip(results.old_dirs, results.new_dirs)) + list(
            zip(results.old_files, results.new_files)
        )

    def _rename_results(self, old: str, new: str) -> RenameResults:
        return RenameResults(old_path=old, new_path=new)

    def _clear_rename(self, results: RenameResults, exc: BaseException) -> RenameResults:
        return RenameResults(
            old_path=results.old_path, new_path=results.new_path, error=format_error(exc)
        )

    def rename_sync(self, old_path: str, new_path: str) -> RenameResults:
        old, new = self.resolve(old_path), self.resolve(new_path)
        results = self._rename_results(old, new)
        try:
            self._plan_rename(old, new, results)
            os.rename(old, new)
        except OSError as e:
            return self._clear_rename(results, e)
        return results

    async def rename(self, old_path: str, new_path: str) -> RenameResults:
        old, new = self.resolve(old_path), self.resolve(new_path)
        results = self._rename_results(old, new)
        try:
            await aiofiles.os.wrap(self._plan_rename)(old, new, results)
            await aiofiles.os.rename(old, new)
        except OSError as e:
            return self._clear_rename(results, e)
        return results

    def unlink_sync(self, p: str) -> UnlinkResults:
        path = self.resolve(p)
        results = self._unlink_results(path)
        try:
            os.unlink(path)
        except OSError as e:
            results.error = format_error(e)
        return results

    async def unlink(self, p: str) -> UnlinkResults:
        path = self.resolve(p)
        results = self._unlink_results(path)
        try:
            await aiofiles.os.unlink(path)
        except OSError as e:
            results.error = format_error(e)
        return results

    def write_file_sync(self, p: str, content: FileContent) -> WriteFileResults:
        path = self.resolve(p)
        results = WriteFileResults(path=path)
        try:
            if isinstance(content, bytes):
                with open(path, "wb") as f:
                    f.write(content)
            else:
                with open(path, "w", encoding="utf-8") as f:
                    f.write(content)
        except (OSError, ValueError) as e:
            results.error = format_error(e)
        return results

    async def write_file(self, p: str, content: FileContent) -> WriteFileResults:
        path = self.resolve(p)
        results = WriteFileResults(path=path)
        try:
            if isinstance(content, bytes):
                async with aiofiles.open(path, "wb") as f:
                    await f.write(content)
            else:
                async with aiofiles.open(path, "w", encoding="utf-8") as f:
                    await f.write(content)
        except (OSError, ValueError) as e:
            results.error = format_error(e)
        return results

    def copy_file_sync(self, src: str, dest: str) -> CopyFileResults:
        results = CopyFileResults(src_path=self.resolve(src), dest_path=self.resolve(dest))
        try:
            shutil.copyfile(results.src_path, results.dest_path)
        except OSError as e:
            results.error = format_error(e)
        return results

    async def copy_file(self, src: str, dest: str) -> CopyFileResults:
        results = CopyFileResults(src_path=self.resolve(src), dest_path=self.resolve(dest))
        try:
            await _copyfile(results.src_path, results.dest_path)
        except OSError as e:
            results.error = format_error(e)
        return results

    def make_temp_dir(self, prefix: str) -> str:
        return normalize_path(tempfile.mkdtemp(prefix=prefix))

    def _create_watcher(
        self, p: str, callback: WatchCallback, recursive: bool, directory_watch: bool
    ) -> Watcher:
        watcher = NativeWatcher(
            p,
            callback,
            self.events,
            recursive=recursive,
            directory_watch=directory_watch,
            diagnostics=self.diagnostics,
        )
        return watcher.start()
