"""In-memory filesystem for hosts without a real one.

Entries live in a dict keyed by normalized absolute path. Mutations notify the watchers
registered on this filesystem directly, in the order the mutations happen.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from compiler_sys.data import (
    CopyFileResults,
    MakeDirectoryResults,
    RemoveDirectoryResults,
    RenameResults,
    Stat,
    UnlinkResults,
    WriteFileResults,
    format_error,
)
from compiler_sys.logging import get_logger

from .fs import FileContent, FileSystem
from .watcher import NativeChange, WatchCallback, Watcher

LOGGER = get_logger("MemoryFileSystem")


class MemoryFsError(OSError):
    """Error raised internally by in-memory operations; always captured into results."""


@dataclass
class _Entry:
    is_directory: bool
    content: bytes = b""
    children: Set[str] = field(default_factory=set)


class MemoryWatcher(Watcher):
    def __init__(self, fs: "MemoryFileSystem", *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._fs = fs

    def _close_native(self) -> None:
        self._fs._detach(self)


class MemoryFileSystem(FileSystem):
    """Filesystem whose state lives entirely in process memory."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._entries: Dict[str, _Entry] = {"/": _Entry(is_directory=True)}
        self._watchers: List[MemoryWatcher] = []
        self._lock = threading.RLock()
        self._tmp_counter = itertools.count(1)

    # Internals

    def _parent(self, path: str) -> str:
        return self.path.dirname(path)

    def _name(self, path: str) -> str:
        return self.path.basename(path)

    def _get(self, path: str) -> _Entry:
        entry = self._entries.get(path)
        if entry is None:
            raise MemoryFsError(2, "no such file or directory", path)
        return entry

    def _get_dir(self, path: str) -> _Entry:
        entry = self._get(path)
        if not entry.is_directory:
            raise MemoryFsError(20, "not a directory", path)
        return entry

    def _link(self, path: str, entry: _Entry) -> None:
        self._get_dir(self._parent(path)).children.add(self._name(path))
        self._entries[path] = entry

    def _unlink_entry(self, path: str) -> None:
        del self._entries[path]
        parent = self._entries.get(self._parent(path))
        if parent is not None:
            parent.children.discard(self._name(path))

    def _subtree(self, path: str) -> List[str]:
        """``path`` and all its descendants, parents before children."""
        out = [path]
        entry = self._entries[path]
        if entry.is_directory:
            for name in sorted(entry.children):
                out.extend(self._subtree(self.path.join(path, name)))
        return out

    def _notify(self, change: NativeChange, path: str, is_directory: bool) -> None:
        with self._lock:
            watchers = list(self._watchers)
        for watcher in watchers:
            watcher.dispatch(change, path, is_directory)

    def _detach(self, watcher: MemoryWatcher) -> None:
        with self._lock:
            if watcher in self._watchers:
                self._watchers.remove(watcher)

    # Queries

    def access_sync(self, p: str) -> bool:
        with self._lock:
            return self.resolve(p) in self._entries

    async def access(self, p: str) -> bool:
        return self.access_sync(p)

    def stat_sync(self, p: str) -> Optional[Stat]:
        with self._lock:
            entry = self._entries.get(self.resolve(p))
            if entry is None:
                return None
            return Stat(
                is_file=not entry.is_directory,
                is_directory=entry.is_directory,
                is_symbolic_link=False,
                size=len(entry.content),
            )

    async def stat(self, p: str) -> Optional[Stat]:
        return self.stat_sync(p)

    def read_file_sync(self, p: str, encoding: str = "utf-8") -> Optional[str]:
        with self._lock:
            entry = self._entries.get(self.resolve(p))
            if entry is None or entry.is_directory:
                return None
            content = entry.content
        try:
            return content.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            return None

    async def read_file(self, p: str, encoding: str = "utf-8") -> Optional[str]:
        return self.read_file_sync(p, encoding)

    def readdir_sync(self, p: str) -> List[str]:
        path = self.resolve(p)
        with self._lock:
            entry = self._entries.get(path)
            if entry is None or not entry.is_directory:
                return []
            return sorted(self.path.join(path, name) for name in entry.children)

    async def readdir(self, p: str) -> List[str]:
        return self.readdir_sync(p)

    def realpath_sync(self, p: str) -> Optional[str]:
        path = self.resolve(p)
        with self._lock:
            return path if path in self._entries else None

    async def realpath(self, p: str) -> Optional[str]:
        return self.realpath_sync(p)

    def is_symbolic_link_sync(self, p: str) -> bool:
        return False

    async def is_symbolic_link(self, p: str) -> bool:
        return False

    # Mutations

    def mkdir_sync(self, p: str, recursive: bool = True) -> MakeDirectoryResults:
        path = self.resolve(p)
        results = self._mkdir_results(path)
        with self._lock:
            try:
                missing: List[str] = []
                current = path
                while current not in self._entries:
                    missing.insert(0, current)
                    current = self._parent(current)
                if not self._entries[current].is_directory:
                    raise MemoryFsError(20, "not a directory", current)
                if not missing and not recursive:
                    raise MemoryFsError(17, "file exists", path)
                if len(missing) > 1 and not recursive:
                    raise MemoryFsError(2, "no such file or directory", self._parent(path))
                for d in missing:
                    self._link(d, _Entry(is_directory=True))
                results.new_dirs = missing
            except MemoryFsError as e:
                results.error = format_error(e)
                return results
        for d in results.new_dirs:
            self._notify(NativeChange.CREATED, d, True)
        return results

    async def mkdir(self, p: str, recursive: bool = True) -> MakeDirectoryResults:
        return self.mkdir_sync(p, recursive)

    def rmdir_sync(self, p: str, recursive: bool = False) -> RemoveDirectoryResults:
        path = self.resolve(p)
        results = self._rmdir_results(path)
        with self._lock:
            try:
                entry = self._get_dir(path)
                if path == "/":
                    raise MemoryFsError(16, "resource busy", path)
                if entry.children and not recursive:
                    raise MemoryFsError(39, "directory not empty", path)
                removed = list(reversed(self._subtree(path)))
                for child in removed:
                    if self._entries[child].is_directory:
                        results.removed_dirs.append(child)
                    else:
                        results.removed_files.append(child)
                    self._unlink_entry(child)
            except MemoryFsError as e:
                return RemoveDirectoryResults(
                    path=path,
                    basename=results.basename,
                    dirname=results.dirname,
                    error=format_error(e),
                )
        for f in results.removed_files:
            self._notify(NativeChange.DELETED, f, False)
        for d in results.removed_dirs:
            self._notify(NativeChange.DELETED, d, True)
        return results

    async def rmdir(self, p: str, recursive: bool = False) -> RemoveDirectoryResults:
        return self.rmdir_sync(p, recursive)

    def rename_sync(self, old_path: str, new_path: str) -> RenameResults:
        old, new = self.resolve(old_path), self.resolve(new_path)
        results = RenameResults(old_path=old, new_path=new)
        with self._lock:
            try:
                entry = self._get(old)
                self._get_dir(self._parent(new))
                if new == old or new.startswith(old.rstrip("/") + "/"):
                    raise MemoryFsError(22, "invalid argument", new)
                existing = self._entries.get(new)
                if existing is not None and (existing.is_directory or entry.is_directory):
                    raise MemoryFsError(17, "file exists", new)
                moved = self._subtree(old)
                for src in moved:
                    dst = new + src[len(old) :]
                    if self._entries[src].is_directory:
                        results.old_dirs.append(src)
                        results.new_dirs.append(dst)
                    else:
                        results.old_files.append(src)
                        results.new_files.append(dst)
                    results.renamed.append((src, dst))
                results.is_directory = entry.is_directory
                results.is_file = not entry.is_directory
                relocated = {src: self._entries[src] for src in moved}
                self._unlink_entry(old)
                for src in moved[1:]:
                    del self._entries[src]
                self._link(new, relocated[old])
                for src in moved[1:]:
                    self._entries[new + src[len(old) :]] = relocated[src]
            except MemoryFsError as e:
                return RenameResults(old_path=old, new_path=new, error=format_error(e))
        self._notify(NativeChange.DELETED, old, results.is_directory)
        self._notify(NativeChange.CREATED, new, results.is_directory)
        return results

    async def rename(self, old_path: str, new_path: str) -> RenameResults:
        return self.rename_sync(old_path, new_path)

    def unlink_sync(self, p: str) -> UnlinkResults:
        path = self.resolve(p)
        results = self._unlink_results(path)
        with self._lock:
            try:
                entry = self._get(path)
                if entry.is_directory:
                    raise MemoryFsError(21, "is a directory", path)
                self._unlink_entry(path)
            except MemoryFsError as e:
                results.error = format_error(e)
                return results
        self._notify(NativeChange.DELETED, path, False)
        return results

    async def unlink(self, p: str) -> UnlinkResults:
        return self.unlink_sync(p)

    def write_file_sync(self, p: str, content: FileContent) -> WriteFileResults:
        path = self.resolve(p)
        results = WriteFileResults(path=path)
        data = content if isinstance(content, bytes) else content.encode("utf-8")
        with self._lock:
            try:
                entry = self._entries.get(path)
                if entry is not None and entry.is_directory:
                    raise MemoryFsError(21, "is a directory", path)
                if entry is None:
                    self._link(path, _Entry(is_directory=False, content=data))
                    change = NativeChange.CREATED
                else:
                    entry.content = data
                    change = NativeChange.MODIFIED
            except MemoryFsError as e:
                results.error = format_error(e)
                return results
        self._notify(change, path, False)
        return results

    async def write_file(self, p: str, content: FileContent) -> WriteFileResults:
        return self.write_file_sync(p, content)

    def copy_file_sync(self, src: str, dest: str) -> CopyFileResults:
        results = CopyFileResults(src_path=self.resolve(src), dest_path=self.resolve(dest))
        with self._lock:
            entry = self._entries.get(results.src_path)
            if entry is None or entry.is_directory:
                results.error = f"MemoryFsError: no such file: {results.src_path}"
                return results
            content = entry.content
        written = self.write_file_sync(results.dest_path, content)
        results.error = written.error
        return results

    async def copy_file(self, src: str, dest: str) -> CopyFileResults:
        return self.copy_file_sync(src, dest)

    def make_temp_dir(self, prefix: str) -> str:
        root = self.mkdir_sync("/tmp")
        if root.error:
            raise MemoryFsError(20, f"cannot create temporary directory: {root.error}", "/tmp")
        while True:
            candidate = f"/tmp/{prefix}{next(self._tmp_counter)}"
            results = self.mkdir_sync(candidate, recursive=False)
            if results.ok:
                return candidate
            # only a name collision is worth another attempt
            if not self.access_sync(candidate):
                raise MemoryFsError(5, f"cannot create temporary directory: {results.error}", candidate)

    def _create_watcher(
        self, p: str, callback: WatchCallback, recursive: bool, directory_watch: bool
    ) -> Watcher:
        watcher = MemoryWatcher(
            self,
            p,
            callback,
            self.events,
            recursive=recursive,
            directory_watch=directory_watch,
            diagnostics=self.diagnostics,
        )
        with self._lock:
            self._watchers.append(watcher)
        return watcher
