"""Environment-agnostic path manipulation.

``PathUtils`` never looks at the running interpreter: the path flavor comes from the
``is_windows`` flag and relative paths are resolved against the ``cwd`` it was built
with. All returned paths use forward slashes.
"""

from __future__ import annotations

import ntpath
import posixpath
import re
from typing import List

_DRIVE_RE = re.compile(r"^([a-zA-Z]:)(/?)")
_EXTENDED_LENGTH_PREFIX = "\\\\?\\"


def normalize_path(path: str) -> str:
    """Convert a path to forward slashes and collapse ``.``, ``..`` and duplicate separators.

    Drive letters (``C:/``) and UNC prefixes (``//server``) are kept. Windows
    extended-length paths (``\\\\?\\C:\\...``) are returned untouched.

    Raises
    ------
    TypeError
        If ``path`` is not a string.
    """
    if not isinstance(path, str):
        raise TypeError(f"invalid path to normalize: {path!r}")
    if path.startswith(_EXTENDED_LENGTH_PREFIX):
        return path

    path = path.replace("\\", "/")

    prefix = ""
    rest = path
    drive = _DRIVE_RE.match(path)
    if drive:
        prefix = drive.group(1) + drive.group(2)
        rest = path[len(drive.group(0)) :]
    elif path.startswith("//"):
        prefix = "//"
        rest = path[2:]
    elif path.startswith("/"):
        prefix = "/"
        rest = path[1:]
    rooted = prefix.endswith("/")

    segments: List[str] = []
    for segment in rest.split("/"):
        if not segment or segment == ".":
            continue
        if segment == "..":
            if segments and segments[-1] != "..":
                segments.pop()
            elif not rooted:
                segments.append(segment)
            continue
        segments.append(segment)

    normalized = prefix + "/".join(segments)
    return normalized or "."


class PathUtils:
    """Path functions for one path flavor and one working directory."""

    def __init__(self, is_windows: bool = False, cwd: str = "/") -> None:
        self.is_windows = is_windows
        self._mod = ntpath if is_windows else posixpath
        self.sep = "/"
        self.delimiter = ";" if is_windows else ":"
        self.cwd = normalize_path(cwd)

    def basename(self, path: str, ext: str = "") -> str:
        base = self._mod.basename(self._mod.normpath(path)) if path else ""
        if ext and base.endswith(ext) and base != ext:
            base = base[: -len(ext)]
        return base

    def dirname(self, path: str) -> str:
        normalized = normalize_path(path) if path else "."
        if "/" not in normalized:
            return "."
        head = normalized.rsplit("/", 1)[0]
        if not head or head.endswith(":"):
            return head + "/"
        return head

    def extname(self, path: str) -> str:
        return self._mod.splitext(self.basename(path))[1]

    def is_absolute(self, path: str) -> bool:
        if self.is_windows:
            return bool(_DRIVE_RE.match(path.replace("\\", "/"))) or path.startswith(("/", "\\"))
        return path.startswith("/")

    def join(self, *paths: str) -> str:
        parts = [p for p in paths if p]
        if not parts:
            return "."
        return normalize_path(self._mod.join(*parts))

    def normalize(self, path: str) -> str:
        return normalize_path(path)

    def resolve(self, *paths: str) -> str:
        """Resolve a sequence of segments into an absolute path, right to left, falling back
        to ``cwd`` when no segment is absolute."""
        parts = [p for p in paths if p]
        return normalize_path(self._mod.join(self.cwd, *parts))

    def relative(self, from_path: str, to_path: str) -> str:
        start = self.resolve(from_path)
        target = self.resolve(to_path)
        if start == target:
            return ""
        try:
            return normalize_path(self._mod.relpath(target, start))
        except ValueError:
            # Different drives on Windows have no relative path between them.
            return target