"""Value objects returned by filesystem operations.

Mutating operations never raise. A failure of the underlying call is reported through
the ``error`` field, and every list field of a failed result is empty.
"""

from typing import List, Optional, Tuple

from pydantic import Field

from .diagnostic import Diagnostic
from .utils import BaseModelWithDocstrings, NonEmptyString


class Stat(BaseModelWithDocstrings):
    """Normalized file status. Computed on demand, never cached by the adapter."""

    is_file: bool
    """Whether the path is a regular file."""
    is_directory: bool
    """Whether the path is a directory."""
    is_symbolic_link: bool
    """Whether the path itself is a symbolic link."""
    size: int = Field(ge=0)
    """Size in bytes."""


class FsOperationResult(BaseModelWithDocstrings):
    """Common shape of mutating operation results."""

    error: Optional[str] = None
    """Description of the failure, or None if the operation succeeded."""

    @property
    def ok(self) -> bool:
        return self.error is None


class MakeDirectoryResults(FsOperationResult):
    path: NonEmptyString
    """The normalized directory path that was requested."""
    basename: str
    dirname: str
    new_dirs: List[str] = Field(default_factory=list)
    """Directories created by this call, outermost first."""


class RemoveDirectoryResults(FsOperationResult):
    path: NonEmptyString
    basename: str
    dirname: str
    removed_dirs: List[str] = Field(default_factory=list)
    """Directories removed by this call, the requested directory last."""
    removed_files: List[str] = Field(default_factory=list)
    """Files removed by this call when removing recursively."""


class RenameResults(FsOperationResult):
    old_path: NonEmptyString
    new_path: NonEmptyString
    old_dirs: List[str] = Field(default_factory=list)
    old_files: List[str] = Field(default_factory=list)
    new_dirs: List[str] = Field(default_factory=list)
    new_files: List[str] = Field(default_factory=list)
    renamed: List[Tuple[str, str]] = Field(default_factory=list)
    """(old, new) pairs for every entry moved by the rename."""
    is_file: bool = False
    is_directory: bool = False


class UnlinkResults(FsOperationResult):
    path: NonEmptyString
    basename: str
    dirname: str


class WriteFileResults(FsOperationResult):
    path: NonEmptyString


class CopyFileResults(FsOperationResult):
    src_path: NonEmptyString
    dest_path: NonEmptyString


def format_error(exc: BaseException) -> str:
    """Render an exception for the ``error`` field of a result."""
    return f"{type(exc).__name__}: {exc}"


class CopyTask(BaseModelWithDocstrings):
    """One entry of a batch copy."""

    src: NonEmptyString
    """Source file or directory. Relative paths resolve against the copy's source directory."""
    dest: NonEmptyString
    """Destination path. Relative paths resolve against the system's working directory."""
    warn: bool = False
    """Report a missing source as a warning instead of an error."""


class CopyResults(BaseModelWithDocstrings):
    """Outcome of a batch copy. Failures are diagnostics; the batch itself never raises."""

    diagnostics: List[Diagnostic] = Field(default_factory=list)
    file_paths: List[str] = Field(default_factory=list)
    """Destination files written, in copy order."""
    dir_paths: List[str] = Field(default_factory=list)
    """Destination directories created, outermost first."""
