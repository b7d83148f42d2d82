"""Host runtime classification.

The host kind is selected once when a CompilerSystem is created and handed to every
component constructor. Components never inspect the interpreter on their own.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Optional

from compiler_sys.env import get_compiler_sys_host_kind


class HostKind(str, Enum):
    """The kinds of host runtime a CompilerSystem can run on."""

    NATIVE = "native"
    """Regular interpreter with a real filesystem and multi-process workers."""
    ISOLATE = "isolate"
    """Sandboxed interpreter with a real filesystem, isolated worker processes and network
    access."""
    BACKGROUND_THREAD = "background_thread"
    """Code running on a background thread that may block on network loads; workers are
    threads."""
    FETCH = "fetch"
    """Fetch-only host without a filesystem; files live in memory and workers are threads."""

    @property
    def has_filesystem(self) -> bool:
        return self is not HostKind.FETCH

    @property
    def uses_process_workers(self) -> bool:
        return self in (HostKind.NATIVE, HostKind.ISOLATE)


def detect_host_kind(override: Optional[str] = None) -> HostKind:
    """Select the host kind for this process.

    Parameters
    ----------
    override : Optional[str]
        Explicit host kind value. Default is the environment variable COMPILER_SYS_HOST_KIND
        if it exists; otherwise the kind is derived from ``sys.platform``.

    Returns
    -------
    HostKind
        The selected host kind.

    Raises
    ------
    ValueError
        If the override is not a known host kind.
    """
    value = override or get_compiler_sys_host_kind()
    if value:
        return HostKind(value)
    if sys.platform == "emscripten":
        return HostKind.FETCH
    if sys.platform == "wasi":
        return HostKind.ISOLATE
    return HostKind.NATIVE
