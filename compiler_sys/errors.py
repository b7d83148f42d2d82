"""Exception types raised across the compiler_sys boundary."""

from __future__ import annotations

from typing import Optional


class CompilerSysError(RuntimeError):
    """Base class of every error raised by compiler_sys."""


class WorkerError(CompilerSysError):
    """Base class for failures of a dispatched worker task."""


class WorkerTaskError(WorkerError):
    """The dispatched function raised inside the worker."""

    def __init__(self, function_name: str, message: str, stack: Optional[str] = None) -> None:
        super().__init__(f"{function_name}: {message}")
        self.function_name = function_name
        self.remote_message = message
        self.remote_stack = stack


class WorkerCrashedError(WorkerError):
    """The worker terminated unexpectedly while holding the task."""


class WorkerCancelledError(WorkerError):
    """The worker pool was destroyed before the task completed."""


class ModuleLoadError(CompilerSysError):
    """A module could not be loaded by any strategy."""


class SystemDestroyedError(CompilerSysError):
    """The CompilerSystem was destroyed and no longer hands out resources."""
