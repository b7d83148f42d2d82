"""The fixed table of functions a worker is allowed to run."""

from __future__ import annotations

import importlib
from typing import Any, Callable, Dict, Mapping, Optional, Union

from compiler_sys.env import get_compiler_sys_worker_module

WORKER_FUNCTION_NAMES = (
    "transpile",
    "transform_css_to_esm",
    "prepare_module",
    "optimize_css",
    "transpile_to_es5",
    "prerender_worker",
)
"""Names of the compiler functions that can be offloaded to a worker."""

WorkerFunction = Callable[..., Any]
Binding = Union[str, WorkerFunction]
"""Either an entry point ``'package.module::function'`` or a module-level callable."""


class UnknownWorkerFunctionError(LookupError):
    """The function name is not part of the worker function table."""


class UnboundWorkerFunctionError(LookupError):
    """The function name is known but no implementation is bound to it."""


def load_entry_point(entry_point: str) -> WorkerFunction:
    """Import the callable named by ``'package.module::function'``.

    Raises
    ------
    ValueError
        If the entry point does not follow the required format.
    ImportError, AttributeError
        If the module or the function cannot be found.
    """
    if entry_point.count("::") != 1:
        raise ValueError(
            f'Invalid entry point format: {entry_point}. Expected "<module>::<function_name>".'
        )
    module_name, function_name = entry_point.split("::")
    fn = getattr(importlib.import_module(module_name), function_name)
    if not callable(fn):
        raise TypeError(f"Entry point {entry_point} is not callable")
    return fn


class WorkerContext:
    """Maps worker function names to their implementations.

    The set of names is fixed (``WORKER_FUNCTION_NAMES``); the embedding compiler decides
    which implementation each name is bound to. Bindings must be picklable by reference
    (entry point strings or module-level functions) so that the context can be shipped to
    process workers.
    """

    def __init__(self, bindings: Optional[Mapping[str, Binding]] = None) -> None:
        bindings = dict(bindings or {})
        for name in bindings:
            if name not in WORKER_FUNCTION_NAMES:
                raise UnknownWorkerFunctionError(f"Unknown worker function: {name}")
        self._bindings: Dict[str, Binding] = bindings
        self._resolved: Dict[str, WorkerFunction] = {}

    @classmethod
    def from_module(cls, module_name: str) -> "WorkerContext":
        """Bind every worker function name to the attribute of the same name in a module."""
        return cls({name: f"{module_name}::{name}" for name in WORKER_FUNCTION_NAMES})

    @classmethod
    def default(cls) -> "WorkerContext":
        """Context configured by COMPILER_SYS_WORKER_MODULE, or an empty one."""
        module_name = get_compiler_sys_worker_module()
        if module_name:
            return cls.from_module(module_name)
        return cls()

    @staticmethod
    def is_known(name: str) -> bool:
        return name in WORKER_FUNCTION_NAMES

    def is_bound(self, name: str) -> bool:
        return name in self._bindings

    def resolve(self, name: str) -> WorkerFunction:
        """Return the implementation bound to ``name``.

        Raises
        ------
        UnknownWorkerFunctionError
            If ``name`` is not a worker function.
        UnboundWorkerFunctionError
            If no implementation is bound to ``name``.
        """
        if not self.is_known(name):
            raise UnknownWorkerFunctionError(f"Unknown worker function: {name}")
        if name in self._resolved:
            return self._resolved[name]
        binding = self._bindings.get(name)
        if binding is None:
            raise UnboundWorkerFunctionError(f"No implementation bound for worker function: {name}")
        fn = load_entry_point(binding) if isinstance(binding, str) else binding
        self._resolved[name] = fn
        return fn

    def to_spec(self) -> Dict[str, Binding]:
        """Picklable description used to rebuild the context inside a worker process."""
        return dict(self._bindings)

    @classmethod
    def from_spec(cls, spec: Mapping[str, Binding]) -> "WorkerContext":
        return cls(spec)
