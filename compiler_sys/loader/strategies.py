"""The individual ways a module can be obtained.

Each strategy either produces a candidate object (plus the path or URL it came from) or
nothing. Validation against the marker callable, tagging and caching are done by the
loader, so strategies stay small and reorderable.
"""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import sys
import types
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Tuple

from compiler_sys.data.utils import BaseModelWithDocstrings, NonEmptyString
from compiler_sys.host import HostKind
from compiler_sys.logging import get_logger

if TYPE_CHECKING:
    from .loader import ModuleLoader

LOGGER = get_logger("LoadStrategy")

LOADED_ATTR = "__compiler_sys_loaded__"
SOURCE_ATTR = "__compiler_sys_source__"
PATH_ATTR = "__compiler_sys_path__"

Candidate = Tuple[Any, Optional[str]]
"""A loaded object and the path or URL it was obtained from."""


class LoadSource(str, Enum):
    ALREADY_LOADED = "already_loaded"
    LOCAL = "local"
    HOST_INJECTED = "host_injected"
    SYNC_NETWORK = "sync_network"
    ASYNC_NETWORK = "async_network"


class ModuleRequest(BaseModelWithDocstrings):
    """Describes the module to load and how to recognize it."""

    module_id: NonEmptyString
    """Import name of the module; also the package name of its remote location."""
    version: Optional[str] = None
    """Remote package version. Default is the version in the dependency table."""
    path: Optional[str] = None
    """Explicit local ``.py`` path, remote file path inside the package, or full URL."""
    marker: NonEmptyString = "transpile_module"
    """Name of the callable a candidate must expose to be accepted."""
    global_name: Optional[str] = None
    """Name of the host-injected global slot. Default is ``module_id``."""

    @property
    def slot(self) -> str:
        return self.global_name or self.module_id


@dataclass
class LoadedModule:
    """Handle to a loaded module and where it came from."""

    module: Any
    loaded: bool
    source: LoadSource
    path: Optional[str] = None


def has_marker(obj: Any, marker: str) -> bool:
    return obj is not None and callable(getattr(obj, marker, None))


def evaluate_module_source(module_id: str, code: str, origin: str, slot: str) -> Any:
    """Execute fetched source in a fresh module namespace.

    If the code binds the global ``slot`` (for instance ``ts = ...``) that object is the
    result; otherwise the module itself is.
    """
    module = types.ModuleType(module_id)
    module.__file__ = origin
    exec(compile(code, origin, "exec"), module.__dict__)
    injected = module.__dict__.get(slot)
    return injected if injected is not None else module


def import_file(module_name: str, location: str) -> types.ModuleType:
    """Execute the ``.py`` file at ``location`` as module ``module_name``.

    The module is installed in ``sys.modules`` before it runs and removed again if it
    raises.
    """
    spec = importlib.util.spec_from_file_location(module_name, location)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot import {location}", name=module_name, path=location)
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


class LoadStrategy(ABC):
    """One step of the module loader's fallback chain."""

    source: LoadSource
    is_async = False
    fetches_remote = False

    @staticmethod
    @abstractmethod
    def is_available(host_kind: HostKind) -> bool:
        """Whether this strategy may run on ``host_kind``."""
        ...

    def load(self, request: ModuleRequest, loader: "ModuleLoader") -> Optional[Candidate]:
        """Attempt a synchronous load."""
        return None

    async def load_async(self, request: ModuleRequest, loader: "ModuleLoader") -> Optional[Candidate]:
        return self.load(request, loader)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class AlreadyLoadedStrategy(LoadStrategy):
    """Reuse a module a previous load installed and tagged in ``sys.modules``."""

    source = LoadSource.ALREADY_LOADED

    @staticmethod
    def is_available(host_kind: HostKind) -> bool:
        return True

    def load(self, request, loader):
        module = sys.modules.get(request.module_id)
        if module is not None and getattr(module, LOADED_ATTR, False):
            return module, getattr(module, PATH_ATTR, None)
        return None


class LocalImportStrategy(LoadStrategy):
    """Import by module name, or execute an explicit ``.py`` file."""

    source = LoadSource.LOCAL

    @staticmethod
    def is_available(host_kind: HostKind) -> bool:
        return host_kind in (HostKind.NATIVE, HostKind.ISOLATE)

    def load(self, request, loader):
        if request.path and request.path.endswith(".py") and "://" not in request.path:
            location = loader.path.resolve(request.path)
            return import_file(request.module_id, location), location
        try:
            module = importlib.import_module(request.module_id)
        except ModuleNotFoundError as e:
            if e.name and request.module_id.split(".")[0] != e.name.split(".")[0]:
                raise
            LOGGER.debug(f"{request.module_id} is not importable locally")
            return None
        return module, getattr(module, "__file__", None) or request.module_id


class HostInjectedStrategy(LoadStrategy):
    """Look the module up in the host's global slot table."""

    source = LoadSource.HOST_INJECTED

    @staticmethod
    def is_available(host_kind: HostKind) -> bool:
        return True

    def load(self, request, loader):
        obj = loader.host_globals.get(request.slot)
        if obj is None:
            return None
        return obj, request.path


class SyncNetworkStrategy(LoadStrategy):
    """Fetch the remote bundle with a blocking request and evaluate it in place."""

    source = LoadSource.SYNC_NETWORK
    fetches_remote = True

    @staticmethod
    def is_available(host_kind: HostKind) -> bool:
        return host_kind is HostKind.BACKGROUND_THREAD

    def load(self, request, loader):
        url = loader.remote_url(request)
        code = loader.fetcher.fetch_text(url)
        return evaluate_module_source(request.module_id, code, url, request.slot), url


class AsyncNetworkStrategy(LoadStrategy):
    """Fetch the remote bundle without blocking the event loop.

    Concurrent loads of one module share a single in-flight fetch; see
    ``ModuleLoader.load_module``.
    """

    source = LoadSource.ASYNC_NETWORK
    is_async = True
    fetches_remote = True

    @staticmethod
    def is_available(host_kind: HostKind) -> bool:
        return host_kind in (HostKind.ISOLATE, HostKind.BACKGROUND_THREAD, HostKind.FETCH)

    def load(self, request, loader):
        return None

    async def load_async(self, request, loader):
        url = loader.remote_url(request)
        code = await asyncio.get_running_loop().run_in_executor(None, loader.fetcher.fetch_text, url)
        return evaluate_module_source(request.module_id, code, url, request.slot), url


def default_strategies():
    """The fallback chain in priority order."""
    return [
        AlreadyLoadedStrategy(),
        LocalImportStrategy(),
        HostInjectedStrategy(),
        SyncNetworkStrategy(),
        AsyncNetworkStrategy(),
    ]
