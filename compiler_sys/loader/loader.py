"""Module loader: a fallback chain of load strategies with a process-lifetime cache."""

from __future__ import annotations

import asyncio
import builtins
import sys
import threading
import types
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from compiler_sys.data import Diagnostic, build_error, get_dependency, get_remote_module_url
from compiler_sys.env import get_compiler_sys_remote_base_url
from compiler_sys.errors import ModuleLoadError
from compiler_sys.host import HostKind
from compiler_sys.logging import get_logger

from .fetcher import HttpFetcher
from .strategies import (
    LOADED_ATTR,
    PATH_ATTR,
    SOURCE_ATTR,
    Candidate,
    LoadedModule,
    LoadSource,
    LoadStrategy,
    ModuleRequest,
    default_strategies,
    has_marker,
)

if TYPE_CHECKING:
    from compiler_sys.system.path import PathUtils

LOGGER = get_logger("ModuleLoader")

RequestLike = Union[str, ModuleRequest]


class ModuleLoader:
    """Obtains third-party runtime modules through an ordered list of strategies.

    Strategies not available on the host kind are dropped at construction. The first
    candidate exposing the request's marker callable wins; it is tagged with its
    provenance and cached, so later requests for the same module id return the same
    ``LoadedModule`` without running any strategy.

    Parameters
    ----------
    host_kind : HostKind
        Decides which strategies are valid.
    path : Optional[PathUtils]
        Resolves explicit local paths. Default is a PathUtils rooted at the process cwd.
    fetcher : Optional[HttpFetcher]
        Used by the network strategies. Created on first use when not given.
    host_globals : Optional[Mapping[str, Any]]
        The host-injected slot table. Default is the ``builtins`` namespace.
    remote_base_url : Optional[str]
        Base of remote module URLs. Default is COMPILER_SYS_REMOTE_BASE_URL.
    strategies : Optional[Sequence[LoadStrategy]]
        Overrides the default fallback chain.
    """

    def __init__(
        self,
        host_kind: HostKind,
        path: Optional["PathUtils"] = None,
        fetcher: Optional[HttpFetcher] = None,
        host_globals: Optional[Mapping[str, Any]] = None,
        remote_base_url: Optional[str] = None,
        strategies: Optional[Sequence[LoadStrategy]] = None,
    ) -> None:
        if path is None:
            # compiler_sys.system imports the loader; resolve the default lazily
            from compiler_sys.system.path import PathUtils

            path = PathUtils()
        self.host_kind = host_kind
        self.path = path
        self._fetcher = fetcher
        self.host_globals = host_globals if host_globals is not None else vars(builtins)
        self.remote_base_url = (remote_base_url or get_compiler_sys_remote_base_url()).rstrip("/")
        chain = strategies if strategies is not None else default_strategies()
        self.strategies: List[LoadStrategy] = [s for s in chain if s.is_available(host_kind)]
        self._cache: Dict[str, LoadedModule] = {}
        self._inflight: Dict[str, "asyncio.Future[Optional[LoadedModule]]"] = {}
        self._lock = threading.Lock()

    @property
    def fetcher(self) -> HttpFetcher:
        if self._fetcher is None:
            self._fetcher = HttpFetcher()
        return self._fetcher

    def remote_url(self, request: ModuleRequest) -> str:
        """URL of the remote bundle for ``request``.

        A full URL in ``request.path`` is used as is. Otherwise the version and file path
        default to the dependency table entry for the module.

        Raises
        ------
        ModuleLoadError
            If the module has no remote location.
        """
        if request.path and "://" in request.path:
            return request.path
        dep = get_dependency(request.module_id)
        version = request.version or (dep.version if dep else None)
        file_path = request.path or (dep.main if dep else None)
        if not version or not file_path:
            raise ModuleLoadError(f"No remote location known for module '{request.module_id}'")
        return get_remote_module_url(self.remote_base_url, request.module_id, version, file_path)

    def cached(self, module_id: str) -> Optional[LoadedModule]:
        with self._lock:
            return self._cache.get(module_id)

    def close(self) -> None:
        """Release the network session, if one was opened."""
        if self._fetcher is not None:
            self._fetcher.close()

    # Loading

    def load_module_sync(
        self, request: RequestLike, diagnostics: Optional[List[Diagnostic]] = None
    ) -> Optional[LoadedModule]:
        """Run the synchronous strategies. Returns None and records a diagnostic on failure."""
        request = _as_request(request)
        failures: List[str] = []
        handle = self._load_sync(request, failures, set())
        if handle is None:
            self._report(request, failures, diagnostics)
        return handle

    async def load_module(
        self, request: RequestLike, diagnostics: Optional[List[Diagnostic]] = None
    ) -> Optional[LoadedModule]:
        """Run the synchronous strategies, then the asynchronous ones.

        Concurrent calls for one module id share a single in-flight asynchronous load.
        Returns None and records a diagnostic if every strategy fails.
        """
        request = _as_request(request)
        failures: List[str] = []
        fetched: Set[str] = set()
        handle = self._load_sync(request, failures, fetched)
        if handle is not None:
            return handle

        for strategy in self.strategies:
            if not strategy.is_async:
                continue
            if strategy.fetches_remote and fetched:
                # the same URL already failed synchronously in this call
                LOGGER.debug(f"{strategy!r} skipped for {request.module_id}: remote already tried")
                continue
            future = self._inflight.get(request.module_id)
            if future is None:
                future = asyncio.ensure_future(self._load_async(strategy, request))
                self._inflight[request.module_id] = future
                future.add_done_callback(lambda _, key=request.module_id: self._inflight.pop(key, None))
            try:
                handle = await asyncio.shield(future)
            except Exception as e:
                failures.append(f"{strategy.source.value}: {type(e).__name__}: {e}")
                continue
            if handle is not None:
                return handle
            failures.append(f"{strategy.source.value}: missing '{request.marker}'")

        self._report(request, failures, diagnostics)
        return None

    def _load_sync(
        self, request: ModuleRequest, failures: List[str], fetched: Set[str]
    ) -> Optional[LoadedModule]:
        handle = self.cached(request.module_id)
        if handle is not None:
            return handle
        for strategy in self.strategies:
            if strategy.is_async:
                continue
            if strategy.fetches_remote:
                fetched.add(strategy.source.value)
            try:
                candidate = strategy.load(request, self)
            except Exception as e:
                LOGGER.debug(f"{strategy!r} failed for {request.module_id}: {e}")
                failures.append(f"{strategy.source.value}: {type(e).__name__}: {e}")
                continue
            handle = self._accept(strategy, request, candidate)
            if handle is not None:
                return handle
            if candidate is not None:
                failures.append(f"{strategy.source.value}: missing '{request.marker}'")
        return None

    async def _load_async(self, strategy: LoadStrategy, request: ModuleRequest) -> Optional[LoadedModule]:
        candidate = await strategy.load_async(request, self)
        return self._accept(strategy, request, candidate)

    def _accept(
        self, strategy: LoadStrategy, request: ModuleRequest, candidate: Optional[Candidate]
    ) -> Optional[LoadedModule]:
        if candidate is None:
            return None
        obj, location = candidate
        if not has_marker(obj, request.marker):
            return None
        handle = LoadedModule(module=obj, loaded=True, source=strategy.source, path=location)
        if strategy.source is not LoadSource.ALREADY_LOADED:
            _tag(obj, strategy.source, location)
            if strategy.source in (LoadSource.SYNC_NETWORK, LoadSource.ASYNC_NETWORK) and isinstance(
                obj, types.ModuleType
            ):
                sys.modules[request.module_id] = obj
        with self._lock:
            existing = self._cache.setdefault(request.module_id, handle)
        LOGGER.info(f"Loaded {request.module_id} via {existing.source.value} ({existing.path})")
        return existing

    def _report(
        self, request: ModuleRequest, failures: List[str], diagnostics: Optional[List[Diagnostic]]
    ) -> None:
        detail = "; ".join(failures) if failures else "no strategy produced a candidate"
        LOGGER.warning(f"Unable to load {request.module_id}: {detail}")
        if diagnostics is not None:
            build_error(
                diagnostics,
                header=f"Unable to load {request.module_id}",
                message_text=f"{request.module_id} could not be loaded on a {self.host_kind.value} host: {detail}",
            )


def _as_request(request: RequestLike) -> ModuleRequest:
    if isinstance(request, ModuleRequest):
        return request
    return ModuleRequest(module_id=request)


def _tag(obj: Any, source: LoadSource, location: Optional[str]) -> None:
    try:
        setattr(obj, LOADED_ATTR, True)
        setattr(obj, SOURCE_ATTR, source.value)
        setattr(obj, PATH_ATTR, location)
    except (AttributeError, TypeError):
        LOGGER.debug(f"Cannot tag {type(obj).__name__} object; relying on the loader cache")


def provenance(obj: Any) -> Tuple[bool, Optional[str], Optional[str]]:
    """The ``(loaded, source, path)`` tags of a loaded module, if any."""
    return (
        bool(getattr(obj, LOADED_ATTR, False)),
        getattr(obj, SOURCE_ATTR, None),
        getattr(obj, PATH_ATTR, None),
    )
