from .fetcher import HttpFetcher
from .loader import ModuleLoader, provenance
from .strategies import (
    AlreadyLoadedStrategy,
    AsyncNetworkStrategy,
    HostInjectedStrategy,
    LoadedModule,
    LoadSource,
    LoadStrategy,
    LocalImportStrategy,
    ModuleRequest,
    SyncNetworkStrategy,
    default_strategies,
    evaluate_module_source,
    import_file,
)

__all__ = [
    "ModuleLoader",
    "ModuleRequest",
    "LoadedModule",
    "LoadSource",
    "LoadStrategy",
    "AlreadyLoadedStrategy",
    "LocalImportStrategy",
    "HostInjectedStrategy",
    "SyncNetworkStrategy",
    "AsyncNetworkStrategy",
    "default_strategies",
    "evaluate_module_source",
    "import_file",
    "provenance",
    "HttpFetcher",
]
