from .backends import ProcessWorker, ThreadWorker, Worker
from .context import (
    WORKER_FUNCTION_NAMES,
    UnboundWorkerFunctionError,
    UnknownWorkerFunctionError,
    WorkerContext,
    load_entry_point,
)
from .pool import (
    WorkerPoolController,
    WorkerPoolStats,
    create_worker_controller,
    default_worker_factory,
)
from .protocol import WorkerCommand, WorkerResponse, run_task

__all__ = [
    "WORKER_FUNCTION_NAMES",
    "WorkerContext",
    "UnknownWorkerFunctionError",
    "UnboundWorkerFunctionError",
    "load_entry_point",
    "Worker",
    "ProcessWorker",
    "ThreadWorker",
    "WorkerCommand",
    "WorkerResponse",
    "run_task",
    "WorkerPoolController",
    "WorkerPoolStats",
    "create_worker_controller",
    "default_worker_factory",
]
