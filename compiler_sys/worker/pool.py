"""Bounded pool of workers executing named compiler functions.

All controller state is confined to the event loop the pool was first used from. Worker
backends report from their own threads; those reports are posted back to the loop with
``call_soon_threadsafe`` before they touch any state.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from compiler_sys.data import TaskFailure, parse_response
from compiler_sys.errors import WorkerCancelledError, WorkerCrashedError, WorkerTaskError
from compiler_sys.host import HostKind
from compiler_sys.logging import get_logger
from compiler_sys.system.destroy import DestroyRegistry

from .backends import ExitCallback, MessageCallback, ProcessWorker, ThreadWorker, Worker
from .context import UnknownWorkerFunctionError, WorkerContext
from .protocol import encode_task

LOGGER = get_logger("WorkerPool")

WorkerFactory = Callable[[int, WorkerContext, MessageCallback, ExitCallback], Worker]


@dataclass
class WorkerPoolStats:
    """Snapshot of the pool's counters."""

    active_workers: int
    idle_workers: int
    busy_workers: int
    queued_tasks: int
    peak_active_workers: int
    crashed_workers: int
    completed_tasks: int


@dataclass
class _Task:
    task_id: int
    function_name: str
    frame: str
    future: "asyncio.Future[Any]"
    worker_id: Optional[int] = None


def default_worker_factory(host_kind: HostKind) -> WorkerFactory:
    """Process workers on hosts that can spawn subprocesses, thread workers otherwise."""
    worker_cls = ProcessWorker if host_kind.uses_process_workers else ThreadWorker

    def factory(worker_id, context, on_message, on_exit) -> Worker:
        return worker_cls(worker_id, context, on_message, on_exit)

    return factory


class WorkerPoolController:
    """Dispatches tasks to at most ``max_concurrent_workers`` workers.

    A dispatched task goes to an idle worker if there is one, to a newly spawned worker if
    the pool is below its ceiling, and otherwise waits in a FIFO queue. A worker that dies
    while holding a task rejects that task with ``WorkerCrashedError`` and is replaced on
    demand. ``destroy`` terminates every worker and rejects pending and queued tasks with
    ``WorkerCancelledError``.

    Parameters
    ----------
    max_concurrent_workers : int
        Ceiling on live workers; must be at least 1.
    context : WorkerContext
        The function table workers execute from.
    host_kind : HostKind
        Selects the worker backend when ``worker_factory`` is not given.
    destroy_registry : Optional[DestroyRegistry]
        If given, the pool registers its ``destroy`` there.
    worker_factory : Optional[WorkerFactory]
        Overrides backend selection.
    """

    def __init__(
        self,
        max_concurrent_workers: int,
        context: WorkerContext,
        host_kind: HostKind = HostKind.NATIVE,
        destroy_registry: Optional[DestroyRegistry] = None,
        worker_factory: Optional[WorkerFactory] = None,
    ) -> None:
        if not isinstance(max_concurrent_workers, int) or max_concurrent_workers < 1:
            raise ValueError(
                f"max_concurrent_workers must be a positive integer, got {max_concurrent_workers!r}"
            )
        self.max_concurrent_workers = max_concurrent_workers
        self.context = context
        self.host_kind = host_kind
        self._factory = worker_factory or default_worker_factory(host_kind)
        self._destroy_registry = destroy_registry

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._workers: Dict[int, Worker] = {}
        self._idle: Deque[int] = deque()
        self._assigned: Dict[int, _Task] = {}
        self._queue: Deque[_Task] = deque()
        self._task_ids = itertools.count(1)
        self._worker_ids = itertools.count(1)
        self._destroyed = False

        self._peak_active = 0
        self._crashed = 0
        self._completed = 0

        if destroy_registry is not None:
            destroy_registry.add(self.destroy)

    # Public API

    def dispatch(self, function_name: str, *args: Any) -> "asyncio.Future[Any]":
        """Run ``function_name(*args)`` on a worker.

        Must be called from a running event loop. The returned future resolves to the
        function's return value, or fails with ``WorkerTaskError``, ``WorkerCrashedError``
        or ``WorkerCancelledError``.

        Raises
        ------
        UnknownWorkerFunctionError
            If ``function_name`` is not a worker function.
        TypeError
            If ``args`` are not JSON-serializable.
        """
        if not self.context.is_known(function_name):
            raise UnknownWorkerFunctionError(f"Unknown worker function: {function_name}")
        loop = asyncio.get_running_loop()
        if self._loop is None or self._loop.is_closed():
            self._loop = loop
        future = loop.create_future()

        task_id = next(self._task_ids)
        frame = encode_task(task_id, function_name, list(args))
        if self._destroyed:
            future.set_exception(WorkerCancelledError(f"{function_name}: worker pool is destroyed"))
            return future

        self._queue.append(_Task(task_id, function_name, frame, future))
        self._schedule()
        return future

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def stats(self) -> WorkerPoolStats:
        busy = len(self._assigned)
        return WorkerPoolStats(
            active_workers=len(self._workers),
            idle_workers=len(self._idle),
            busy_workers=busy,
            queued_tasks=len(self._queue),
            peak_active_workers=self._peak_active,
            crashed_workers=self._crashed,
            completed_tasks=self._completed,
        )

    async def destroy(self) -> None:
        """Terminate every worker and reject all outstanding tasks. Idempotent."""
        if self._destroyed:
            return
        workers = self._shutdown()
        if not workers:
            return
        LOGGER.debug(f"Terminating {len(workers)} worker(s)")
        loop = asyncio.get_running_loop()
        outcomes = await asyncio.gather(
            *(loop.run_in_executor(None, worker.terminate) for worker in workers),
            return_exceptions=True,
        )
        for worker, outcome in zip(workers, outcomes):
            if isinstance(outcome, BaseException):
                LOGGER.warning(f"Failed to terminate {worker!r}: {outcome}")

    def destroy_sync(self) -> None:
        """Blocking ``destroy`` for callers without an event loop; workers stop one by one."""
        if self._destroyed:
            return
        for worker in self._shutdown():
            try:
                worker.terminate()
            except Exception as e:
                LOGGER.warning(f"Failed to terminate {worker!r}: {e}")

    def _shutdown(self) -> List[Worker]:
        """Stop admission, reject outstanding tasks and detach the workers to terminate."""
        self._destroyed = True
        if self._destroy_registry is not None:
            self._destroy_registry.remove(self.destroy)

        outstanding = list(self._assigned.values()) + list(self._queue)
        self._assigned.clear()
        self._queue.clear()
        for task in outstanding:
            self._reject(task, WorkerCancelledError(f"{task.function_name}: worker pool is destroyed"))

        workers = list(self._workers.values())
        self._workers.clear()
        self._idle.clear()
        return workers

    # Scheduling (event loop thread only)

    def _schedule(self) -> None:
        while self._queue and not self._destroyed:
            if self._idle:
                worker = self._workers[self._idle.popleft()]
                if not worker.is_alive:
                    # its exit report is still in flight; _on_exit reschedules
                    continue
            elif len(self._workers) < self.max_concurrent_workers:
                try:
                    worker = self._spawn()
                except Exception as e:
                    task = self._queue.popleft()
                    LOGGER.error(f"Failed to start a worker for {task.function_name}: {e}")
                    self._reject(task, WorkerCrashedError(f"{task.function_name}: failed to start worker: {e}"))
                    continue
            else:
                return
            self._assign(worker, self._queue.popleft())

    def _spawn(self) -> Worker:
        worker_id = next(self._worker_ids)
        worker = self._factory(
            worker_id,
            self.context,
            lambda w, response: self._post(self._on_message, w, response),
            lambda w, reason: self._post(self._on_exit, w, reason),
        )
        worker.start()
        self._workers[worker_id] = worker
        self._peak_active = max(self._peak_active, len(self._workers))
        LOGGER.debug(f"Spawned {worker!r} ({len(self._workers)}/{self.max_concurrent_workers})")
        return worker

    def _assign(self, worker: Worker, task: _Task) -> None:
        task.worker_id = worker.worker_id
        self._assigned[worker.worker_id] = task
        try:
            worker.send(task.frame)
        except (OSError, ValueError) as e:
            self._on_exit(worker, f"send failed: {e}")

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            LOGGER.debug("Event loop closed before a worker report was delivered")

    def _on_message(self, worker: Worker, payload: Dict[str, Any]) -> None:
        if self._destroyed:
            return
        task = self._assigned.pop(worker.worker_id, None)
        response = parse_response(payload)
        if task is None or task.task_id != response.task_id:
            LOGGER.warning(f"Dropping response for unknown task {response.task_id} from {worker!r}")
            if task is not None:
                self._assigned[worker.worker_id] = task
            return
        self._completed += 1
        if isinstance(response, TaskFailure):
            self._reject(
                task,
                WorkerTaskError(task.function_name, response.error.message, response.error.stack),
            )
        elif not task.future.done():
            task.future.set_result(response.value)
        if worker.worker_id in self._workers and not self._destroyed:
            self._idle.append(worker.worker_id)
        self._schedule()

    def _on_exit(self, worker: Worker, reason: str) -> None:
        if self._workers.pop(worker.worker_id, None) is None:
            return
        try:
            self._idle.remove(worker.worker_id)
        except ValueError:
            pass
        task = self._assigned.pop(worker.worker_id, None)
        if worker.terminating or self._destroyed:
            if task is not None:
                self._reject(task, WorkerCancelledError(f"{task.function_name}: worker pool is destroyed"))
            return
        self._crashed += 1
        LOGGER.warning(f"{worker!r} crashed: {reason}")
        if task is not None:
            self._reject(task, WorkerCrashedError(f"{task.function_name}: {reason}"))
        self._schedule()

    @staticmethod
    def _reject(task: _Task, exc: BaseException) -> None:
        if task.future.done():
            return
        try:
            task.future.set_exception(exc)
        except RuntimeError:
            LOGGER.debug(f"Could not reject task {task.task_id}: its event loop is closed")


def create_worker_controller(
    max_concurrent_workers: int,
    context: Optional[WorkerContext] = None,
    host_kind: HostKind = HostKind.NATIVE,
    destroy_registry: Optional[DestroyRegistry] = None,
    worker_factory: Optional[WorkerFactory] = None,
) -> WorkerPoolController:
    """Create a pool; the context defaults to ``WorkerContext.default()``."""
    return WorkerPoolController(
        max_concurrent_workers,
        context if context is not None else WorkerContext.default(),
        host_kind=host_kind,
        destroy_registry=destroy_registry,
        worker_factory=worker_factory,
    )


__all__ = [
    "WorkerPoolController",
    "WorkerPoolStats",
    "create_worker_controller",
    "default_worker_factory",
]
