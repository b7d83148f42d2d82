import asyncio
import json
import sys

import pytest

from compiler_sys import (
    DestroyRegistry,
    HostKind,
    WorkerCancelledError,
    WorkerCrashedError,
    WorkerTaskError,
)
from compiler_sys.data import TaskSuccess
from compiler_sys.worker import (
    ProcessWorker,
    ThreadWorker,
    UnknownWorkerFunctionError,
    Worker,
    WorkerContext,
    WorkerPoolController,
    create_worker_controller,
    default_worker_factory,
)

import worker_tasks


def make_pool(max_workers=2, host_kind=HostKind.BACKGROUND_THREAD, registry=None) -> WorkerPoolController:
    return create_worker_controller(
        max_workers, WorkerContext(worker_tasks.BINDINGS), host_kind=host_kind, destroy_registry=registry
    )


def test_ceiling_must_be_positive():
    with pytest.raises(ValueError):
        make_pool(0)
    with pytest.raises(ValueError):
        make_pool(-1)


def test_backend_follows_host_kind():
    def build(kind):
        return default_worker_factory(kind)(1, WorkerContext(), lambda *a: None, lambda *a: None)

    assert isinstance(build(HostKind.NATIVE), ProcessWorker)
    assert isinstance(build(HostKind.ISOLATE), ProcessWorker)
    assert isinstance(build(HostKind.BACKGROUND_THREAD), ThreadWorker)
    assert isinstance(build(HostKind.FETCH), ThreadWorker)


def test_dispatch_rejects_programmer_errors_synchronously():
    pool = make_pool()

    async def run():
        with pytest.raises(UnknownWorkerFunctionError):
            pool.dispatch("eval", "1 + 1")
        with pytest.raises(TypeError):
            pool.dispatch("transpile", object(), 1)
        assert pool.stats.active_workers == 0
        await pool.destroy()

    asyncio.run(run())


def test_results_and_task_errors():
    pool = make_pool()

    async def run():
        assert await pool.dispatch("transpile", 2, 3) == 5
        assert await pool.dispatch("transpile_to_es5", "es5") == "ES5"
        with pytest.raises(WorkerTaskError) as info:
            await pool.dispatch("optimize_css", "broken")
        assert info.value.function_name == "optimize_css"
        assert info.value.remote_message == "ValueError: broken"
        assert "Traceback" in info.value.remote_stack
        stats = pool.stats
        await pool.destroy()
        return stats

    stats = asyncio.run(run())
    assert stats.completed_tasks == 3
    assert stats.crashed_workers == 0
    assert stats.active_workers == 1


def test_never_exceeds_ceiling_and_queues_fifo():
    pool = make_pool(max_workers=2)
    peak_observed = []

    async def run():
        futures = [pool.dispatch("transform_css_to_esm", 0.05, i) for i in range(6)]
        peak_observed.append(pool.stats.active_workers)
        assert pool.stats.queued_tasks == 4
        results = await asyncio.gather(*futures)
        stats = pool.stats
        await pool.destroy()
        return results, stats

    results, stats = asyncio.run(run())
    assert results == list(range(6))
    assert peak_observed == [2]
    assert stats.peak_active_workers == 2
    assert stats.queued_tasks == 0
    assert stats.idle_workers == 2
    assert stats.completed_tasks == 6


def test_crash_rejects_task_and_pool_recovers():
    pool = make_pool(max_workers=1)

    async def run():
        assert await pool.dispatch("transpile", 1, 1) == 2
        assert pool.stats.active_workers == 1
        with pytest.raises(WorkerCrashedError):
            await pool.dispatch("prepare_module")
        assert pool.stats.active_workers == 0
        assert pool.stats.crashed_workers == 1
        assert await pool.dispatch("transpile", 2, 2) == 4
        assert pool.stats.active_workers == 1
        await pool.destroy()

    asyncio.run(run())


def test_crash_spawns_replacement_for_queued_tasks():
    pool = make_pool(max_workers=1)

    async def run():
        crashing = pool.dispatch("prepare_module")
        queued = pool.dispatch("transpile", 20, 22)
        with pytest.raises(WorkerCrashedError):
            await crashing
        assert await queued == 42
        await pool.destroy()

    asyncio.run(run())


def test_destroy_cancels_running_and_queued_tasks():
    registry = DestroyRegistry()
    pool = make_pool(max_workers=1, registry=registry)
    assert pool.destroy in registry

    async def run():
        futures = [pool.dispatch("transform_css_to_esm", 0.2, i) for i in range(3)]
        await asyncio.sleep(0.05)
        await registry.drain_all()
        outcomes = await asyncio.gather(*futures, return_exceptions=True)
        late = pool.dispatch("transpile", 1, 2)
        with pytest.raises(WorkerCancelledError):
            await late
        await pool.destroy()
        return outcomes

    outcomes = asyncio.run(run())
    assert all(isinstance(o, WorkerCancelledError) for o in outcomes)
    assert pool.destroyed
    assert pool.stats.active_workers == 0
    assert pool.destroy not in registry


@pytest.mark.skipif(sys.platform == "emscripten", reason="no subprocesses")
def test_process_workers_are_reused_and_bounded():
    pool = make_pool(max_workers=2, host_kind=HostKind.NATIVE)

    async def run():
        pids = await asyncio.gather(*(pool.dispatch("prerender_worker") for _ in range(6)))
        assert await pool.dispatch("transpile", 40, 2) == 42
        stats = pool.stats
        await pool.destroy()
        return pids, stats

    pids, stats = asyncio.run(run())
    assert 1 <= len(set(pids)) <= 2
    assert stats.peak_active_workers <= 2


@pytest.mark.skipif(sys.platform == "emscripten", reason="no subprocesses")
def test_process_worker_crash_and_task_error():
    pool = make_pool(max_workers=1, host_kind=HostKind.NATIVE)

    async def run():
        with pytest.raises(WorkerTaskError):
            await pool.dispatch("optimize_css", "x")
        with pytest.raises(WorkerCrashedError):
            await pool.dispatch("prepare_module")
        assert pool.stats.active_workers == 0
        assert await pool.dispatch("transpile_to_es5", "ok") == "OK"
        await pool.destroy()

    asyncio.run(run())


class EchoWorker(Worker):
    """In-loop worker that answers every task with its first argument."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.alive = False
        self.frames = []

    def start(self) -> None:
        self.alive = True

    def send(self, frame: str) -> None:
        self.frames.append(frame)
        task = json.loads(frame)["task"]
        self._on_message(self, TaskSuccess(task_id=task["task_id"], value=task["args"][0]).model_dump())

    def terminate(self, timeout: float = 5.0) -> None:
        self._terminating = True
        self.alive = False

    @property
    def is_alive(self) -> bool:
        return self.alive


def test_dead_idle_worker_is_not_handed_a_task():
    spawned = []

    def factory(worker_id, context, on_message, on_exit):
        worker = EchoWorker(worker_id, context, on_message, on_exit)
        spawned.append(worker)
        return worker

    pool = WorkerPoolController(2, WorkerContext(worker_tasks.BINDINGS), worker_factory=factory)

    async def run():
        assert await pool.dispatch("transpile", "first") == "first"
        # the idle worker dies before its exit is reported
        spawned[0].alive = False
        assert await pool.dispatch("transpile", "second") == "second"
        await pool.destroy()

    asyncio.run(run())
    assert len(spawned) == 2
    assert len(spawned[0].frames) == 1
    assert len(spawned[1].frames) == 1


def test_destroy_sync_rejects_later_dispatches():
    registry = DestroyRegistry()
    pool = make_pool(registry=registry)
    pool.destroy_sync()
    pool.destroy_sync()
    assert pool.destroyed
    assert pool.destroy not in registry

    async def run():
        with pytest.raises(WorkerCancelledError):
            await pool.dispatch("transpile", "x")

    asyncio.run(run())
