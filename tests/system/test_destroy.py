import asyncio

from compiler_sys.system import DestroyRegistry


def test_add_and_remove_are_idempotent():
    registry = DestroyRegistry()

    def cb():
        pass

    registry.add(cb)
    registry.add(cb)
    assert len(registry) == 1
    registry.remove(cb)
    registry.remove(cb)
    assert len(registry) == 0
    assert cb not in registry


def test_drain_all_runs_everything_despite_failures():
    registry = DestroyRegistry()
    calls = []

    def failing():
        calls.append("failing")
        raise RuntimeError("boom")

    async def pending():
        await asyncio.sleep(0)
        calls.append("pending")

    async def failing_pending():
        raise ValueError("late")

    registry.add(failing)
    registry.add(lambda: calls.append("sync"))
    registry.add(pending)
    registry.add(failing_pending)

    failures = asyncio.run(registry.drain_all())

    assert sorted(calls) == ["failing", "pending", "sync"]
    assert sorted(type(f).__name__ for f in failures) == ["RuntimeError", "ValueError"]
    assert len(registry) == 0


def test_drain_all_on_empty_registry():
    assert asyncio.run(DestroyRegistry().drain_all()) == []


def test_callbacks_added_during_drain_survive():
    registry = DestroyRegistry()
    late_calls = []

    def late():
        late_calls.append(True)

    registry.add(lambda: registry.add(late))
    asyncio.run(registry.drain_all())
    assert late in registry

    registry.drain_all_sync()
    assert late_calls == [True]
    assert len(registry) == 0
