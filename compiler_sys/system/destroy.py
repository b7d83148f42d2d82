"""The registry of cleanup callbacks run when a CompilerSystem is destroyed."""

from __future__ import annotations

import asyncio
import inspect
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from compiler_sys.logging import get_logger

LOGGER = get_logger("DestroyRegistry")

DestroyCallback = Callable[[], Union[None, Awaitable[Any]]]
"""A zero-argument cleanup callback. It may return an awaitable to be awaited."""


class DestroyRegistry:
    """Owned, thread-safe set of cleanup callbacks.

    Every component that holds a resource (watchers, worker pools, temp directories)
    registers a callback here. ``drain_all`` runs them all, isolating failures, and then
    forgets them.
    """

    def __init__(self) -> None:
        # dict keeps insertion order, values are unused
        self._callbacks: Dict[DestroyCallback, None] = {}
        self._lock = threading.Lock()

    def add(self, callback: DestroyCallback) -> None:
        with self._lock:
            self._callbacks[callback] = None

    def remove(self, callback: DestroyCallback) -> None:
        with self._lock:
            self._callbacks.pop(callback, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def __contains__(self, callback: object) -> bool:
        with self._lock:
            return callback in self._callbacks

    async def drain_all(self) -> List[BaseException]:
        """Run every registered callback and await the work they return.

        Callbacks are invoked in registration order; the awaitables they return are awaited
        concurrently. A failing callback does not prevent the others from running.

        Returns
        -------
        List[BaseException]
            The failures that were logged and discarded.
        """
        with self._lock:
            callbacks = list(self._callbacks)

        failures: List[BaseException] = []
        waits: List[Awaitable[Any]] = []
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    waits.append(result)
            except Exception as e:
                LOGGER.error(f"destroy callback {callback!r} failed: {e}")
                failures.append(e)

        if waits:
            outcomes = await asyncio.gather(*waits, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    LOGGER.error(f"destroy callback failed: {outcome}")
                    failures.append(outcome)

        with self._lock:
            for callback in callbacks:
                self._callbacks.pop(callback, None)
        return failures

    def drain_all_sync(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> List[BaseException]:
        """Run ``drain_all`` to completion from synchronous code."""
        if loop is not None and not loop.is_closed() and not loop.is_running():
            return loop.run_until_complete(self.drain_all())
        return asyncio.run(self.drain_all())
