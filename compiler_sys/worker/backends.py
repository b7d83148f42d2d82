"""Worker backends: a spawned subprocess or a background thread.

Both backends speak the same JSON frame protocol and report to the controller through
two callbacks, ``on_message(worker, response)`` and ``on_exit(worker, reason)``. The
callbacks are invoked from the backend's own thread; the controller is responsible for
handing them over to its event loop.
"""

from __future__ import annotations

import multiprocessing as mp
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from compiler_sys.env import get_compiler_sys_worker_start_method
from compiler_sys.logging import get_logger

from .context import WorkerContext
from .protocol import WorkerCommand, WorkerResponse, decode_frame, encode_frame, run_task

LOGGER = get_logger("Worker")

MessageCallback = Callable[["Worker", Dict[str, Any]], None]
ExitCallback = Callable[["Worker", str], None]


class Worker(ABC):
    """One execution context that runs at most one task at a time."""

    def __init__(
        self,
        worker_id: int,
        context: WorkerContext,
        on_message: MessageCallback,
        on_exit: ExitCallback,
    ) -> None:
        self.worker_id = worker_id
        self._context = context
        self._on_message = on_message
        self._on_exit = on_exit
        self._terminating = False

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def send(self, frame: str) -> None:
        """Send one encoded frame. Raises OSError if the worker is gone."""
        ...

    @abstractmethod
    def terminate(self, timeout: float = 5.0) -> None:
        """Ask the worker to stop, forcing it after ``timeout`` seconds. Blocking."""
        ...

    @property
    @abstractmethod
    def is_alive(self) -> bool: ...

    @property
    def terminating(self) -> bool:
        return self._terminating

    def __repr__(self) -> str:
        return f"{type(self).__name__}(worker_id={self.worker_id})"


def _process_worker_main(conn: Any, context_spec: Dict[str, Any]) -> None:
    """Entry point of a worker subprocess.

    Sends READY once the context is built, then answers task frames until SHUTDOWN or
    until the controller end of the pipe goes away.
    """
    context = WorkerContext.from_spec(context_spec)
    try:
        conn.send_bytes(encode_frame({"cmd": WorkerResponse.READY.value}).encode("utf-8"))
        while True:
            try:
                frame = decode_frame(conn.recv_bytes().decode("utf-8"))
            except EOFError:
                break
            cmd = frame.get("cmd")
            if cmd == WorkerCommand.SHUTDOWN.value:
                break
            if cmd == WorkerCommand.RUN_TASK.value:
                reply = {"cmd": WorkerResponse.RESULT.value, "response": run_task(context, frame.get("task"))}
            else:
                reply = {"cmd": WorkerResponse.ERROR.value, "error": f"Unknown command: {cmd}"}
            conn.send_bytes(encode_frame(reply).encode("utf-8"))
    finally:
        try:
            conn.close()
        except OSError:
            pass


class ProcessWorker(Worker):
    """Worker running in a spawned subprocess, connected by a duplex pipe.

    A listener thread in the controller process reads the pipe. End-of-file on the pipe
    means the subprocess is gone; if that happens outside ``terminate`` the worker counts
    as crashed.
    """

    def __init__(self, *args, start_method: Optional[str] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._start_method = start_method or get_compiler_sys_worker_start_method()
        self._proc: Optional[mp.process.BaseProcess] = None
        self._conn: Any = None
        self._listener: Optional[threading.Thread] = None
        self._send_lock = threading.Lock()

    def start(self) -> None:
        ctx = mp.get_context(self._start_method)
        parent_conn, child_conn = ctx.Pipe(duplex=True)
        proc = ctx.Process(
            target=_process_worker_main,
            args=(child_conn, self._context.to_spec()),
            daemon=True,
            name=f"compiler-sys-worker-{self.worker_id}",
        )
        proc.start()
        # The child owns its end now; closing ours lets recv() see EOF when it dies.
        child_conn.close()
        self._proc = proc
        self._conn = parent_conn
        self._listener = threading.Thread(
            target=self._listen, name=f"compiler-sys-listener-{self.worker_id}", daemon=True
        )
        self._listener.start()
        LOGGER.debug(f"Started worker process {proc.pid} for worker {self.worker_id}")

    def _listen(self) -> None:
        reason = "worker process exited"
        try:
            while True:
                frame = decode_frame(self._conn.recv_bytes().decode("utf-8"))
                cmd = frame.get("cmd")
                if cmd == WorkerResponse.READY.value:
                    continue
                if cmd == WorkerResponse.RESULT.value:
                    self._on_message(self, frame["response"])
                else:
                    LOGGER.warning(f"Worker {self.worker_id} reported: {frame.get('error')}")
        except (EOFError, OSError) as e:
            if self._proc is not None:
                self._proc.join(timeout=1)
                exitcode = self._proc.exitcode
                if exitcode is not None:
                    reason = f"worker process exited with code {exitcode}"
            LOGGER.debug(f"Worker {self.worker_id} pipe closed: {type(e).__name__}")
        self._on_exit(self, reason)

    def send(self, frame: str) -> None:
        with self._send_lock:
            self._conn.send_bytes(frame.encode("utf-8"))

    def terminate(self, timeout: float = 5.0) -> None:
        self._terminating = True
        if self._proc is None:
            return
        try:
            self.send(encode_frame({"cmd": WorkerCommand.SHUTDOWN.value}))
        except (OSError, ValueError):
            pass
        self._proc.join(timeout=timeout)
        if self._proc.is_alive():
            LOGGER.warning(f"Worker {self.worker_id} did not exit, terminating")
            self._proc.terminate()
            self._proc.join(timeout=2)
        if self._listener is not None and self._listener is not threading.current_thread():
            self._listener.join(timeout=timeout)
        try:
            self._conn.close()
        except OSError:
            pass

    @property
    def is_alive(self) -> bool:
        return self._proc is not None and self._proc.is_alive()


class ThreadWorker(Worker):
    """Worker running on a daemon thread of the current process.

    Frames still cross as JSON text, so the function never sees the caller's objects.
    An exception that escapes task handling (``SystemExit`` from the function, for
    example) ends the thread and counts as a crash.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._inbox: "queue.Queue[Optional[str]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"compiler-sys-worker-{self.worker_id}", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        reason = "worker thread exited"
        try:
            while True:
                raw = self._inbox.get()
                if raw is None:
                    break
                frame = decode_frame(raw)
                if frame.get("cmd") == WorkerCommand.SHUTDOWN.value:
                    break
                response = run_task(self._context, frame.get("task"))
                self._on_message(self, decode_frame(encode_frame(response)))
        except BaseException as e:
            reason = f"worker thread died: {type(e).__name__}: {e}"
            LOGGER.warning(f"Worker {self.worker_id} {reason}")
        finally:
            self._stopped.set()
            self._on_exit(self, reason)

    def send(self, frame: str) -> None:
        if self._stopped.is_set():
            raise BrokenPipeError(f"worker {self.worker_id} is not running")
        self._inbox.put(frame)

    def terminate(self, timeout: float = 5.0) -> None:
        self._terminating = True
        self._inbox.put(None)
        if self._thread is not None and self._thread is not threading.current_thread():
            # a thread stuck inside a task cannot be interrupted; it is a daemon
            self._thread.join(timeout=timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()
