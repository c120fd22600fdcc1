"""Process spawning for workers and the auto-fund loop.

Each child gets a control pipe (manager -> child, StopCommand) and a report
queue (child -> manager, TxComplete/TxFailed/WorkerStatus). The manager only
sees those messages plus the process exit code.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
import queue
import signal
from typing import Any, Callable, List, Optional, Protocol, Sequence

from generator.messages import StopCommand, WorkerReport

log = logging.getLogger("txgen.spawner")


class WorkerChannel:
    """Child-side end of the control pipe and report queue."""

    def __init__(self, control: Any, reports: Any) -> None:
        self._control = control
        self._reports = reports
        self._stop = False
        self.stop_reason: Optional[str] = None

    def request_stop(self, reason: str = "requested") -> None:
        if not self._stop:
            self._stop = True
            self.stop_reason = reason

    def stop_requested(self) -> bool:
        if self._stop:
            return True
        try:
            while self._control.poll():
                msg = self._control.recv()
                if isinstance(msg, StopCommand):
                    self.request_stop(msg.reason)
        except (EOFError, OSError):
            # Parent went away; nobody is left to report to.
            self.request_stop("control channel closed")
        return self._stop

    async def wait(self, seconds: float, *, slice_s: float = 0.25) -> bool:
        """Sleep up to ``seconds``, waking early on stop. True if stopped."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, float(seconds))
        while not self.stop_requested():
            left = deadline - loop.time()
            if left <= 0:
                return False
            await asyncio.sleep(min(slice_s, left))
        return True

    def install_signal_handlers(self) -> None:
        def _handle(signum: int, _frame: Any) -> None:
            self.request_stop(signal.Signals(signum).name)

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                signal.signal(sig, _handle)
            except (AttributeError, ValueError):
                pass

    def report(self, msg: WorkerReport) -> None:
        try:
            self._reports.put(msg)
        except (OSError, ValueError) as exc:
            log.warning("report dropped: %s", exc)


class ProcessHandle(Protocol):
    name: str

    def send(self, msg: StopCommand) -> None: ...

    def drain(self) -> List[WorkerReport]: ...

    @property
    def exitcode(self) -> Optional[int]: ...

    def is_alive(self) -> bool: ...

    def kill(self) -> None: ...

    def join(self, timeout: Optional[float] = None) -> None: ...


class ProcessSpawner(Protocol):
    def spawn(self, target: Callable[..., Any], args: Sequence[Any], name: str) -> ProcessHandle: ...


class MultiprocessingHandle:
    def __init__(self, process: Any, control: Any, reports: Any) -> None:
        self.process = process
        self.name = process.name
        self._control = control
        self._reports = reports

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    def send(self, msg: StopCommand) -> None:
        self._control.send(msg)

    def drain(self) -> List[WorkerReport]:
        out: List[WorkerReport] = []
        while True:
            try:
                out.append(self._reports.get_nowait())
            except queue.Empty:
                return out
            except (EOFError, OSError):
                return out

    @property
    def exitcode(self) -> Optional[int]:
        return self.process.exitcode

    def is_alive(self) -> bool:
        return self.process.is_alive()

    def kill(self) -> None:
        if self.process.is_alive():
            self.process.kill()

    def join(self, timeout: Optional[float] = None) -> None:
        self.process.join(timeout)
        if self.process.exitcode is not None:
            self._control.close()


class MultiprocessingSpawner:
    """Starts children with the ``spawn`` start method.

    ``target`` is called in the child as ``target(*args, channel)``.
    """

    def __init__(self, start_method: str = "spawn") -> None:
        self.ctx = multiprocessing.get_context(start_method)

    def spawn(self, target: Callable[..., Any], args: Sequence[Any], name: str) -> MultiprocessingHandle:
        parent_conn, child_conn = self.ctx.Pipe()
        reports = self.ctx.Queue()
        channel = WorkerChannel(child_conn, reports)
        proc = self.ctx.Process(target=target, args=(*args, channel), name=name, daemon=True)
        proc.start()
        child_conn.close()
        log.debug("spawned %s pid=%s", name, proc.pid)
        return MultiprocessingHandle(proc, parent_conn, reports)
