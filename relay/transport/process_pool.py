"""Process transport — one worker process and one duplex pipe per worker.

The fan-in wait is ``multiprocessing.connection.wait`` over every live pipe
end plus every process sentinel: it blocks until some worker has something
to say or has died, with no polling. A dead process shows up either as EOF
on its pipe or as a ready sentinel, and yields exactly one DISCONNECTED event.
"""

import logging
import multiprocessing as mp
import time
from collections import deque
from multiprocessing import connection as mp_connection
from typing import Optional

from relay.errors import ChannelError
from relay.protocol.events import Event, EventType
from relay.protocol.messages import Assignment, Report
from relay.transport.base import WorkerChannel
from relay.worker.agent import WorkFunction, worker_main

logger = logging.getLogger(__name__)


class ProcessChannel(WorkerChannel):
    """Runs ``pool_size`` WorkerAgent processes and multiplexes their reports."""

    def __init__(
        self,
        work_fn: WorkFunction,
        pool_size: int,
        start_method: Optional[str] = None,
        join_timeout: float = 5.0,
    ):
        """
        Args:
            work_fn: Picklable callable run by each worker for every task ID.
            pool_size: Number of worker processes to start.
            start_method: multiprocessing start method; None uses the platform default.
            join_timeout: Seconds to wait for a worker to exit before terminating it.
        """
        if pool_size < 1:
            raise ValueError(f"pool_size must be positive, got {pool_size}")
        self.work_fn = work_fn
        self.pool_size = pool_size
        self.join_timeout = join_timeout
        self._ctx = mp.get_context(start_method)

        self._handles: list[str] = []
        self._conns: dict[str, mp_connection.Connection] = {}
        self._procs: dict[str, mp.process.BaseProcess] = {}
        self._stopped: set[str] = set()
        self._lost: set[str] = set()
        self._ready: deque[Event] = deque()
        self._sequence = 0
        self._rotation = 0
        self._opened = False
        self._closed = False

    def open(self) -> list[str]:
        if self._opened:
            raise ChannelError("process channel already opened")
        self._opened = True
        logger.info("Starting %d worker processes", self.pool_size)

        for index in range(1, self.pool_size + 1):
            handle = f"worker-{index:03d}"
            parent_conn, child_conn = self._ctx.Pipe(duplex=True)
            process = self._ctx.Process(
                target=worker_main,
                args=(handle, child_conn, self.work_fn),
                name=handle,
                daemon=True,
            )
            process.start()
            child_conn.close()

            self._handles.append(handle)
            self._conns[handle] = parent_conn
            self._procs[handle] = process

        return list(self._handles)

    def send(self, worker: str, message: Assignment) -> None:
        if worker not in self._conns:
            raise ChannelError(f"unknown worker {worker}")
        if worker in self._lost:
            raise ChannelError(f"{worker} is disconnected")
        try:
            self._conns[worker].send(message)
        except (BrokenPipeError, EOFError, OSError) as exc:
            self._lose(worker, f"send failed: {exc}")
            raise ChannelError(f"cannot deliver to {worker}: {exc}") from exc
        if message.is_stop:
            self._stopped.add(worker)

    def receive(self, timeout: Optional[float] = None) -> Optional[Event]:
        deadline = None if timeout is None else time.monotonic() + timeout

        while not self._ready:
            sources = self._wait_sources()
            if not sources:
                raise ChannelError("no connected workers to wait on")
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            ready = mp_connection.wait(list(sources), timeout=remaining)
            if not ready:
                return None
            self._collect(ready, sources)

        return self._ready.popleft()

    def terminate(self, worker: str) -> None:
        process = self._procs.get(worker)
        if process is None:
            return
        self._lost.add(worker)
        self._stopped.add(worker)
        if process.is_alive():
            logger.warning("Terminating %s (pid %s)", worker, process.pid)
            process.terminate()
        process.join(self.join_timeout)
        self._conns[worker].close()

    def close(self) -> None:
        if self._closed or not self._opened:
            self._closed = True
            return
        self._closed = True

        for handle in self._handles:
            if handle not in self._stopped and handle not in self._lost:
                try:
                    self.send(handle, Assignment.stop())
                except ChannelError as exc:
                    logger.debug("Stop not delivered to %s: %s", handle, exc)

        for handle in self._handles:
            process = self._procs[handle]
            process.join(self.join_timeout)
            if process.is_alive():
                logger.warning("%s did not exit after stop; terminating", handle)
                process.terminate()
                process.join(self.join_timeout)
            self._conns[handle].close()

        logger.info("Worker pool shut down")

    # ── Fan-in ────────────────────────────────────────────────────────

    def _wait_sources(self) -> dict[object, str]:
        """Pipe ends and sentinels of workers that may still report, rotated for fairness."""
        live = [h for h in self._handles if h not in self._lost and h not in self._stopped]
        if not live:
            return {}
        shift = self._rotation % len(live)
        self._rotation += 1

        sources: dict[object, str] = {}
        for handle in live[shift:] + live[:shift]:
            sources[self._conns[handle]] = handle
            sources[self._procs[handle].sentinel] = handle
        return sources

    def _collect(self, ready: list, sources: dict[object, str]) -> None:
        order = list(sources.values())
        touched = sorted({sources[obj] for obj in ready}, key=order.index)
        # Sentinels are plain ints; a ready one means the process has exited.
        exited = {sources[obj] for obj in ready if isinstance(obj, int)}

        for handle in touched:
            hung_up = self._drain(handle)
            if hung_up or handle in exited:
                exitcode = self._procs[handle].exitcode
                reason = "connection closed" if exitcode is None else f"process exited with code {exitcode}"
                self._lose(handle, reason)

    def _drain(self, handle: str) -> bool:
        """Queue every pending report from one worker. True if its pipe hit EOF."""
        conn = self._conns[handle]
        while True:
            try:
                if not conn.poll():
                    return False
                message = conn.recv()
            except (EOFError, OSError):
                return True

            if not isinstance(message, Report):
                logger.error("%s sent %r; treating it as lost", handle, type(message).__name__)
                self.terminate(handle)
                self._push(Event(self._next_sequence(), EventType.DISCONNECTED, handle,
                                 reason="protocol violation"))
                return False
            self._push(Event.from_report(self._next_sequence(), handle, message))

    def _lose(self, handle: str, reason: str) -> None:
        if handle in self._lost:
            return
        self._lost.add(handle)
        self._conns[handle].close()
        if handle in self._stopped:
            return
        logger.warning("%s disconnected: %s", handle, reason)
        self._push(Event(self._next_sequence(), EventType.DISCONNECTED, handle, reason=reason))

    def _push(self, event: Event) -> None:
        self._ready.append(event)

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence
