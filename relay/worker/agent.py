"""Worker Agent — runs one task at a time for the scheduler until told to stop."""

import logging
import pickle
import signal
from typing import Any, Callable, Protocol

from relay.errors import ProtocolError
from relay.protocol.messages import Assignment, Report

logger = logging.getLogger(__name__)

WorkFunction = Callable[[int], Any]


class Endpoint(Protocol):
    """The worker's end of a channel (a multiprocessing Connection fits)."""

    def recv(self) -> Any: ...

    def send(self, obj: Any) -> None: ...


class WorkerAgent:
    """Stateless receive → compute → report loop.

    The work function must be a pure function of the task ID (plus fixed run
    parameters) so a re-dispatch after a crash reproduces the same result.
    """

    def __init__(self, handle: str, work_fn: WorkFunction, endpoint: Endpoint):
        self.handle = handle
        self.work_fn = work_fn
        self.endpoint = endpoint

    def run(self) -> int:
        """Serve assignments until STOP or the scheduler hangs up. Returns tasks processed."""
        processed = 0
        while True:
            try:
                message = self.endpoint.recv()
            except EOFError:
                logger.info("[%s] scheduler closed the channel", self.handle)
                break

            if not isinstance(message, Assignment):
                raise ProtocolError(f"{self.handle} received {type(message).__name__}, not an Assignment")
            if message.is_stop:
                logger.debug("[%s] stop received after %d tasks", self.handle, processed)
                break

            self._send(self.execute(message.task_id))
            processed += 1

        return processed

    def execute(self, task_id: int) -> Report:
        """Run the work function for one task, turning any exception into a FAILED report."""
        try:
            result = self.work_fn(task_id)
        except Exception as exc:
            logger.warning("[%s] task %d failed: %s", self.handle, task_id, exc)
            return Report.failed(task_id, f"{type(exc).__name__}: {exc}")
        return Report.done(task_id, result)

    def _send(self, report: Report) -> None:
        try:
            self.endpoint.send(report)
        except (pickle.PicklingError, TypeError, AttributeError) as exc:
            if not report.succeeded:
                raise
            self.endpoint.send(Report.failed(report.task_id, f"result not serializable: {exc}"))


def worker_main(handle: str, conn, work_fn: WorkFunction) -> None:
    """Process entry point for one worker."""
    # Let the coordinator handle Ctrl+C; workers exit via STOP or hang-up.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        WorkerAgent(handle, work_fn, conn).run()
    finally:
        conn.close()
