"""Inline transport — deterministic in-process workers on a virtual clock.

Each TASK assignment runs the work function immediately and schedules the
worker's report on a heap at ``now + duration``; receive() pops reports in
(time, sequence) order and advances the virtual clock. Faults from a
FaultPlan turn a dispatch into a crash, a FAILED report or a hang.
Used by tests and --dry-run; nothing here touches processes or pipes.
"""

import heapq
import logging
from collections import Counter
from typing import Callable, Optional

from relay.errors import ChannelError
from relay.protocol.events import Event, EventType
from relay.protocol.messages import Assignment, MessageKind
from relay.transport.base import WorkerChannel
from relay.transport.failure_injector import FaultKind, FaultPlan
from relay.worker.agent import WorkerAgent, WorkFunction

logger = logging.getLogger(__name__)


class InlineChannel(WorkerChannel):
    """A simulated worker pool that records every message it carries."""

    def __init__(
        self,
        work_fn: WorkFunction,
        pool_size: int,
        faults: Optional[FaultPlan] = None,
        duration_fn: Optional[Callable[[int], float]] = None,
    ):
        """
        Args:
            work_fn: Called in-process for every dispatched task ID.
            pool_size: Number of simulated workers.
            faults: Which (task, attempt) dispatches misbehave.
            duration_fn: Virtual seconds a task takes; default 1.0 for all.
        """
        if pool_size < 1:
            raise ValueError(f"pool_size must be positive, got {pool_size}")
        self.work_fn = work_fn
        self.pool_size = pool_size
        self.faults = faults or FaultPlan()
        self.duration_fn = duration_fn or (lambda task_id: 1.0)

        self.now = 0.0
        self.handles: list[str] = []
        self.sent: list[tuple[str, Assignment]] = []
        self.attempts: Counter[int] = Counter()
        self.violations: list[tuple[int, str, str]] = []
        self.terminated: list[str] = []

        self._agents: dict[str, WorkerAgent] = {}
        self._holding: dict[str, int] = {}
        self._stopped: set[str] = set()
        self._lost: set[str] = set()
        self._pending: list[tuple[float, int, Event]] = []
        self._sequence = 0
        self._opened = False

    def clock(self) -> float:
        """Virtual time; pass as the scheduler's clock."""
        return self.now

    # ── WorkerChannel ─────────────────────────────────────────────────

    def open(self) -> list[str]:
        if self._opened:
            raise ChannelError("inline channel already opened")
        self._opened = True
        self.handles = [f"worker-{i:03d}" for i in range(1, self.pool_size + 1)]
        self._agents = {h: WorkerAgent(h, self.work_fn, endpoint=None) for h in self.handles}
        return list(self.handles)

    def send(self, worker: str, message: Assignment) -> None:
        if worker not in self._agents:
            raise ChannelError(f"unknown worker {worker}")
        if worker in self._lost or worker in self._stopped:
            raise ChannelError(f"{worker} is not connected")
        self.sent.append((worker, message))

        if message.kind == MessageKind.STOP:
            self._stopped.add(worker)
            return
        self._dispatch(worker, message.task_id)

    def receive(self, timeout: Optional[float] = None) -> Optional[Event]:
        if self._pending:
            due, _, event = self._pending[0]
            if timeout is None or due <= self.now + timeout:
                heapq.heappop(self._pending)
                self.now = max(self.now, due)
                self._settle(event)
                return event
        if timeout is None:
            # A real transport would block forever here.
            raise ChannelError("no worker will ever report: every busy worker is hung")
        self.now += timeout
        return None

    def terminate(self, worker: str) -> None:
        self._lost.add(worker)
        self._holding.pop(worker, None)
        self._pending = [p for p in self._pending if p[2].worker != worker]
        heapq.heapify(self._pending)
        self.terminated.append(worker)

    def close(self) -> None:
        for worker in self.handles:
            if worker not in self._stopped and worker not in self._lost:
                self.sent.append((worker, Assignment.stop()))
                self._stopped.add(worker)

    # ── Inspection helpers ────────────────────────────────────────────

    def tasks_sent(self) -> list[tuple[str, int]]:
        return [(w, m.task_id) for w, m in self.sent if m.kind == MessageKind.TASK]

    def stops_sent(self) -> list[str]:
        return [w for w, m in self.sent if m.kind == MessageKind.STOP]

    # ── Simulation ────────────────────────────────────────────────────

    def _dispatch(self, worker: str, task_id: int) -> None:
        for other, held in self._holding.items():
            if held == task_id and other != worker:
                self.violations.append((task_id, other, worker))
        self._holding[worker] = task_id
        self.attempts[task_id] += 1

        fault = self.faults.fault_for(task_id, self.attempts[task_id])
        due = self.now + self.duration_fn(task_id)

        if fault == FaultKind.HANG:
            logger.debug("inline: %s hangs on task %d", worker, task_id)
            return
        if fault == FaultKind.CRASH:
            event = Event(self._next_sequence(), EventType.DISCONNECTED, worker,
                          reason="injected crash")
        elif fault == FaultKind.FAIL:
            event = Event(self._next_sequence(), EventType.FAILED, worker,
                          task_id=task_id, reason="injected failure")
        else:
            report = self._agents[worker].execute(task_id)
            event = Event.from_report(self._next_sequence(), worker, report)
        heapq.heappush(self._pending, (due, event.sequence, event))

    def _settle(self, event: Event) -> None:
        self._holding.pop(event.worker, None)
        if event.event_type == EventType.DISCONNECTED:
            self._lost.add(event.worker)

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence
