"""Scheduler — the dispatch loop that hands out tasks and records completions.

State machine per run:

    Init ──(nothing outstanding)──────────────────────────────▶ Done
      │
      ▼
    Dispatching ──▶ Awaiting ◀──▶ Completed | Failed | Lost | Timed out
                        │
                        ├──(no workers, nothing outstanding)──▶ Done
                        ├──(no workers, work outstanding)─────▶ Stalled
                        └──(only quarantined tasks left)──────▶ Failed

The loop is single-threaded: each event leads to one decision (assign,
park, stop or retire) before the next event is read, so two assignments
never race and no task is ever held by two workers.
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Optional

from relay.errors import ChannelError, ProgressStoreError
from relay.metrics.collector import MetricsCollector, RunReport, RunStatus
from relay.models.task import RunConfig
from relay.models.worker import WorkerState
from relay.protocol.events import Event, EventType
from relay.protocol.messages import Assignment
from relay.scheduler.liveness import LivenessMonitor
from relay.scheduler.pool import OutstandingPool
from relay.store.base import ProgressStore
from relay.transport.base import WorkerChannel

logger = logging.getLogger(__name__)

ResultCallback = Callable[[int, Any], None]


class Scheduler:
    """Sole coordinator of a run and sole writer of its Progress Store."""

    def __init__(
        self,
        config: RunConfig,
        store: ProgressStore,
        channel: WorkerChannel,
        on_result: Optional[ResultCallback] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.store = store
        self.channel = channel
        self.on_result = on_result
        self.metrics = metrics or MetricsCollector()
        self.clock = clock

        self.liveness = LivenessMonitor(config.task_timeout)
        self.pool: Optional[OutstandingPool] = None
        self.worker_states: dict[str, WorkerState] = {}
        self.active_workers = 0
        self.event_log: list[Event] = []

        self._parked: deque[str] = deque()
        self._store_failures_in_a_row = 0

    def run(self) -> RunReport:
        """Init → Dispatching → Awaiting … → Done | Stalled | Failed."""
        started = self.clock()
        space = self.config.task_space

        outstanding = self.store.load_outstanding(space)
        resumed = space.task_count - len(outstanding)
        logger.info(
            "Progress store %s: %d of %d tasks already complete, %d outstanding",
            self.store.name, resumed, space.task_count, len(outstanding),
        )
        self.pool = OutstandingPool(outstanding, self.config.max_task_attempts)

        if not outstanding:
            logger.info("Nothing outstanding; run is already complete")
            return self._finish(RunStatus.DONE, [], resumed, started)

        handles: list[str] = []
        try:
            handles = self.channel.open()
            self._dispatch_initial(handles)
            while self.active_workers > 0:
                self._await_next()
        finally:
            self.channel.close()

        return self._finish(self._final_status(), handles, resumed, started)

    # ── Dispatching ───────────────────────────────────────────────────

    def _dispatch_initial(self, handles: list[str]) -> None:
        """One task per worker, lowest IDs first; workers beyond the supply are stopped."""
        for handle in handles:
            self.worker_states[handle] = WorkerState(handle=handle)
            self.active_workers += 1

        for handle in handles:
            state = self.worker_states[handle]
            task_id = self.pool.take()
            if task_id is None:
                self._stop(state)
            else:
                self._assign(state, task_id)

    def _assign(self, state: WorkerState, task_id: int) -> bool:
        try:
            self.channel.send(state.handle, Assignment.task(task_id))
        except ChannelError as exc:
            logger.warning("Could not send task %d to %s: %s", task_id, state.handle, exc)
            self.pool.give_back(task_id, charge=False)
            self.metrics.record_disconnect()
            self._retire(state)
            return False

        state.assign(task_id, self.clock())
        self.metrics.record_dispatch(state.handle)
        logger.info("Assigned task %d to %s", task_id, state.handle)
        return True

    def _offer(self, state: WorkerState) -> None:
        """Give an idle worker the next task, park it, or stop it."""
        task_id = self.pool.take()
        if task_id is not None:
            self._assign(state, task_id)
        elif self.pool.in_flight:
            # Tasks still held elsewhere may come back; keep this worker around.
            self._parked.append(state.handle)
            logger.debug("%s parked; %d tasks still in flight", state.handle, len(self.pool.in_flight))
        else:
            self._stop(state)

    def _stop(self, state: WorkerState) -> None:
        try:
            self.channel.send(state.handle, Assignment.stop())
        except ChannelError as exc:
            logger.debug("Stop not delivered to %s: %s", state.handle, exc)
        self._retire(state)
        logger.info("Stopped %s", state.handle)

    def _retire(self, state: WorkerState) -> None:
        if state.is_retired:
            return
        state.retire()
        self.active_workers -= 1
        if state.handle in self._parked:
            self._parked.remove(state.handle)

    def _rebalance(self) -> None:
        """Wake parked workers for returned tasks; stop them once nothing is in flight."""
        while self._parked and self.pool.has_unassigned:
            state = self.worker_states[self._parked.popleft()]
            self._assign(state, self.pool.take())

        if self._parked and not self.pool.has_unassigned and not self.pool.in_flight:
            for handle in list(self._parked):
                self._stop(self.worker_states[handle])

    # ── Awaiting ──────────────────────────────────────────────────────

    def _await_next(self) -> None:
        """Block on the fan-in for one event (bounded by the nearest task deadline)."""
        wait = self.liveness.next_wait(self.worker_states, self.clock())
        event = self.channel.receive(timeout=wait)
        if event is not None:
            self.event_log.append(event)
            self._handle(event)
        self._expire_overdue()
        self._rebalance()

    def _handle(self, event: Event) -> None:
        state = self.worker_states.get(event.worker)
        if state is None or state.is_retired:
            logger.debug("Ignoring %r from retired or unknown worker", event)
            return

        match event.event_type:
            case EventType.COMPLETED:
                self._handle_completed(state, event)
            case EventType.FAILED:
                self._handle_failed(state, event)
            case EventType.DISCONNECTED:
                self.metrics.record_disconnect()
                self._handle_lost(state, event.reason or "disconnected")
            case EventType.TIMED_OUT:
                self.metrics.record_timeout()
                self.channel.terminate(state.handle)
                self._handle_lost(state, event.reason or "timed out")

    def _handle_completed(self, state: WorkerState, event: Event) -> None:
        if not self._holds(state, event):
            return
        task_id = state.release()

        try:
            recorded = self.store.mark_complete(task_id)
        except ProgressStoreError as exc:
            self._store_failures_in_a_row += 1
            self.metrics.record_store_failure()
            logger.error(
                "Completion of task %d by %s could not be recorded (%s); task stays outstanding",
                task_id, state.handle, exc,
            )
            self.pool.give_back(task_id, charge=False)
            if self._store_failures_in_a_row >= self.config.max_store_failures:
                raise ProgressStoreError(
                    f"progress store failed {self._store_failures_in_a_row} writes in a row; aborting"
                ) from exc
        else:
            self._store_failures_in_a_row = 0
            self.pool.complete(task_id)
            state.tasks_completed += 1
            self.metrics.record_completion(state.handle, task_id, recorded)
            logger.info("Worker %s finished task %d", state.handle, task_id)
            if self.on_result is not None:
                self.on_result(task_id, event.result)

        self._offer(state)

    def _handle_failed(self, state: WorkerState, event: Event) -> None:
        if not self._holds(state, event):
            return
        task_id = state.release()
        state.tasks_failed += 1
        self.metrics.record_failure()
        logger.warning("Worker %s failed task %d: %s", state.handle, task_id, event.reason)
        self._return_task(task_id)

        if self.config.retire_on_failure:
            self._stop(state)
        else:
            self._offer(state)

    def _handle_lost(self, state: WorkerState, reason: str) -> None:
        task_id = state.task_id
        self._retire(state)
        if task_id is None:
            logger.warning("Idle worker %s lost: %s", state.handle, reason)
            return
        logger.warning("Worker %s lost while holding task %d: %s", state.handle, task_id, reason)
        self._return_task(task_id)

    def _expire_overdue(self) -> None:
        for overdue in self.liveness.overdue(self.worker_states, self.clock()):
            logger.warning(
                "Worker %s held task %d for %.1fs (limit %.1fs); retiring it",
                overdue.worker, overdue.task_id, overdue.held_for, self.config.task_timeout,
            )
            event = Event(
                len(self.event_log) + 1, EventType.TIMED_OUT, overdue.worker,
                task_id=overdue.task_id, reason=f"no report after {overdue.held_for:.1f}s",
            )
            self.event_log.append(event)
            self._handle(event)

    # ── Utilities ─────────────────────────────────────────────────────

    def _holds(self, state: WorkerState, event: Event) -> bool:
        if state.task_id != event.task_id:
            logger.warning(
                "%s reported task %s but holds %s; ignoring report",
                state.handle, event.task_id, state.task_id,
            )
            return False
        return True

    def _return_task(self, task_id: int) -> None:
        if not self.pool.give_back(task_id):
            logger.error("Task %d exhausted %s attempts; quarantined", task_id, self.config.max_task_attempts)

    def _final_status(self) -> RunStatus:
        if len(self.pool) == 0 and not self.pool.quarantined:
            return RunStatus.DONE
        if len(self.pool) == 0:
            return RunStatus.FAILED
        logger.error("stalled: %d tasks outstanding, 0 workers", len(self.pool.remaining))
        return RunStatus.STALLED

    def _finish(self, status: RunStatus, handles: list[str], resumed: int, started: float) -> RunReport:
        report = self.metrics.finalize(
            status=status,
            task_count=self.config.task_count,
            workers=handles,
            resumed_complete=resumed,
            outstanding=self.pool.remaining - self.pool.quarantined,
            quarantined=set(self.pool.quarantined),
            elapsed=self.clock() - started,
        )
        if status == RunStatus.DONE:
            logger.info("All %d tasks complete (%d dispatched this run)", report.task_count, report.dispatches)
        return report
