"""Liveness monitor — per-task timeout for wedged workers.

Without it a worker that hangs mid-task never reports, and its task stays
in flight until the transport notices a disconnect. With ``task_timeout``
set, the scheduler bounds every fan-in wait by the nearest deadline and
treats an expired holder as lost.
"""

from dataclasses import dataclass
from typing import Optional

from relay.models.worker import WorkerState


@dataclass
class OverdueWorker:
    """A busy worker that has held its task past the timeout."""
    worker: str
    task_id: int
    held_for: float


class LivenessMonitor:
    """Computes wait bounds and overdue holders from the scheduler's worker states."""

    def __init__(self, task_timeout: Optional[float] = None):
        """
        Args:
            task_timeout: Seconds a worker may hold one task. None disables
                          the monitor: waits are unbounded and nothing expires.
        """
        self.task_timeout = task_timeout
        self.expired_history: list[OverdueWorker] = []

    @property
    def enabled(self) -> bool:
        return self.task_timeout is not None

    def next_wait(self, workers: dict[str, WorkerState], now: float) -> Optional[float]:
        """Seconds until the earliest deadline among busy workers, or None for no bound."""
        if not self.enabled:
            return None
        deadlines = [
            w.assigned_at + self.task_timeout
            for w in workers.values()
            if w.is_busy and w.assigned_at is not None
        ]
        if not deadlines:
            return None
        return max(0.0, min(deadlines) - now)

    def overdue(self, workers: dict[str, WorkerState], now: float) -> list[OverdueWorker]:
        """Busy workers whose deadline has passed, oldest assignment first."""
        if not self.enabled:
            return []
        expired: list[OverdueWorker] = []
        for w in workers.values():
            if not w.is_busy or w.assigned_at is None or w.task_id is None:
                continue
            held_for = now - w.assigned_at
            if held_for >= self.task_timeout:
                expired.append(OverdueWorker(worker=w.handle, task_id=w.task_id, held_for=held_for))
        expired.sort(key=lambda o: -o.held_for)
        self.expired_history.extend(expired)
        return expired
