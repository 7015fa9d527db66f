"""Outstanding pool — which tasks still need a worker, lowest ID first."""

import heapq
from collections import Counter
from typing import Iterable, Optional

from relay.models.task import TaskID


class OutstandingPool:
    """Tracks outstanding tasks as unassigned (heap) or in flight (set).

    take() always yields the lowest-numbered unassigned task, so a task that
    comes back after a failure is the next one handed out.
    """

    def __init__(self, outstanding: Iterable[TaskID], max_attempts: Optional[int] = None):
        self._unassigned: list[TaskID] = sorted(set(outstanding))
        self._queued: set[TaskID] = set(self._unassigned)
        self._in_flight: set[TaskID] = set()
        self.max_attempts = max_attempts
        self.attempts: Counter[TaskID] = Counter()
        self.quarantined: set[TaskID] = set()

    def take(self) -> Optional[TaskID]:
        """Claim the lowest unassigned task, or None if none is waiting."""
        if not self._unassigned:
            return None
        task_id = heapq.heappop(self._unassigned)
        self._queued.discard(task_id)
        self._in_flight.add(task_id)
        self.attempts[task_id] += 1
        return task_id

    def complete(self, task_id: TaskID) -> bool:
        """Drop a finished task. False if it was not in flight (stale or duplicate report)."""
        if task_id not in self._in_flight:
            return False
        self._in_flight.discard(task_id)
        return True

    def give_back(self, task_id: TaskID, charge: bool = True) -> bool:
        """Return an in-flight task to the unassigned heap.

        Returns False when the task has used up max_attempts; it is then
        quarantined and never handed out again. With charge=False the attempt
        is not counted (the task ran, but the scheduler could not use the result).
        """
        if task_id not in self._in_flight:
            return False
        self._in_flight.discard(task_id)
        if not charge:
            self.attempts[task_id] -= 1
        elif self.max_attempts is not None and self.attempts[task_id] >= self.max_attempts:
            self.quarantined.add(task_id)
            return False
        if task_id not in self._queued:
            heapq.heappush(self._unassigned, task_id)
            self._queued.add(task_id)
        return True

    @property
    def has_unassigned(self) -> bool:
        return bool(self._unassigned)

    @property
    def unassigned(self) -> list[TaskID]:
        return sorted(self._unassigned)

    @property
    def in_flight(self) -> frozenset[TaskID]:
        return frozenset(self._in_flight)

    @property
    def remaining(self) -> set[TaskID]:
        """Every task not yet completed: unassigned, in flight or quarantined."""
        return set(self._unassigned) | self._in_flight | self.quarantined

    def __len__(self) -> int:
        return len(self._unassigned) + len(self._in_flight)

    def __repr__(self) -> str:
        return (
            f"OutstandingPool(unassigned={len(self._unassigned)}, "
            f"in_flight={len(self._in_flight)}, quarantined={len(self.quarantined)})"
        )
