"""In-memory Progress Store — same contract, no durability. For tests and dry runs."""

import threading
from typing import Iterable, Optional

from relay.errors import ProgressStoreError
from relay.models.task import TaskID
from relay.store.base import ProgressStore


class MemoryProgressStore(ProgressStore):
    """Completion records kept in a set.

    ``fail_writes`` makes the next N mark_complete calls raise
    ProgressStoreError, to exercise the scheduler's write-failure path.
    """

    def __init__(self, completed: Optional[Iterable[TaskID]] = None, fail_writes: int = 0):
        self._done: set[TaskID] = set(completed or ())
        self._mutex = threading.Lock()
        self.fail_writes = fail_writes
        self.writes: list[TaskID] = []

    def is_complete(self, task_id: TaskID) -> bool:
        with self._mutex:
            return task_id in self._done

    def mark_complete(self, task_id: TaskID) -> bool:
        with self._mutex:
            if task_id in self._done:
                return False
            if self.fail_writes > 0:
                self.fail_writes -= 1
                raise ProgressStoreError(f"injected write failure for task {task_id}")
            self._done.add(task_id)
            self.writes.append(task_id)
            return True

    def completed(self) -> frozenset[TaskID]:
        with self._mutex:
            return frozenset(self._done)

    def reset(self) -> None:
        with self._mutex:
            self._done.clear()
            self.writes.clear()
