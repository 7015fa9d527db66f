"""Base Progress Store — abstract interface for durable completion records."""

from abc import ABC, abstractmethod

from relay.models.task import TaskID, TaskSpace


class ProgressStore(ABC):
    """Record of which task IDs have completed. Subclasses implement the four primitives.

    The completed set only ever grows, except through an explicit reset().
    Storage failures raise ProgressStoreError; a store never answers
    "complete" for a task it cannot prove was recorded.
    """

    @abstractmethod
    def is_complete(self, task_id: TaskID) -> bool:
        """True if a completion record exists for task_id."""
        ...

    @abstractmethod
    def mark_complete(self, task_id: TaskID) -> bool:
        """Durably record completion. Returns False if it was already recorded."""
        ...

    @abstractmethod
    def completed(self) -> frozenset[TaskID]:
        """Snapshot of every recorded task ID."""
        ...

    @abstractmethod
    def reset(self) -> None:
        """Forget all progress. Operator action between runs only."""
        ...

    def load_outstanding(self, task_space: TaskSpace) -> set[TaskID]:
        """Task IDs in task_space with no completion record."""
        done = self.completed()
        return {t for t in task_space.order() if t not in done}

    def close(self) -> None:
        """Release any handle or lock held by the store."""

    def __enter__(self) -> "ProgressStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def name(self) -> str:
        """Human-readable store name for reports."""
        return self.__class__.__name__
