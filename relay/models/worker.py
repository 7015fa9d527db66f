"""Worker state — the scheduler's record of one connected worker."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

WorkerHandle = str


class WorkerStatus(str, Enum):
    """Scheduler-side states: IDLE ↔ BUSY → RETIRED"""
    IDLE = "idle"
    BUSY = "busy"
    RETIRED = "retired"


class WorkerState(BaseModel):
    """What the scheduler knows about a worker. Workers never mutate this themselves."""

    handle: WorkerHandle = Field(description="Opaque worker identifier, unique per live worker")
    status: WorkerStatus = Field(default=WorkerStatus.IDLE, description="Current state")
    task_id: Optional[int] = Field(default=None, ge=0, description="Task held while BUSY")
    assigned_at: Optional[float] = Field(default=None, description="Clock reading at assignment")
    tasks_completed: int = Field(default=0, ge=0)
    tasks_failed: int = Field(default=0, ge=0)

    @property
    def is_busy(self) -> bool:
        return self.status == WorkerStatus.BUSY

    @property
    def is_retired(self) -> bool:
        return self.status == WorkerStatus.RETIRED

    def assign(self, task_id: int, now: float) -> None:
        """IDLE → BUSY(task_id)."""
        if self.status != WorkerStatus.IDLE:
            raise ValueError(f"cannot assign task {task_id} to {self.status.value} worker {self.handle}")
        self.status = WorkerStatus.BUSY
        self.task_id = task_id
        self.assigned_at = now

    def release(self) -> Optional[int]:
        """BUSY → IDLE. Returns the task the worker held."""
        task_id = self.task_id
        if self.status == WorkerStatus.BUSY:
            self.status = WorkerStatus.IDLE
        self.task_id = None
        self.assigned_at = None
        return task_id

    def retire(self) -> Optional[int]:
        """Any state → RETIRED, permanently. Returns the task held, if any."""
        task_id = self.release()
        self.status = WorkerStatus.RETIRED
        return task_id

    def __repr__(self) -> str:
        held = f", task={self.task_id}" if self.task_id is not None else ""
        return f"WorkerState(handle={self.handle!r}, status={self.status.value}{held})"
