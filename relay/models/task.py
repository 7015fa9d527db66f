"""Task space and run configuration — what a run must complete and how."""

import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay.errors import ConfigurationError

TaskID = int

DEFAULT_PROGRESS_PATH = "relay_progress.log"


class TaskSpace(BaseModel):
    """The totally ordered set of task identifiers [0, task_count)."""

    model_config = ConfigDict(frozen=True)

    task_count: int = Field(gt=0, description="Number of tasks in the run")

    def order(self) -> range:
        """Task IDs in ascending order."""
        return range(self.task_count)

    def __len__(self) -> int:
        return self.task_count

    def contains(self, task_id: TaskID) -> bool:
        return 0 <= task_id < self.task_count

    def ids(self) -> set[TaskID]:
        return set(range(self.task_count))

    def __repr__(self) -> str:
        return f"TaskSpace(0..{self.task_count - 1})"


class RunConfig(BaseModel):
    """Everything the scheduler reads at Init. Fixed for the lifetime of a run."""

    task_count: int = Field(gt=0, description="Size N of the task space")
    worker_pool_size: int = Field(gt=0, description="Number of worker processes W")
    progress_path: str = Field(
        default_factory=lambda: os.environ.get("RELAY_PROGRESS_PATH", DEFAULT_PROGRESS_PATH),
        description="Location of the append-only progress log",
    )
    task_timeout: Optional[float] = Field(
        default=None, gt=0, description="Seconds a worker may hold one task; None disables"
    )
    retire_on_failure: bool = Field(
        default=True, description="Retire a worker whose work function reported a failure"
    )
    max_task_attempts: Optional[int] = Field(
        default=None, ge=1, description="Dispatches allowed per task before it is quarantined"
    )
    max_store_failures: int = Field(
        default=3, ge=1, description="Consecutive progress-store write failures before aborting"
    )
    write_retries: int = Field(default=3, ge=0, description="Retries per progress-store append")

    @classmethod
    def build(cls, **values) -> "RunConfig":
        """Validate keyword values, raising ConfigurationError instead of ValidationError."""
        try:
            return cls(**values)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise ConfigurationError(f"invalid run configuration: {problems}") from exc

    @property
    def task_space(self) -> TaskSpace:
        return TaskSpace(task_count=self.task_count)
