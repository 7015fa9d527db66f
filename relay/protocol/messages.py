"""Wire messages between the scheduler and its workers.

Scheduler → Worker:  Assignment(kind=TASK, task_id) | Assignment(kind=STOP)
Worker → Scheduler:  Report(kind=DONE, task_id, result) | Report(kind=FAILED, task_id, reason)
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MessageKind(str, Enum):
    TASK = "task"
    STOP = "stop"
    DONE = "done"
    FAILED = "failed"


class Assignment(BaseModel):
    """An instruction sent to one worker."""

    model_config = ConfigDict(frozen=True)

    kind: MessageKind
    task_id: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_shape(self) -> "Assignment":
        if self.kind == MessageKind.TASK and self.task_id is None:
            raise ValueError("TASK assignment requires a task_id")
        if self.kind == MessageKind.STOP and self.task_id is not None:
            raise ValueError("STOP assignment carries no task_id")
        if self.kind not in (MessageKind.TASK, MessageKind.STOP):
            raise ValueError(f"{self.kind.value} is not an assignment kind")
        return self

    @classmethod
    def task(cls, task_id: int) -> "Assignment":
        return cls(kind=MessageKind.TASK, task_id=task_id)

    @classmethod
    def stop(cls) -> "Assignment":
        return cls(kind=MessageKind.STOP)

    @property
    def is_stop(self) -> bool:
        return self.kind == MessageKind.STOP


class Report(BaseModel):
    """A worker's answer for the task it was holding."""

    model_config = ConfigDict(frozen=True)

    kind: MessageKind
    task_id: int = Field(ge=0)
    result: Any = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "Report":
        if self.kind not in (MessageKind.DONE, MessageKind.FAILED):
            raise ValueError(f"{self.kind.value} is not a report kind")
        if self.kind == MessageKind.FAILED and not self.reason:
            raise ValueError("FAILED report requires a reason")
        return self

    @classmethod
    def done(cls, task_id: int, result: Any = None) -> "Report":
        return cls(kind=MessageKind.DONE, task_id=task_id, result=result)

    @classmethod
    def failed(cls, task_id: int, reason: str) -> "Report":
        return cls(kind=MessageKind.FAILED, task_id=task_id, reason=reason)

    @property
    def succeeded(self) -> bool:
        return self.kind == MessageKind.DONE
