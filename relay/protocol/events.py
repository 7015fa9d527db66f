"""Events delivered to the scheduler by the fan-in wait."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from relay.protocol.messages import Report


class EventType(str, Enum):
    """Things that can happen to a busy worker."""
    COMPLETED = "completed"
    FAILED = "failed"
    DISCONNECTED = "disconnected"
    TIMED_OUT = "timed_out"


@dataclass(order=True)
class Event:
    """
    One scheduler event, ordered by arrival sequence.
    Fields with compare=False are excluded from ordering (only sequence matters).
    """
    sequence: int
    event_type: EventType = field(compare=False)
    worker: str = field(compare=False)
    task_id: Optional[int] = field(default=None, compare=False)
    result: Any = field(default=None, compare=False)
    reason: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_report(cls, sequence: int, worker: str, report: Report) -> "Event":
        """Translate a worker's wire report into a scheduler event."""
        if report.succeeded:
            return cls(sequence, EventType.COMPLETED, worker,
                       task_id=report.task_id, result=report.result)
        return cls(sequence, EventType.FAILED, worker,
                   task_id=report.task_id, reason=report.reason)

    def __repr__(self) -> str:
        parts = [f"Event(#{self.sequence}, type={self.event_type.value}, worker={self.worker}"]
        if self.task_id is not None:
            parts.append(f", task={self.task_id}")
        if self.reason:
            parts.append(f", reason={self.reason!r}")
        parts.append(")")
        return "".join(parts)
