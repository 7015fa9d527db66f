from relay.protocol.messages import Assignment, MessageKind, Report
from relay.protocol.events import Event, EventType

__all__ = ["Assignment", "MessageKind", "Report", "Event", "EventType"]
