from relay.transport.base import WorkerChannel
from relay.transport.failure_injector import FailureInjector, FaultKind, FaultPlan
from relay.transport.inline import InlineChannel
from relay.transport.process_pool import ProcessChannel

__all__ = [
    "WorkerChannel", "FailureInjector", "FaultKind", "FaultPlan",
    "InlineChannel", "ProcessChannel",
]
