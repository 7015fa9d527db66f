"""Base Worker Channel — abstract transport between the scheduler and its pool."""

from abc import ABC, abstractmethod
from typing import Optional

from relay.protocol.events import Event
from relay.protocol.messages import Assignment


class WorkerChannel(ABC):
    """Message-passing link to a pool of workers. Subclasses implement the transport.

    receive() is the scheduler's only suspension point: a blocking fan-in over
    every connected worker that yields events in arrival order.
    """

    @abstractmethod
    def open(self) -> list[str]:
        """Start or connect the pool. Returns worker handles in connection order."""
        ...

    @abstractmethod
    def send(self, worker: str, message: Assignment) -> None:
        """Deliver an assignment. Raises ChannelError if the worker is unreachable."""
        ...

    @abstractmethod
    def receive(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Block for the next event from any worker. None if timeout elapses first."""
        ...

    @abstractmethod
    def terminate(self, worker: str) -> None:
        """Forcefully disconnect a worker. No further events are produced for it."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Tear down the pool. Safe to call more than once."""
        ...

    @property
    def name(self) -> str:
        """Human-readable transport name for reports."""
        return self.__class__.__name__
