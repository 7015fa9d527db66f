from relay.scheduler.engine import Scheduler
from relay.scheduler.liveness import LivenessMonitor
from relay.scheduler.pool import OutstandingPool

__all__ = ["Scheduler", "LivenessMonitor", "OutstandingPool"]
