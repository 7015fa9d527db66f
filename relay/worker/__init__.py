from relay.worker.agent import WorkerAgent, WorkFunction, worker_main

__all__ = ["WorkerAgent", "WorkFunction", "worker_main"]
