"""Failure Injector — decides which dispatches go wrong in an inline run.

Models the ways a real worker lets the scheduler down:
- CRASH: the process dies mid-task, before reporting (disconnect)
- FAIL: the work function raises and the worker reports FAILED
- HANG: the worker wedges and never reports
"""

import random
from enum import Enum
from typing import Iterable, Optional


class FaultKind(str, Enum):
    CRASH = "crash"
    FAIL = "fail"
    HANG = "hang"


class FaultPlan:
    """Faults keyed by (task_id, attempt). Attempt numbers start at 1."""

    def __init__(self, faults: Optional[dict[tuple[int, int], FaultKind]] = None):
        self.faults: dict[tuple[int, int], FaultKind] = dict(faults or {})

    def fault_for(self, task_id: int, attempt: int) -> Optional[FaultKind]:
        return self.faults.get((task_id, attempt))

    def add(self, task_id: int, kind: FaultKind, attempt: int = 1) -> "FaultPlan":
        self.faults[(task_id, attempt)] = kind
        return self

    def __len__(self) -> int:
        return len(self.faults)


class FailureInjector:
    """Builds FaultPlans for a task space.

    Usage:
        injector = FailureInjector(mode="random", failure_rate=0.1, seed=42)
        plan = injector.generate_plan(task_count=100)
        channel = InlineChannel(work_fn, pool_size=4, faults=plan)
    """

    def __init__(
        self,
        mode: str = "random",
        failure_rate: float = 0.1,
        kinds: Iterable[FaultKind] = (FaultKind.CRASH, FaultKind.FAIL),
        max_attempt: int = 1,
        seed: int = 42,
    ):
        """
        Args:
            mode: "random" | "periodic" | "targeted"
            failure_rate: For random mode — probability each dispatch attempt fails.
                          For periodic mode — every round(1 / failure_rate)-th task fails.
            kinds: Fault kinds to draw from.
            max_attempt: Attempts per task eligible for a fault; later attempts succeed.
            seed: RNG seed for reproducibility.
        """
        self.mode = mode
        self.failure_rate = failure_rate
        self.kinds = list(kinds)
        self.max_attempt = max_attempt
        self.rng = random.Random(seed)

    def generate_plan(
        self, task_count: int, targets: Optional[Iterable[int]] = None,
    ) -> FaultPlan:
        """Pre-generate every fault for a run of task_count tasks.

        Args:
            task_count: Size of the task space.
            targets: For targeted mode — the task IDs whose first attempts fail.
        """
        if not self.kinds:
            return FaultPlan()

        if self.mode == "random":
            return self._generate_random(task_count)
        elif self.mode == "periodic":
            return self._generate_periodic(task_count)
        elif self.mode == "targeted":
            return self._generate_targeted(task_count, targets or ())
        else:
            raise ValueError(f"Unknown failure mode: {self.mode}")

    def _generate_random(self, task_count: int) -> FaultPlan:
        """Independent faults: every attempt up to max_attempt fails with failure_rate."""
        plan = FaultPlan()
        for task_id in range(task_count):
            for attempt in range(1, self.max_attempt + 1):
                if self.rng.random() < self.failure_rate:
                    plan.add(task_id, self.rng.choice(self.kinds), attempt)
        return plan

    def _generate_periodic(self, task_count: int) -> FaultPlan:
        """Every k-th task fails on its attempts, cycling through the fault kinds."""
        plan = FaultPlan()
        period = max(1, round(1.0 / self.failure_rate)) if self.failure_rate > 0 else task_count + 1
        kind_idx = 0
        for task_id in range(period - 1, task_count, period):
            for attempt in range(1, self.max_attempt + 1):
                plan.add(task_id, self.kinds[kind_idx % len(self.kinds)], attempt)
            kind_idx += 1
        return plan

    def _generate_targeted(self, task_count: int, targets: Iterable[int]) -> FaultPlan:
        plan = FaultPlan()
        for task_id in targets:
            if not 0 <= task_id < task_count:
                raise ValueError(f"target {task_id} outside task space of {task_count}")
            for attempt in range(1, self.max_attempt + 1):
                plan.add(task_id, self.rng.choice(self.kinds), attempt)
        return plan
