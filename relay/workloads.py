"""Demo work functions — pure functions of a task ID plus fixed run parameters.

Bind the parameters with functools.partial so the result stays picklable
for worker processes:

    work_fn = functools.partial(count_primes, block_size=10_000)
"""

import functools
import math
import random
import time
from typing import Callable


def sleep_task(task_id: int, seconds: float = 1.0) -> int:
    """Stand-in for heavy work: sleep, then return the task ID as proof of work."""
    time.sleep(seconds)
    return task_id


def _is_prime(n: int) -> bool:
    if n < 2:
        return False
    if n % 2 == 0:
        return n == 2
    for d in range(3, math.isqrt(n) + 1, 2):
        if n % d == 0:
            return False
    return True


def count_primes(task_id: int, block_size: int = 10_000) -> int:
    """Number of primes in [task_id * block_size, (task_id + 1) * block_size)."""
    start = task_id * block_size
    return sum(1 for n in range(start, start + block_size) if _is_prime(n))


def estimate_pi(task_id: int, samples: int = 100_000, seed: int = 42) -> int:
    """Monte-Carlo hits inside the unit quarter circle. Seeded by task ID, so re-runs agree."""
    rng = random.Random(seed * 1_000_003 + task_id)
    hits = 0
    for _ in range(samples):
        x, y = rng.random(), rng.random()
        if x * x + y * y <= 1.0:
            hits += 1
    return hits


def build_workload(name: str, seconds: float = 1.0, block_size: int = 10_000,
                   samples: int = 100_000, seed: int = 42) -> Callable[[int], int]:
    """Factory function to get a work function by name."""
    workloads = {
        "sleep": functools.partial(sleep_task, seconds=seconds),
        "primes": functools.partial(count_primes, block_size=block_size),
        "pi": functools.partial(estimate_pi, samples=samples, seed=seed),
    }
    if name.lower() not in workloads:
        available = ", ".join(workloads.keys())
        raise ValueError(f"Unknown workload: {name}. Available: {available}")
    return workloads[name.lower()]


WORKLOAD_NAMES = ("sleep", "primes", "pi")
