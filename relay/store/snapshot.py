"""Snapshot Store — periodic full-state checkpoints for step-wise computations.

For work that is not a bag of independent tasks but successive steps of one
evolving state (e.g. an N-body integration), per-task records are the wrong
granularity. This store keeps a step counter plus a pickled copy of the state
and rewrites both together every ``interval`` steps, so a restart resumes from
the latest snapshot. Steps after that snapshot are simply redone.

Completed set = [0, step).
"""

import logging
import os
import pickle
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from relay.errors import ProgressStoreError
from relay.models.task import TaskID
from relay.store.base import ProgressStore

logger = logging.getLogger(__name__)


class SnapshotStore(ProgressStore):
    """Progress Store whose records are whole-state snapshots taken every few steps.

    Steps must complete in order, so it suits a single sequential loop, not
    a Scheduler with several workers. An out-of-order completion raises
    ProgressStoreError.
    """

    def __init__(
        self,
        path: str | os.PathLike,
        interval: int = 10,
        state_provider: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            path: Snapshot file location.
            interval: Persist after every ``interval`` completed steps.
            state_provider: Returns the current in-memory state to snapshot.
                            None snapshots the step counter alone.
        """
        if interval < 1:
            raise ValueError(f"interval must be >= 1, got {interval}")
        self.path = Path(path)
        self.interval = interval
        self.state_provider = state_provider

        self._mutex = threading.Lock()
        self._step, self._state = self._read()
        self._saved_step = self._step

    @property
    def step(self) -> int:
        """Number of steps completed in memory (may run ahead of the last snapshot)."""
        return self._step

    def load_state(self) -> tuple[int, Any]:
        """(step, state) from the latest snapshot on disk; (0, None) if there is none."""
        with self._mutex:
            return self._saved_step, self._state

    # ── Contract ──────────────────────────────────────────────────────

    def is_complete(self, task_id: TaskID) -> bool:
        with self._mutex:
            return task_id < self._step

    def mark_complete(self, task_id: TaskID) -> bool:
        with self._mutex:
            if task_id < self._step:
                return False
            if task_id > self._step:
                raise ProgressStoreError(
                    f"step {task_id} completed before step {self._step}; steps are sequential"
                )
            if (self._step + 1) % self.interval == 0:
                self._save_locked(self._step + 1)
            self._step += 1
            return True

    def completed(self) -> frozenset[TaskID]:
        with self._mutex:
            return frozenset(range(self._step))

    def checkpoint(self) -> None:
        """Write a snapshot now, regardless of the interval."""
        with self._mutex:
            self._save_locked(self._step)

    def reset(self) -> None:
        with self._mutex:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as exc:
                raise ProgressStoreError(f"cannot remove snapshot {self.path}: {exc}") from exc
            self._step = self._saved_step = 0
            self._state = None
        logger.info("Snapshot %s removed", self.path)

    # ── Persistence ───────────────────────────────────────────────────

    def _read(self) -> tuple[int, Any]:
        try:
            with open(self.path, "rb") as fh:
                payload = pickle.load(fh)
        except FileNotFoundError:
            return 0, None
        except (OSError, pickle.UnpicklingError, EOFError) as exc:
            raise ProgressStoreError(f"cannot read snapshot {self.path}: {exc}") from exc

        step = payload.get("step") if isinstance(payload, dict) else None
        if not isinstance(step, int) or step < 0:
            raise ProgressStoreError(f"snapshot {self.path} has no valid step counter")
        logger.info("Resuming from snapshot %s at step %d", self.path, step)
        return step, payload.get("state")

    def _save_locked(self, step: int) -> None:
        state = self.state_provider() if self.state_provider is not None else None
        payload = {"step": step, "state": state}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as fh:
                pickle.dump(payload, fh, protocol=pickle.HIGHEST_PROTOCOL)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise ProgressStoreError(f"cannot write snapshot {self.path}: {exc}") from exc
        self._saved_step = step
        self._state = state
        logger.info("Snapshot saved at step %d", step)
