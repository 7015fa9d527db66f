"""
Tests for the data models and wire messages.

These tests verify:
    1. TaskSpace and RunConfig validation (rejects bad configuration)
    2. WorkerState transitions (assign/release/retire)
    3. Assignment and Report message shapes
    4. Event translation from reports
"""

import pytest
from pydantic import ValidationError

from relay.errors import ConfigurationError
from relay.models.task import RunConfig, TaskSpace
from relay.models.worker import WorkerState, WorkerStatus
from relay.protocol.events import Event, EventType
from relay.protocol.messages import Assignment, MessageKind, Report


# ══════════════════════════════════════════════════════════════════════
# TASK SPACE / RUN CONFIG TESTS
# ══════════════════════════════════════════════════════════════════════

class TestTaskSpace:
    """Tests for the TaskSpace model."""

    def test_order_is_ascending(self):
        space = TaskSpace(task_count=4)
        assert list(space.order()) == [0, 1, 2, 3]
        assert len(space) == 4

    def test_contains(self):
        space = TaskSpace(task_count=3)
        assert space.contains(0)
        assert space.contains(2)
        assert not space.contains(3)
        assert not space.contains(-1)

    def test_zero_tasks_rejected(self):
        with pytest.raises(ValidationError):
            TaskSpace(task_count=0)


class TestRunConfig:
    """Tests for run configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("RELAY_PROGRESS_PATH", raising=False)
        config = RunConfig.build(task_count=10, worker_pool_size=2)
        assert config.progress_path == "relay_progress.log"
        assert config.task_timeout is None
        assert config.retire_on_failure is True
        assert config.max_task_attempts is None
        assert config.task_space.task_count == 10

    def test_progress_path_from_environment(self, monkeypatch):
        monkeypatch.setenv("RELAY_PROGRESS_PATH", "/tmp/elsewhere.log")
        config = RunConfig.build(task_count=1, worker_pool_size=1)
        assert config.progress_path == "/tmp/elsewhere.log"

    @pytest.mark.parametrize("tasks, workers", [(0, 1), (1, 0), (-5, 2), (3, -1)])
    def test_non_positive_sizes_rejected(self, tasks, workers):
        """task_count and worker_pool_size must both be > 0."""
        with pytest.raises(ConfigurationError):
            RunConfig.build(task_count=tasks, worker_pool_size=workers)

    def test_error_names_the_field(self):
        with pytest.raises(ConfigurationError, match="worker_pool_size"):
            RunConfig.build(task_count=5, worker_pool_size=0)

    def test_timeout_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            RunConfig.build(task_count=5, worker_pool_size=1, task_timeout=0)


# ══════════════════════════════════════════════════════════════════════
# WORKER STATE TESTS
# ══════════════════════════════════════════════════════════════════════

class TestWorkerState:
    """Tests for the scheduler's per-worker record."""

    def test_starts_idle(self):
        state = WorkerState(handle="worker-001")
        assert state.status == WorkerStatus.IDLE
        assert state.task_id is None
        assert not state.is_busy

    def test_assign_then_release(self):
        state = WorkerState(handle="worker-001")
        state.assign(7, now=12.5)
        assert state.is_busy
        assert state.task_id == 7
        assert state.assigned_at == 12.5

        assert state.release() == 7
        assert state.status == WorkerStatus.IDLE
        assert state.task_id is None
        assert state.assigned_at is None

    def test_cannot_assign_busy_worker(self):
        """A busy worker holds exactly one task."""
        state = WorkerState(handle="worker-001")
        state.assign(1, now=0.0)
        with pytest.raises(ValueError):
            state.assign(2, now=0.0)

    def test_retire_is_permanent(self):
        state = WorkerState(handle="worker-001")
        state.assign(3, now=0.0)
        assert state.retire() == 3
        assert state.is_retired
        with pytest.raises(ValueError):
            state.assign(4, now=1.0)


# ══════════════════════════════════════════════════════════════════════
# MESSAGE TESTS
# ══════════════════════════════════════════════════════════════════════

class TestMessages:
    """Tests for the wire protocol."""

    def test_task_assignment(self):
        msg = Assignment.task(5)
        assert msg.kind == MessageKind.TASK
        assert msg.task_id == 5
        assert not msg.is_stop

    def test_stop_assignment(self):
        msg = Assignment.stop()
        assert msg.is_stop
        assert msg.task_id is None

    def test_task_without_id_rejected(self):
        with pytest.raises(ValidationError):
            Assignment(kind=MessageKind.TASK)

    def test_stop_with_id_rejected(self):
        with pytest.raises(ValidationError):
            Assignment(kind=MessageKind.STOP, task_id=1)

    def test_report_kind_as_assignment_rejected(self):
        with pytest.raises(ValidationError):
            Assignment(kind=MessageKind.DONE, task_id=1)

    def test_failed_report_needs_reason(self):
        with pytest.raises(ValidationError):
            Report(kind=MessageKind.FAILED, task_id=1)

    def test_done_report_carries_result(self):
        report = Report.done(3, result=42)
        assert report.succeeded
        assert report.result == 42

    def test_event_from_reports(self):
        done = Event.from_report(1, "worker-001", Report.done(4, result="ok"))
        assert done.event_type == EventType.COMPLETED
        assert done.task_id == 4
        assert done.result == "ok"

        failed = Event.from_report(2, "worker-002", Report.failed(5, "boom"))
        assert failed.event_type == EventType.FAILED
        assert failed.reason == "boom"

    def test_events_order_by_sequence(self):
        later = Event(5, EventType.COMPLETED, "worker-001", task_id=1)
        earlier = Event(2, EventType.FAILED, "worker-002", task_id=2, reason="x")
        assert sorted([later, earlier]) == [earlier, later]
