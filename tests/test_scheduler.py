"""
Tests for the Scheduler.

These tests verify:
    1. Completeness: every task recorded exactly once
    2. Empty run, single task/single worker, more workers than tasks
    3. Idempotent resume after an interrupted run
    4. Lowest-unassigned tie-break and load balancing across workers
    5. Results are handed to the reduction callback
    6. Progress-store write failures keep tasks outstanding
"""

import pytest

from relay.errors import ProgressStoreError
from relay.metrics.collector import RunStatus
from relay.models.task import RunConfig
from relay.protocol.messages import Assignment
from relay.scheduler.engine import Scheduler
from relay.store.log_store import FileProgressStore
from relay.store.memory import MemoryProgressStore
from relay.transport.inline import InlineChannel


def square(task_id: int) -> int:
    return task_id * task_id


class TestScheduler:
    """Tests for the dispatch loop over an inline worker pool."""

    def _run(self, tasks: int, workers: int, store=None, channel=None, **config):
        """Helper: run a scheduler to its terminal state."""
        store = store if store is not None else MemoryProgressStore()
        channel = channel or InlineChannel(square, pool_size=workers)
        results: dict[int, int] = {}
        scheduler = Scheduler(
            RunConfig.build(task_count=tasks, worker_pool_size=workers, **config),
            store, channel,
            on_result=lambda task_id, result: results.__setitem__(task_id, result),
            clock=channel.clock,
        )
        report = scheduler.run()
        return report, scheduler, channel, store, results

    @pytest.mark.parametrize("tasks, workers", [(1, 1), (10, 3), (7, 7), (25, 4), (50, 1)])
    def test_completeness(self, tasks, workers):
        """Every TaskID in [0, N) ends up recorded, each exactly once."""
        report, _, channel, store, _ = self._run(tasks, workers)
        assert report.status == RunStatus.DONE
        assert store.completed() == set(range(tasks))
        assert sorted(store.writes) == list(range(tasks))
        assert report.dispatches == tasks
        assert channel.violations == []

    def test_empty_run(self):
        """All tasks already complete: Done immediately, zero dispatches, pool never opened."""
        store = MemoryProgressStore(completed=range(5))
        channel = InlineChannel(square, pool_size=3)
        report, *_ = self._run(5, 3, store=store, channel=channel)
        assert report.status == RunStatus.DONE
        assert report.dispatches == 0
        assert report.resumed_complete == 5
        assert channel.sent == []
        assert channel.handles == []

    def test_single_task_single_worker(self):
        """One Task message, one Done report, one record, then a Stop."""
        report, scheduler, channel, store, _ = self._run(1, 1)
        assert channel.sent == [
            ("worker-001", Assignment.task(0)),
            ("worker-001", Assignment.stop()),
        ]
        assert len(scheduler.event_log) == 1
        assert store.writes == [0]
        assert report.completions == 1

    def test_more_workers_than_tasks(self):
        """N=3, W=5: three workers get one task each, two get Stop and never a Task."""
        report, _, channel, store, _ = self._run(3, 5)
        tasks_sent = channel.tasks_sent()
        assert sorted(t for _, t in tasks_sent) == [0, 1, 2]
        assert len({w for w, _ in tasks_sent}) == 3

        idle = {"worker-004", "worker-005"}
        assert idle.isdisjoint(w for w, _ in tasks_sent)
        # surplus workers are stopped before any report is consumed
        first_stops = [w for w, m in channel.sent[:5] if m.is_stop]
        assert set(first_stops) == idle
        assert report.status == RunStatus.DONE
        assert store.completed() == {0, 1, 2}

    def test_initial_assignment_is_lowest_first(self):
        _, _, channel, _, _ = self._run(10, 3)
        assert channel.tasks_sent()[:3] == [
            ("worker-001", 0), ("worker-002", 1), ("worker-003", 2),
        ]

    def test_finisher_gets_next_task(self):
        """Whichever worker reports first receives the lowest unassigned task."""
        durations = {0: 5.0, 1: 1.0, 2: 3.0}
        channel = InlineChannel(square, pool_size=3, duration_fn=lambda t: durations.get(t, 1.0))
        _, scheduler, channel, _, _ = self._run(5, 3, channel=channel)

        order = [e.worker for e in scheduler.event_log]
        assert order[0] == "worker-002"   # task 1 finishes first
        assert channel.tasks_sent()[3] == ("worker-002", 3)

    def test_load_balancing_favors_fast_tasks(self):
        """A worker stuck on a slow task does not block the others."""
        channel = InlineChannel(square, pool_size=2, duration_fn=lambda t: 20.0 if t == 0 else 1.0)
        report, *_ = self._run(10, 2, channel=channel)
        assert report.per_worker_completions == {"worker-001": 1, "worker-002": 9}
        assert report.per_worker_dispatches == {"worker-001": 1, "worker-002": 9}

    def test_results_reach_callback(self):
        _, _, _, _, results = self._run(6, 2)
        assert results == {t: t * t for t in range(6)}

    def test_all_workers_stopped_at_done(self):
        report, scheduler, channel, _, _ = self._run(8, 3)
        assert sorted(channel.stops_sent()) == ["worker-001", "worker-002", "worker-003"]
        assert scheduler.active_workers == 0
        assert all(s.is_retired for s in scheduler.worker_states.values())


class TestResume:
    """Tests for idempotent resume against a durable store."""

    def test_resume_dispatches_only_outstanding(self, tmp_path):
        path = tmp_path / "task_log.txt"
        with FileProgressStore(path) as store:
            for task_id in (0, 1, 2, 5, 8):
                store.mark_complete(task_id)

        with FileProgressStore(path) as store:
            channel = InlineChannel(square, pool_size=2)
            scheduler = Scheduler(
                RunConfig.build(task_count=10, worker_pool_size=2, progress_path=str(path)),
                store, channel, clock=channel.clock,
            )
            report = scheduler.run()

        assert report.resumed_complete == 5
        assert report.dispatches == 5
        assert sorted(t for _, t in channel.tasks_sent()) == [3, 4, 6, 7, 9]
        assert sorted(int(x) for x in path.read_text().split()) == list(range(10))

    def test_rerun_after_done_is_noop(self, tmp_path):
        path = tmp_path / "task_log.txt"
        config = RunConfig.build(task_count=6, worker_pool_size=2, progress_path=str(path))
        for expected_dispatches in (6, 0):
            with FileProgressStore(path) as store:
                channel = InlineChannel(square, pool_size=2)
                report = Scheduler(config, store, channel, clock=channel.clock).run()
            assert report.status == RunStatus.DONE
            assert report.dispatches == expected_dispatches

    def test_interrupted_run_resumes(self, tmp_path):
        """Stop after K completions; restart performs N-K more dispatches."""
        path = tmp_path / "task_log.txt"
        config = RunConfig.build(task_count=12, worker_pool_size=3, progress_path=str(path))

        class Interrupt(Exception):
            pass

        completions = []

        def interrupt_after_four(task_id, result):
            completions.append(task_id)
            if len(completions) == 4:
                raise Interrupt()

        with FileProgressStore(path) as store:
            channel = InlineChannel(square, pool_size=3)
            with pytest.raises(Interrupt):
                Scheduler(config, store, channel, on_result=interrupt_after_four,
                          clock=channel.clock).run()
            assert len(store.completed()) == 4

        with FileProgressStore(path) as store:
            channel = InlineChannel(square, pool_size=3)
            report = Scheduler(config, store, channel, clock=channel.clock).run()
            assert report.resumed_complete == 4
            assert report.dispatches == 8
            assert store.completed() == set(range(12))


class TestStoreFailures:
    """Tests for progress-store write errors during a run."""

    def test_failed_write_keeps_task_outstanding(self):
        """The completion is not trusted; the task is re-dispatched and recorded later."""
        store = MemoryProgressStore(fail_writes=1)
        channel = InlineChannel(square, pool_size=1)
        scheduler = Scheduler(
            RunConfig.build(task_count=3, worker_pool_size=1),
            store, channel, clock=channel.clock,
        )
        report = scheduler.run()

        assert report.status == RunStatus.DONE
        assert report.store_write_failures == 1
        assert store.completed() == {0, 1, 2}
        assert [t for _, t in channel.tasks_sent()] == [0, 0, 1, 2]

    def test_persistent_write_failure_aborts(self):
        store = MemoryProgressStore(fail_writes=100)
        channel = InlineChannel(square, pool_size=2)
        scheduler = Scheduler(
            RunConfig.build(task_count=5, worker_pool_size=2, max_store_failures=3),
            store, channel, clock=channel.clock,
        )
        with pytest.raises(ProgressStoreError, match="3 writes in a row"):
            scheduler.run()
        assert store.completed() == frozenset()
        # the pool is shut down on the way out
        assert set(channel.stops_sent()) == {"worker-001", "worker-002"}

    def test_load_failure_is_fatal(self, tmp_path):
        """An unreadable log aborts before any dispatch."""

        class BrokenStore(MemoryProgressStore):
            def completed(self):
                raise ProgressStoreError("disk unreadable")

        channel = InlineChannel(square, pool_size=2)
        scheduler = Scheduler(
            RunConfig.build(task_count=5, worker_pool_size=2),
            BrokenStore(), channel, clock=channel.clock,
        )
        with pytest.raises(ProgressStoreError):
            scheduler.run()
        assert channel.sent == []
