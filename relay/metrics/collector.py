"""Metrics Collector — counts what happened during a dispatch run."""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table


class RunStatus(str, Enum):
    """Terminal outcome of a run."""
    DONE = "done"          # every task recorded complete
    STALLED = "stalled"    # work outstanding, no workers left
    FAILED = "failed"      # some task exhausted its attempts


@dataclass
class RunReport:
    """Container for the outcome and counters of one run."""
    status: RunStatus = RunStatus.DONE
    task_count: int = 0
    worker_count: int = 0
    resumed_complete: int = 0
    dispatches: int = 0
    completions: int = 0
    duplicate_completions: int = 0
    failures: int = 0
    disconnects: int = 0
    timeouts: int = 0
    store_write_failures: int = 0
    outstanding: list[int] = field(default_factory=list)
    quarantined: list[int] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    per_worker_completions: dict[str, int] = field(default_factory=dict)
    per_worker_dispatches: dict[str, int] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.DONE


class MetricsCollector:
    """Accumulates counters as the scheduler processes events."""

    def __init__(self):
        self.report: Optional[RunReport] = None
        self.dispatches = 0
        self.completions = 0
        self.duplicate_completions = 0
        self.failures = 0
        self.disconnects = 0
        self.timeouts = 0
        self.store_write_failures = 0
        self.per_worker: Counter[str] = Counter()
        self.per_worker_dispatches: Counter[str] = Counter()

    def record_dispatch(self, worker: str) -> None:
        self.dispatches += 1
        self.per_worker_dispatches[worker] += 1

    def record_completion(self, worker: str, task_id: int, recorded: bool) -> None:
        self.completions += 1
        self.per_worker[worker] += 1
        if not recorded:
            self.duplicate_completions += 1

    def record_failure(self) -> None:
        self.failures += 1

    def record_disconnect(self) -> None:
        self.disconnects += 1

    def record_timeout(self) -> None:
        self.timeouts += 1

    def record_store_failure(self) -> None:
        self.store_write_failures += 1

    def finalize(
        self,
        status: RunStatus,
        task_count: int,
        workers: list[str],
        resumed_complete: int,
        outstanding: set[int],
        quarantined: set[int],
        elapsed: float,
    ) -> RunReport:
        """Freeze the counters into a RunReport."""
        self.report = RunReport(
            status=status,
            task_count=task_count,
            worker_count=len(workers),
            resumed_complete=resumed_complete,
            dispatches=self.dispatches,
            completions=self.completions,
            duplicate_completions=self.duplicate_completions,
            failures=self.failures,
            disconnects=self.disconnects,
            timeouts=self.timeouts,
            store_write_failures=self.store_write_failures,
            outstanding=sorted(outstanding),
            quarantined=sorted(quarantined),
            elapsed_seconds=elapsed,
            per_worker_completions={w: self.per_worker.get(w, 0) for w in workers},
            per_worker_dispatches={w: self.per_worker_dispatches.get(w, 0) for w in workers},
        )
        return self.report

    def print_report(self, console: Optional[Console] = None) -> None:
        """Print the completion banner and per-worker table."""
        console = console or Console()
        if self.report is None:
            console.print("No run finished yet. Run the scheduler first.")
            return

        r = self.report
        if r.status == RunStatus.DONE:
            headline = f"[bold green]ALL {r.task_count} TASKS COMPLETED[/bold green]"
            style = "green"
        elif r.status == RunStatus.STALLED:
            headline = (
                f"[bold red]STALLED: {len(r.outstanding)} tasks outstanding, 0 workers[/bold red]"
            )
            style = "red"
        else:
            headline = (
                f"[bold red]FAILED: {len(r.quarantined)} tasks exhausted their attempts[/bold red]"
            )
            style = "red"

        console.print(Panel(
            f"{headline}\n"
            f"Resumed with [bold]{r.resumed_complete}[/bold] already complete · "
            f"elapsed {r.elapsed_seconds:.2f}s",
            title="Relay — Dispatch Report",
            border_style=style,
        ))

        summary = Table(title="Run Summary", border_style="blue")
        summary.add_column("Metric", style="bold")
        summary.add_column("Value", justify="right")
        summary.add_row("Tasks", str(r.task_count))
        summary.add_row("Dispatches", str(r.dispatches))
        summary.add_row("Completions", f"[green]{r.completions}[/green]")
        summary.add_row("Failures reported", f"[yellow]{r.failures}[/yellow]")
        summary.add_row("Disconnects", f"[yellow]{r.disconnects}[/yellow]")
        summary.add_row("Timeouts", f"[yellow]{r.timeouts}[/yellow]")
        summary.add_row("Store write failures", f"[red]{r.store_write_failures}[/red]")
        if r.outstanding:
            summary.add_row("Outstanding", _format_ids(r.outstanding))
        if r.quarantined:
            summary.add_row("Quarantined", _format_ids(r.quarantined))
        console.print(summary)

        if r.per_worker_completions:
            worker_table = Table(title="Worker Share", border_style="magenta")
            worker_table.add_column("Worker", style="bold")
            worker_table.add_column("Dispatched", justify="right")
            worker_table.add_column("Completed", justify="right")
            total = max(1, r.completions)
            for worker, count in sorted(r.per_worker_completions.items()):
                share = count / total
                bar_len = int(share * 20)
                bar = "█" * bar_len + "░" * (20 - bar_len)
                worker_table.add_row(worker, str(r.per_worker_dispatches.get(worker, 0)), f"{bar} {count}")
            console.print(worker_table)


def _format_ids(ids: list[int], limit: int = 12) -> str:
    shown = ", ".join(str(i) for i in ids[:limit])
    if len(ids) > limit:
        shown += f", … (+{len(ids) - limit})"
    return shown
