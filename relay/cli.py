"""Command-line entry point: run (or resume) a dispatch over a worker pool.

Usage:
    relay --tasks 50 --workers 4 --workload primes --progress /cluster/task_log.txt

Exit codes: 0 all tasks complete, 1 stalled or failed run,
2 invalid configuration, 3 progress-store error, 130 interrupted.
"""

import argparse
import logging
import sys
import time
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from relay.errors import ConfigurationError, ProgressStoreError
from relay.metrics.collector import MetricsCollector
from relay.models.task import RunConfig
from relay.scheduler.engine import Scheduler
from relay.store.log_store import FileProgressStore
from relay.store.memory import MemoryProgressStore
from relay.transport.inline import InlineChannel
from relay.transport.process_pool import ProcessChannel
from relay.workloads import WORKLOAD_NAMES, build_workload

logger = logging.getLogger("relay.cli")

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_CONFIG = 2
EXIT_STORAGE = 3
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay",
        description="Relay — resumable, fault-tolerant task dispatcher",
    )
    parser.add_argument("--tasks", type=int, default=50, help="Number of tasks N (default: 50)")
    parser.add_argument("--workers", type=int, default=4, help="Worker processes W (default: 4)")
    parser.add_argument("--progress", type=str, default=None,
                        help="Progress log path (default: $RELAY_PROGRESS_PATH or relay_progress.log)")
    parser.add_argument("--workload", type=str, default="sleep", choices=WORKLOAD_NAMES,
                        help="Built-in work function (default: sleep)")
    parser.add_argument("--seconds", type=float, default=1.0, help="Sleep per task for the sleep workload")
    parser.add_argument("--block-size", type=int, default=10_000, help="Integers per task for primes")
    parser.add_argument("--samples", type=int, default=100_000, help="Samples per task for pi")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for pi (default: 42)")
    parser.add_argument("--task-timeout", type=float, default=None,
                        help="Retire a worker holding one task longer than this many seconds")
    parser.add_argument("--retry-failed", action="store_true",
                        help="Keep workers whose task failed instead of retiring them")
    parser.add_argument("--max-attempts", type=int, default=None,
                        help="Quarantine a task after this many failed dispatches")
    parser.add_argument("--reset", action="store_true",
                        help="Erase recorded progress before running")
    parser.add_argument("--dry-run", action="store_true",
                        help="Run in-process against an in-memory store")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log verbosity")
    return parser


def configure_logging(level: str, console: Console) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    configure_logging(args.log_level, console)

    values = dict(
        task_count=args.tasks,
        worker_pool_size=args.workers,
        task_timeout=args.task_timeout,
        retire_on_failure=not args.retry_failed,
        max_task_attempts=args.max_attempts,
    )
    if args.progress is not None:
        values["progress_path"] = args.progress

    try:
        config = RunConfig.build(**values)
        work_fn = build_workload(
            args.workload, seconds=args.seconds, block_size=args.block_size,
            samples=args.samples, seed=args.seed,
        )
    except (ConfigurationError, ValueError) as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        return EXIT_CONFIG

    console.print(
        f"[bold]Relay[/bold] — {config.task_count} tasks, {config.worker_pool_size} workers, "
        f"workload [cyan]{args.workload}[/cyan]"
        + (" [yellow](dry run)[/yellow]" if args.dry_run else f", progress {config.progress_path}")
    )

    results: list = []
    metrics = MetricsCollector()
    try:
        if args.dry_run:
            store = MemoryProgressStore()
            channel = InlineChannel(work_fn, config.worker_pool_size)
            clock = channel.clock
        else:
            store = FileProgressStore(config.progress_path, write_retries=config.write_retries)
            channel = ProcessChannel(work_fn, config.worker_pool_size)
            clock = time.monotonic

        with store:
            if args.reset:
                store.reset()
            scheduler = Scheduler(
                config, store, channel,
                on_result=lambda task_id, result: results.append(result),
                metrics=metrics,
                clock=clock,
            )
            report = scheduler.run()
    except ProgressStoreError as exc:
        logger.error("Progress store error: %s", exc)
        console.print(f"[bold red]Storage error:[/bold red] {exc}")
        return EXIT_STORAGE
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow] Completed tasks are recorded; rerun to resume.")
        return EXIT_INTERRUPTED

    metrics.print_report(console)
    numeric = [r for r in results if isinstance(r, (int, float))]
    if numeric:
        console.print(f"[dim]Sum of results from this run: {sum(numeric)}[/dim]")

    return EXIT_OK if report.succeeded else EXIT_INCOMPLETE


if __name__ == "__main__":
    sys.exit(main())
