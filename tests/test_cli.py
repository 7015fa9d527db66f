"""Tests for the relay command-line entry point."""

import pytest

from relay.cli import EXIT_CONFIG, EXIT_OK, EXIT_STORAGE, build_parser, main
from relay.store.log_store import FileProgressStore


def _log_ids(path) -> list[int]:
    return sorted(int(line) for line in path.read_text().split())


class TestCLI:

    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        assert args.tasks == 50
        assert args.workers == 4
        assert args.workload == "sleep"
        assert args.progress is None
        assert not args.dry_run

    def test_unknown_workload_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--workload", "bitcoin"])

    def test_dry_run(self):
        code = main(["--tasks", "6", "--workers", "2", "--workload", "primes",
                     "--block-size", "20", "--dry-run"])
        assert code == EXIT_OK

    @pytest.mark.parametrize("argv", [
        ["--workers", "0"],
        ["--tasks", "-3"],
        ["--task-timeout", "0"],
        ["--max-attempts", "0"],
    ])
    def test_invalid_configuration(self, argv):
        assert main(argv + ["--dry-run"]) == EXIT_CONFIG

    def test_file_run_and_rerun(self, tmp_path):
        path = tmp_path / "task_log.txt"
        argv = ["--tasks", "4", "--workers", "2", "--workload", "primes",
                "--block-size", "50", "--progress", str(path)]
        assert main(argv) == EXIT_OK
        assert _log_ids(path) == [0, 1, 2, 3]

        assert main(argv) == EXIT_OK
        assert _log_ids(path) == [0, 1, 2, 3]

    def test_progress_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "env_log.txt"
        monkeypatch.setenv("RELAY_PROGRESS_PATH", str(path))
        assert main(["--tasks", "2", "--workers", "1", "--workload", "sleep",
                     "--seconds", "0"]) == EXIT_OK
        assert _log_ids(path) == [0, 1]

    def test_reset_discards_previous_records(self, tmp_path):
        path = tmp_path / "task_log.txt"
        path.write_text("0\n7\n")
        assert main(["--tasks", "3", "--workers", "2", "--workload", "sleep", "--seconds", "0",
                     "--progress", str(path), "--reset"]) == EXIT_OK
        assert _log_ids(path) == [0, 1, 2]

    def test_locked_store_is_storage_error(self, tmp_path):
        path = tmp_path / "task_log.txt"
        with FileProgressStore(path):
            code = main(["--tasks", "2", "--workers", "1", "--progress", str(path)])
        assert code == EXIT_STORAGE
        assert not path.exists()
